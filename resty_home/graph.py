#
# Copyright 2025 The RestyHome contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
"""Device graph provider interface and in-memory implementation.

The device graph is the live tree of homes, rooms, accessories and scenes
that the REST API exposes. The cache walks it, the write and execute routes
act on it directly.

Change notification follows a delegate style: every Home and Accessory keeps
a set of listeners, and the DeviceGraph itself has a single ``listener`` slot
for topology changes of the home list. A listener is any object with a
``graph_did_change(home_id)`` method; ``home_id`` is None when the change is
not scoped to one home.

The classes here are fully functional on their own (tests and ``--demo`` use
them directly) and are subclassed by the HomeKit provider in
``resty_home.homekit``.
"""

import logging
import uuid
from typing import Any, Iterable, List, Optional, Tuple

from .homekit_uuids import (
    ACCESSORY_INFORMATION_SERVICE,
    CHAR_MANUFACTURER,
    CHAR_MODEL,
    CHAR_NAME,
    characteristic_alias,
)

logger = logging.getLogger(__name__)


def new_identifier() -> str:
    """Return a fresh opaque identifier in upper-case UUID form."""
    return str(uuid.uuid4()).upper()


class WriteError(Exception):
    """Raised by a provider when a write or scene execution fails."""


class _Notifier:
    """Keeps a set of change listeners."""

    def __init__(self):
        self._listeners = set()

    def add_listener(self, listener):
        """Register a change listener; registering twice is a no-op."""
        self._listeners.add(listener)

    def remove_listener(self, listener):
        self._listeners.discard(listener)

    @property
    def listeners(self):
        return frozenset(self._listeners)

    def _notify(self, home_id: Optional[str]):
        for listener in list(self._listeners):
            try:
                listener.graph_did_change(home_id)
            except Exception as e:
                logger.error(f"Change listener {listener!r} failed: {e}")


class Characteristic:
    """A single readable and/or writable attribute of a service."""

    def __init__(self, type: str, value: Any = None, description: Optional[str] = None,
                 readable: bool = True, writable: bool = False,
                 min_value: Any = None, max_value: Any = None, units: Optional[str] = None):
        self.type = type.upper()
        self.value = value
        self.description = description or characteristic_alias(self.type) or self.type
        self.readable = readable
        self.writable = writable
        self.min_value = min_value
        self.max_value = max_value
        self.units = units
        self.service: Optional["Service"] = None

    def __repr__(self):
        return f"<Characteristic {self.description} ({self.type})>"

    @property
    def accessory(self) -> Optional["Accessory"]:
        return self.service.accessory if self.service else None

    def read_value(self) -> Any:
        """Return the last known value."""
        return self.value

    async def write(self, value: Any):
        """Write a new value to the device.

        Raises:
            WriteError: the device refused or could not be reached
        """
        if not self.writable:
            raise WriteError(f"Characteristic {self.description} is read-only")
        accessory = self.accessory
        if accessory is not None and not accessory.reachable:
            raise WriteError(f"Accessory {accessory.name} is not reachable")
        self.update_value(value)

    def update_value(self, value: Any):
        """Record a value reported by the device and notify listeners."""
        if value == self.value:
            return
        self.value = value
        accessory = self.accessory
        if accessory is not None:
            accessory.notify_changed()


class Service:
    """A group of characteristics on an accessory."""

    def __init__(self, type: str, name: Optional[str] = None,
                 characteristics: Iterable[Characteristic] = ()):
        self.type = type.upper()
        self.name = name
        self.accessory: Optional["Accessory"] = None
        self.characteristics: List[Characteristic] = []
        for characteristic in characteristics:
            self.add_characteristic(characteristic)

    def add_characteristic(self, characteristic: Characteristic) -> Characteristic:
        characteristic.service = self
        self.characteristics.append(characteristic)
        return characteristic

    def characteristic(self, type: str) -> Optional[Characteristic]:
        type = type.upper()
        for characteristic in self.characteristics:
            if characteristic.type == type:
                return characteristic
        return None


class Room:
    def __init__(self, id: str, name: str):
        self.id = id
        self.name = name
        self.home: Optional["Home"] = None

    @property
    def accessories(self) -> List["Accessory"]:
        if self.home is None:
            return []
        return [a for a in self.home.accessories if a.room is self]


class Scene:
    """A named action set; each action is a (characteristic, value) pair."""

    def __init__(self, id: str, name: str, actions: Iterable[Tuple[Characteristic, Any]] = ()):
        self.id = id
        self.name = name
        self.actions: List[Tuple[Characteristic, Any]] = list(actions)


class Accessory(_Notifier):
    """A controllable device exposing services and characteristics."""

    def __init__(self, id: str, name: str, services: Iterable[Service] = (),
                 category: str = "other", reachable: bool = True,
                 manufacturer: Optional[str] = None, model: Optional[str] = None):
        super().__init__()
        self.id = id
        self.name = name
        self.category = category
        self.reachable = reachable
        self.manufacturer = manufacturer
        self.model = model
        self.home: Optional["Home"] = None
        self.room: Optional[Room] = None
        self.services: List[Service] = []
        for service in services:
            self.add_service(service)

    def __repr__(self):
        return f"<Accessory {self.name} ({self.id})>"

    def add_service(self, service: Service) -> Service:
        service.accessory = self
        self.services.append(service)
        return service

    def set_reachable(self, reachable: bool):
        if reachable == self.reachable:
            return
        self.reachable = reachable
        self.notify_changed()

    def notify_changed(self):
        self._notify(self.home.id if self.home else None)


class Home(_Notifier):
    """Top-level container of rooms, accessories and scenes."""

    def __init__(self, id: str, name: str, primary: bool = False):
        super().__init__()
        self.id = id
        self.name = name
        self.primary = primary
        self.rooms: List[Room] = []
        self.accessories: List[Accessory] = []
        self.scenes: List[Scene] = []

    def __repr__(self):
        return f"<Home {self.name} ({self.id})>"

    def rename(self, name: str):
        self.name = name
        self.notify_changed()

    def add_room(self, room: Room) -> Room:
        room.home = self
        self.rooms.append(room)
        self.notify_changed()
        return room

    def remove_room(self, room: Room):
        for accessory in self.accessories:
            if accessory.room is room:
                accessory.room = None
        self.rooms.remove(room)
        room.home = None
        self.notify_changed()

    def add_accessory(self, accessory: Accessory, room: Optional[Room] = None) -> Accessory:
        accessory.home = self
        accessory.room = room
        self.accessories.append(accessory)
        self.notify_changed()
        return accessory

    def remove_accessory(self, accessory: Accessory):
        self.accessories.remove(accessory)
        accessory.home = None
        accessory.room = None
        self.notify_changed()

    def assign_room(self, accessory: Accessory, room: Optional[Room]):
        accessory.room = room
        self.notify_changed()

    def add_scene(self, scene: Scene) -> Scene:
        self.scenes.append(scene)
        self.notify_changed()
        return scene

    def remove_scene(self, scene: Scene):
        self.scenes.remove(scene)
        self.notify_changed()

    async def execute_scene(self, scene: Scene):
        """Apply every action of a scene.

        Raises:
            WriteError: an action failed; later actions are not applied
        """
        logger.info(f"Executing scene {scene.name} ({len(scene.actions)} actions)")
        for characteristic, value in scene.actions:
            await characteristic.write(value)

    def notify_changed(self):
        self._notify(self.id)


class DeviceGraph:
    """Root of the device graph.

    ``listener`` is a single slot, like a delegate: assigning replaces the
    previous listener.
    """

    def __init__(self, homes: Iterable[Home] = ()):
        self.homes: List[Home] = list(homes)
        self.listener = None

    async def load(self):
        """Finish the initial load of the graph and notify the listener."""
        logger.info(f"Device graph loaded: {len(self.homes)} home(s)")
        self.notify_changed()

    async def close(self):
        pass

    def add_home(self, home: Home) -> Home:
        self.homes.append(home)
        self.notify_changed()
        return home

    def remove_home(self, home: Home):
        self.homes.remove(home)
        self.notify_changed()

    def notify_changed(self, home_id: Optional[str] = None):
        listener = self.listener
        if listener is not None:
            listener.graph_did_change(home_id)


def information_service(name: str, manufacturer: Optional[str] = None,
                        model: Optional[str] = None) -> Service:
    """Build an AccessoryInformation service."""
    return Service(ACCESSORY_INFORMATION_SERVICE, "Accessory Information", [
        Characteristic(CHAR_NAME, name, "Name"),
        Characteristic(CHAR_MANUFACTURER, manufacturer or "Unknown", "Manufacturer"),
        Characteristic(CHAR_MODEL, model or "Unknown", "Model"),
    ])


def demo_graph() -> DeviceGraph:
    """Build a small sample home for trying out the API without hardware."""
    home = Home(new_identifier(), "Demo Home", primary=True)
    living = home.add_room(Room(new_identifier(), "Living Room"))
    bedroom = home.add_room(Room(new_identifier(), "Bedroom"))

    light_power = Characteristic("00000025-0000-1000-8000-0026BB765291", True, writable=True)
    light = Accessory(new_identifier(), "Ceiling Light", category="lightbulb",
                      manufacturer="Resty", model="Bulb 1", services=[
        information_service("Ceiling Light", "Resty", "Bulb 1"),
        Service("00000043-0000-1000-8000-0026BB765291", "Ceiling Light", [
            light_power,
            Characteristic("00000008-0000-1000-8000-0026BB765291", 80, writable=True,
                           min_value=0, max_value=100, units="percentage"),
        ]),
    ])
    home.add_accessory(light, living)

    target_temperature = Characteristic("00000035-0000-1000-8000-0026BB765291", 21.0, writable=True,
                                        min_value=10.0, max_value=38.0, units="celsius")
    thermostat = Accessory(new_identifier(), "Thermostat", category="thermostat",
                           manufacturer="Resty", model="Thermo 2", services=[
        information_service("Thermostat", "Resty", "Thermo 2"),
        Service("0000004A-0000-1000-8000-0026BB765291", "Thermostat", [
            Characteristic("00000011-0000-1000-8000-0026BB765291", 20.5,
                           min_value=0.0, max_value=100.0, units="celsius"),
            target_temperature,
            Characteristic("0000000F-0000-1000-8000-0026BB765291", 1, min_value=0, max_value=2),
            Characteristic("00000033-0000-1000-8000-0026BB765291", 1, writable=True,
                           min_value=0, max_value=3),
        ]),
    ])
    home.add_accessory(thermostat, bedroom)

    sensor = Accessory(new_identifier(), "Hallway Sensor", category="sensor", services=[
        information_service("Hallway Sensor"),
        Service("00000085-0000-1000-8000-0026BB765291", "Motion", [
            Characteristic("00000022-0000-1000-8000-0026BB765291", False),
        ]),
        Service("00000096-0000-1000-8000-0026BB765291", "Battery", [
            Characteristic("00000068-0000-1000-8000-0026BB765291", 87,
                           min_value=0, max_value=100, units="percentage"),
            Characteristic("00000079-0000-1000-8000-0026BB765291", 0),
        ]),
    ])
    home.add_accessory(sensor)

    home.add_scene(Scene(new_identifier(), "Good Night", [
        (light_power, False),
        (target_temperature, 18.0),
    ]))

    return DeviceGraph([home])
