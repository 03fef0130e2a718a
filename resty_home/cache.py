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
"""Pre-serialized snapshot cache of the device graph.

The cache is rebuilt whenever the device graph reports a change. All GET
endpoints except accessory detail serve from it, so they never wait on the
provider.

A rebuild walks the whole graph once under the cache lock and then swaps in
new collections; readers take the same lock and only ever get a reference to
a published collection. Published collections are never mutated, so a reader
sees either the complete old snapshot or the complete new one.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from .graph import Accessory, DeviceGraph, Home, Scene
from .homekit_uuids import (
    ACCESSORY_INFORMATION_SERVICE,
    category_name,
    characteristic_alias,
    status_key,
)
from .sanitize import sanitize_value

logger = logging.getLogger(__name__)

DEFAULT_ROOM = "Default Room"


def room_name(accessory: Accessory) -> str:
    """Name of the accessory's room, or the default room when unassigned."""
    room = accessory.room
    return room.name if room is not None else DEFAULT_ROOM


class DeviceGraphCache:
    """Thread-safe, JSON-ready projection of a DeviceGraph.

    Registers itself as the graph's listener on construction, and as a
    listener on every home and accessory it walks during a rebuild.
    """

    def __init__(self, graph: DeviceGraph):
        self.graph = graph
        self._lock = threading.RLock()

        # Published snapshot, replaced as a whole by rebuild()
        self._homes: List[Dict[str, Any]] = []
        self._home_names: Dict[str, str] = {}
        self._accessories: Dict[str, List[Dict[str, Any]]] = {}
        self._rooms: Dict[str, List[Dict[str, Any]]] = {}
        self._scenes: Dict[str, List[Dict[str, Any]]] = {}

        self.last_updated: Optional[float] = None
        self.rebuild_count = 0
        self._observers: List[Callable[["DeviceGraphCache"], None]] = []

        # Invalidation channel, bound by start()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._dirty: Optional[asyncio.Event] = None
        self._refresher: Optional[asyncio.Task] = None

        graph.listener = self

    # ------------------------------------------------------------------
    # Read accessors

    def get_homes(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._homes

    def get_home_name(self, home_id: str) -> Optional[str]:
        with self._lock:
            return self._home_names.get(home_id)

    def get_accessories(self, home_id: str) -> Optional[List[Dict[str, Any]]]:
        with self._lock:
            return self._accessories.get(home_id)

    def get_rooms(self, home_id: str) -> Optional[List[Dict[str, Any]]]:
        with self._lock:
            return self._rooms.get(home_id)

    def get_scenes(self, home_id: str) -> Optional[List[Dict[str, Any]]]:
        with self._lock:
            return self._scenes.get(home_id)

    @property
    def home_count(self) -> int:
        with self._lock:
            return len(self._homes)

    @property
    def total_accessory_count(self) -> int:
        with self._lock:
            return sum(len(accessories) for accessories in self._accessories.values())

    def cache_age_seconds(self) -> Optional[int]:
        """Whole seconds since the last rebuild, None before the first one."""
        last_updated = self.last_updated
        if last_updated is None:
            return None
        return max(0, int(time.time() - last_updated))

    # ------------------------------------------------------------------
    # Live lookups, for handlers that must act on the device graph itself

    def get_home(self, home_id: str) -> Optional[Home]:
        with self._lock:
            return self._find_home(home_id)

    def get_accessory(self, home_id: str, accessory_id: str) -> Optional[Accessory]:
        with self._lock:
            home = self._find_home(home_id)
            if home is None:
                return None
            for accessory in list(home.accessories):
                if accessory.id == accessory_id:
                    return accessory
            return None

    def get_scene(self, home_id: str, scene_id: str) -> Optional[Scene]:
        with self._lock:
            home = self._find_home(home_id)
            if home is None:
                return None
            for scene in list(home.scenes):
                if scene.id == scene_id:
                    return scene
            return None

    def _find_home(self, home_id: str) -> Optional[Home]:
        for home in list(self.graph.homes):
            if home.id == home_id:
                return home
        return None

    # ------------------------------------------------------------------
    # Rebuild

    def rebuild(self):
        """Walk the entire device graph and atomically replace the snapshot."""
        with self._lock:
            start = time.perf_counter()

            homes = []
            home_names = {}
            accessories = {}
            rooms = {}
            scenes = {}

            for home in list(self.graph.homes):
                try:
                    home_id = home.id
                    summary = {
                        "id": home_id,
                        "name": home.name,
                        "is_primary": bool(home.primary),
                    }
                    home.add_listener(self)
                except Exception as e:
                    logger.error(f"Skipping unusable home {home!r}: {e}")
                    continue

                home_accessories = self._walk(home, "accessories", self._accessory_summary)
                home_rooms = self._walk(home, "rooms", self._room_summary)
                home_scenes = self._walk(home, "scenes", self._scene_summary)

                summary["room_count"] = len(home_rooms)
                summary["accessory_count"] = len(home_accessories)
                summary["scene_count"] = len(home_scenes)

                homes.append(summary)
                home_names[home_id] = summary["name"]
                accessories[home_id] = home_accessories
                rooms[home_id] = home_rooms
                scenes[home_id] = home_scenes

            self._homes = homes
            self._home_names = home_names
            self._accessories = accessories
            self._rooms = rooms
            self._scenes = scenes

            now = time.time()
            if self.last_updated is None or now > self.last_updated:
                self.last_updated = now
            self.rebuild_count += 1

            elapsed = (time.perf_counter() - start) * 1000
            total = sum(len(a) for a in accessories.values())

        logger.info(f"Cache rebuilt in {elapsed:.1f}ms - {len(homes)} home(s), {total} accessory(ies)")

        for observer in list(self._observers):
            try:
                observer(self)
            except Exception as e:
                logger.error(f"Rebuild observer failed: {e}")

    def _walk(self, home: Home, attribute: str, summarize) -> List[Dict[str, Any]]:
        """Summarize one collection of a home, leaving out objects that fail."""
        try:
            items = list(getattr(home, attribute))
        except Exception as e:
            logger.error(f"Could not read {attribute} of home {home.id}: {e}")
            return []

        result = []
        for item in items:
            try:
                result.append(summarize(item))
            except Exception as e:
                logger.warning(f"Omitting {attribute[:-1]} {item!r} from home {home.id}: {e}")
        return result

    def _accessory_summary(self, accessory: Accessory) -> Dict[str, Any]:
        accessory.add_listener(self)

        status = {}
        for service in accessory.services:
            if service.type.upper() == ACCESSORY_INFORMATION_SERVICE:
                continue
            for characteristic in service.characteristics:
                alias = characteristic_alias(characteristic.type)
                if alias is None:
                    continue
                try:
                    value = sanitize_value(characteristic.read_value())
                except Exception as e:
                    logger.debug(f"Skipping {alias} of {accessory.name}: {e}")
                    continue
                if value is not None:
                    status[status_key(alias)] = value

        return {
            "id": accessory.id,
            "name": accessory.name,
            "room": room_name(accessory),
            "reachable": bool(accessory.reachable),
            "category": category_name(accessory.category),
            "status": status,
        }

    @staticmethod
    def _room_summary(room) -> Dict[str, Any]:
        return {
            "id": room.id,
            "name": room.name,
            "accessory_count": len(room.accessories),
        }

    @staticmethod
    def _scene_summary(scene: Scene) -> Dict[str, Any]:
        return {
            "id": scene.id,
            "name": scene.name,
            "action_count": len(scene.actions),
        }

    def add_rebuild_observer(self, callback: Callable[["DeviceGraphCache"], None]):
        """Call ``callback(cache)`` after every completed rebuild."""
        self._observers.append(callback)

    # ------------------------------------------------------------------
    # Change notification

    def graph_did_change(self, home_id: Optional[str]):
        """Listener callback from the device graph; may run on any thread."""
        logger.debug(f"Device graph changed (home={home_id})")
        self.invalidate(home_id)

    def invalidate(self, home_id: Optional[str] = None):
        """Request a rebuild.

        Once start() has bound the cache to an event loop, requests are
        coalesced: any number of invalidations before the refresher runs
        produce a single rebuild. Without a loop the rebuild is synchronous.
        """
        loop = self._loop
        if loop is None:
            self.rebuild()
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._dirty.set()
        else:
            try:
                loop.call_soon_threadsafe(self._dirty.set)
            except RuntimeError:
                logger.debug("Event loop closed, dropping cache invalidation")

    def start(self):
        """Bind to the running event loop and start the refresher task."""
        if self._refresher is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._dirty = asyncio.Event()
        self._refresher = self._loop.create_task(self._refresh_loop())
        logger.debug("Cache refresher started")

    async def stop(self):
        """Stop the refresher; later invalidations rebuild synchronously."""
        task = self._refresher
        self._refresher = None
        self._loop = None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _refresh_loop(self):
        while True:
            await self._dirty.wait()
            self._dirty.clear()
            try:
                self.rebuild()
            except Exception as e:
                logger.error(f"Cache rebuild failed: {e}")
