import pytest

from resty_home.cache import DeviceGraphCache
from resty_home.graph import (
    Accessory,
    Characteristic,
    DeviceGraph,
    Home,
    Room,
    Scene,
    Service,
    information_service,
)

POWER = "00000025-0000-1000-8000-0026BB765291"
BRIGHTNESS = "00000008-0000-1000-8000-0026BB765291"
BATTERY = "00000068-0000-1000-8000-0026BB765291"
LIGHTBULB = "00000043-0000-1000-8000-0026BB765291"
BATTERY_SERVICE = "00000096-0000-1000-8000-0026BB765291"


def build_graph():
    """Two homes: 'h1' with a lamp, a read-only dimmer display, an unassigned
    battery sensor and one scene; 'h2' empty."""
    home = Home("h1", "Home", primary=True)
    kitchen = home.add_room(Room("r1", "Kitchen"))
    home.add_room(Room("r2", "Hallway"))

    power = Characteristic(POWER, True, writable=True)
    lamp = Accessory("a1", "Lamp", category="lightbulb", manufacturer="Acme", model="L1", services=[
        information_service("Lamp", "Acme", "L1"),
        Service(LIGHTBULB, "Lamp", [
            power,
            Characteristic(BRIGHTNESS, 30, writable=True, min_value=0, max_value=100, units="percentage"),
        ]),
    ])
    home.add_accessory(lamp, kitchen)

    display = Accessory("a2", "Dimmer Display", category="lightbulb", services=[
        Service(LIGHTBULB, "Display", [
            Characteristic(BRIGHTNESS, 70, writable=False),
        ]),
    ])
    home.add_accessory(display, kitchen)

    sensor = Accessory("a3", "Door Sensor", category="toaster", services=[
        Service(BATTERY_SERVICE, "Battery", [
            Characteristic(BATTERY, 91, min_value=0, max_value=100, units="percentage"),
        ]),
    ])
    home.add_accessory(sensor)

    home.add_scene(Scene("s1", "Lights Off", [(power, False)]))

    return DeviceGraph([home, Home("h2", "Cabin")])


@pytest.fixture
def graph():
    return build_graph()


@pytest.fixture
def cache(graph):
    cache = DeviceGraphCache(graph)
    cache.rebuild()
    return cache
