import pytest

from resty_home.cache import DeviceGraphCache
from resty_home.graph import WriteError
from resty_home.homekit import HomeKitDeviceGraph, HomeKitHome

INFO = "0000003E-0000-1000-8000-0026BB765291"
NAME = "00000023-0000-1000-8000-0026BB765291"
MANUFACTURER = "00000020-0000-1000-8000-0026BB765291"
MODEL = "00000021-0000-1000-8000-0026BB765291"
LIGHTBULB = "00000043-0000-1000-8000-0026BB765291"
POWER = "00000025-0000-1000-8000-0026BB765291"
BRIGHTNESS = "00000008-0000-1000-8000-0026BB765291"

ACCESSORIES = [
    {
        "aid": 1,
        "services": [
            {"iid": 1, "type": INFO, "characteristics": [
                {"iid": 2, "type": NAME, "perms": ["pr"], "value": "Desk Lamp"},
                {"iid": 3, "type": MANUFACTURER, "perms": ["pr"], "value": "Acme"},
                {"iid": 4, "type": MODEL, "perms": ["pr"], "value": "DL-2"},
            ]},
            {"iid": 10, "type": LIGHTBULB, "characteristics": [
                {"iid": 11, "type": POWER, "perms": ["pr", "pw", "ev"], "value": True},
                {"iid": 12, "type": BRIGHTNESS, "perms": ["pr", "pw", "ev"], "value": 40,
                 "minValue": 0, "maxValue": 100, "unit": "percentage"},
            ]},
        ],
    },
]


class PairingStub:
    def __init__(self, accessories=ACCESSORIES, fail_list=False, put_result=None, put_error=None):
        self.pairing_data = {"AccessoryPairingID": "AA:BB:CC:DD:EE:FF"}
        self.accessories = accessories
        self.fail_list = fail_list
        self.put_result = put_result
        self.put_error = put_error
        self.callback = None
        self.subscribed = []
        self.unsubscribed = []
        self.puts = []
        self.closed = False

    async def list_accessories_and_characteristics(self):
        if self.fail_list:
            raise OSError("unreachable")
        return self.accessories

    def dispatcher_connect(self, callback):
        self.callback = callback

        def stop():
            self.callback = None
        return stop

    async def subscribe(self, characteristics):
        self.subscribed = list(characteristics)

    async def unsubscribe(self, characteristics):
        self.unsubscribed = list(characteristics)

    async def put_characteristics(self, characteristics):
        self.puts.extend(characteristics)
        if self.put_error is not None:
            raise self.put_error
        return self.put_result or {}

    async def close(self):
        self.closed = True


async def loaded_home(pairing):
    home = HomeKitHome("office", pairing, primary=True)
    await home.load()
    return home


@pytest.mark.asyncio
async def test_load_builds_accessories_and_subscribes():
    pairing = PairingStub()
    home = await loaded_home(pairing)

    assert home.id == "AA:BB:CC:DD:EE:FF"
    assert home.name == "office"
    assert home.primary is True
    assert home.rooms == [] and home.scenes == []

    [accessory] = home.accessories
    assert accessory.id == "AA:BB:CC:DD:EE:FF:1"
    assert accessory.name == "Desk Lamp"
    assert accessory.manufacturer == "Acme"
    assert accessory.model == "DL-2"
    assert accessory.category == "lightbulb"
    assert accessory.room is None

    brightness = home.characteristics[(1, 12)]
    assert brightness.writable and brightness.readable and brightness.events
    assert (brightness.min_value, brightness.max_value, brightness.units) == (0, 100, "percentage")
    assert home.characteristics[(1, 2)].writable is False

    assert pairing.subscribed == [(1, 11), (1, 12)]
    assert pairing.callback is not None


@pytest.mark.asyncio
async def test_events_update_values_and_cache():
    pairing = PairingStub()
    graph = HomeKitDeviceGraph([("office", pairing)])
    await graph.load()
    cache = DeviceGraphCache(graph)
    cache.rebuild()

    assert cache.get_accessories("AA:BB:CC:DD:EE:FF")[0]["status"] == {"power_state": True, "brightness": 40}

    pairing.callback({(1, 12): {"value": 75}, (1, 11): {"value": None}, (9, 9): {"value": 1}})

    status = cache.get_accessories("AA:BB:CC:DD:EE:FF")[0]["status"]
    assert status == {"power_state": True, "brightness": 75}


@pytest.mark.asyncio
async def test_event_marks_accessory_reachable_again():
    home = await loaded_home(PairingStub())
    accessory = home.accessories[0]
    accessory.set_reachable(False)

    home._handle_events({(1, 11): {"value": False}})

    assert accessory.reachable is True
    assert home.characteristics[(1, 11)].value is False


@pytest.mark.asyncio
async def test_write_puts_characteristic():
    pairing = PairingStub()
    home = await loaded_home(pairing)

    await home.characteristics[(1, 12)].write(20)

    assert pairing.puts == [(1, 12, 20)]
    assert home.characteristics[(1, 12)].value == 20


@pytest.mark.asyncio
async def test_write_hap_error_status():
    pairing = PairingStub(put_result={(1, 12): {"status": -70402, "description": "Unable to communicate"}})
    home = await loaded_home(pairing)

    with pytest.raises(WriteError, match="Unable to communicate"):
        await home.characteristics[(1, 12)].write(20)
    assert home.characteristics[(1, 12)].value == 40


@pytest.mark.asyncio
async def test_write_connection_error_marks_unreachable():
    pairing = PairingStub(put_error=ConnectionResetError("reset by peer"))
    home = await loaded_home(pairing)

    with pytest.raises(WriteError, match="reset by peer"):
        await home.characteristics[(1, 11)].write(False)
    assert home.accessories[0].reachable is False


@pytest.mark.asyncio
async def test_read_only_characteristic_refuses_write():
    pairing = PairingStub()
    home = await loaded_home(pairing)

    with pytest.raises(WriteError):
        await home.characteristics[(1, 2)].write("New Name")
    assert pairing.puts == []


@pytest.mark.asyncio
async def test_failed_load_keeps_home():
    home = await loaded_home(PairingStub(fail_list=True))
    assert home.accessories == []


@pytest.mark.asyncio
async def test_malformed_characteristic_is_skipped():
    accessories = [{
        "aid": 2,
        "services": [{"iid": 1, "type": LIGHTBULB, "characteristics": [
            {"type": POWER, "perms": ["pr"], "value": True},
            {"iid": 3, "type": BRIGHTNESS, "perms": ["pr"], "value": 10},
        ]}],
    }]
    home = await loaded_home(PairingStub(accessories=accessories))

    assert list(home.characteristics) == [(2, 3)]
    assert home.accessories[0].name == "Accessory 2"


@pytest.mark.asyncio
async def test_close_unsubscribes_and_closes():
    pairing = PairingStub()
    graph = HomeKitDeviceGraph([("office", pairing)])
    await graph.load()

    await graph.close()

    assert pairing.unsubscribed == [(1, 11), (1, 12)]
    assert pairing.callback is None
    assert pairing.closed
