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
"""Device graph backed by paired HomeKit accessories over HAP/IP.

Each pairing is exposed as one home. HAP has no notion of rooms or scenes,
so those collections stay empty; accessories carry no room and show up in
the default room.

Characteristic values are kept up to date through HomeKit events: every
characteristic with the ``ev`` permission is subscribed, and the pairing's
dispatcher callback feeds updates back into the graph, which in turn notifies
the cache.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from aiohomekit.controller.ip.pairing import IpPairing
from aiohomekit.uuid import normalize_uuid

from .bridge import HomeKitBridge
from .graph import Accessory, Characteristic, DeviceGraph, Home, Service, WriteError
from .homekit_uuids import (
    ACCESSORY_INFORMATION_SERVICE,
    CHAR_MANUFACTURER,
    CHAR_MODEL,
    CHAR_NAME,
    category_for_services,
)

logger = logging.getLogger(__name__)


class HomeKitCharacteristic(Characteristic):
    """Characteristic addressed by (aid, iid) on a paired accessory."""

    def __init__(self, home: "HomeKitHome", aid: int, raw: Dict[str, Any]):
        perms = raw.get("perms", [])
        super().__init__(
            normalize_uuid(raw["type"]),
            raw.get("value"),
            raw.get("description"),
            readable="pr" in perms,
            writable="pw" in perms,
            min_value=raw.get("minValue"),
            max_value=raw.get("maxValue"),
            units=raw.get("unit"),
        )
        self.home = home
        self.aid = aid
        self.iid = raw["iid"]
        self.events = "ev" in perms

    @property
    def key(self) -> Tuple[int, int]:
        return (self.aid, self.iid)

    async def write(self, value: Any):
        if not self.writable:
            raise WriteError(f"Characteristic {self.description} is read-only")
        await self.home.put_characteristic(self, value)


class HomeKitHome(Home):
    """One HomeKit pairing, presented as a home."""

    def __init__(self, alias: str, pairing: IpPairing, primary: bool = False):
        super().__init__(pairing.pairing_data["AccessoryPairingID"], alias, primary)
        self.pairing = pairing
        self.characteristics: Dict[Tuple[int, int], HomeKitCharacteristic] = {}
        self.subscribed_characteristics: List[Tuple[int, int]] = []
        self._dispatcher_unsubscribe = None

    async def load(self):
        """Fetch the accessory database and subscribe to events.

        A failure leaves the home in place with its accessories marked
        unreachable.
        """
        try:
            raw_accessories = await self.pairing.list_accessories_and_characteristics()
        except Exception as e:
            logger.error(f"Failed to load accessories for {self.name}: {e}")
            for accessory in self.accessories:
                accessory.set_reachable(False)
            return

        accessories = []
        characteristics = {}
        for raw in raw_accessories:
            try:
                accessory = self._build_accessory(raw)
            except Exception as e:
                logger.warning(f"Skipping accessory {raw.get('aid')} of {self.name}: {e}")
                continue
            accessories.append(accessory)
            for service in accessory.services:
                for characteristic in service.characteristics:
                    characteristics[characteristic.key] = characteristic

        # Swap in the new topology in one step
        self.characteristics = characteristics
        self.accessories = accessories
        logger.info(f"Loaded {len(accessories)} accessories for {self.name}")

        await self._subscribe()
        self.notify_changed()

    def _build_accessory(self, raw: Dict[str, Any]) -> Accessory:
        aid = raw["aid"]
        services = []
        info = {}

        for raw_service in raw.get("services", []):
            characteristics = []
            for raw_char in raw_service.get("characteristics", []):
                try:
                    characteristics.append(HomeKitCharacteristic(self, aid, raw_char))
                except (KeyError, TypeError, ValueError) as e:
                    logger.debug(f"Skipping malformed characteristic on aid={aid}: {e}")

            service = Service(normalize_uuid(raw_service["type"]), characteristics=characteristics)
            name = service.characteristic(CHAR_NAME)
            if name is not None and name.value:
                service.name = str(name.value)
            if service.type == ACCESSORY_INFORMATION_SERVICE:
                info = {c.type: c.value for c in characteristics}
            services.append(service)

        accessory = Accessory(
            f"{self.id}:{aid}",
            info.get(CHAR_NAME) or f"Accessory {aid}",
            services,
            category=category_for_services(s.type for s in services),
            manufacturer=info.get(CHAR_MANUFACTURER),
            model=info.get(CHAR_MODEL),
        )
        accessory.home = self
        return accessory

    async def _subscribe(self):
        if self._dispatcher_unsubscribe is None:
            self._dispatcher_unsubscribe = self.pairing.dispatcher_connect(self._handle_events)
            logger.debug(f"Event callback registered for {self.name}")

        event_characteristics = [key for key, c in self.characteristics.items() if c.events]
        if not event_characteristics:
            logger.warning(f"No event-capable characteristics found for {self.name}")
            return

        try:
            await self.pairing.subscribe(event_characteristics)
            self.subscribed_characteristics = event_characteristics
            logger.info(f"Subscribed to {len(event_characteristics)} event characteristics on {self.name}")
        except Exception as e:
            logger.warning(f"Event subscription failed for {self.name}: {e}")

    def _handle_events(self, update_data: Dict[Tuple[int, int], Dict[str, Any]]):
        """Dispatcher callback for characteristic updates."""
        logger.debug(f"Event callback received update: {update_data}")
        for key, data in update_data.items():
            characteristic = self.characteristics.get(key)
            if characteristic is None or "value" not in data:
                continue
            # None values indicate connection trouble; events restore them later
            if data["value"] is None:
                continue
            accessory = characteristic.accessory
            if accessory is not None and not accessory.reachable:
                accessory.set_reachable(True)
            characteristic.update_value(data["value"])

    async def put_characteristic(self, characteristic: HomeKitCharacteristic, value: Any):
        """Write one characteristic value.

        Raises:
            WriteError: the accessory could not be reached or returned a
                non-zero HAP status
        """
        try:
            results = await self.pairing.put_characteristics([(characteristic.aid, characteristic.iid, value)])
        except Exception as e:
            accessory = characteristic.accessory
            if accessory is not None:
                accessory.set_reachable(False)
            raise WriteError(str(e) or type(e).__name__)

        error = (results or {}).get(characteristic.key)
        if error and error.get("status", 0) != 0:
            raise WriteError(error.get("description") or f"HAP status {error['status']}")

        characteristic.update_value(value)

    async def close(self):
        if self.subscribed_characteristics:
            try:
                logger.info(f"Unsubscribing from {len(self.subscribed_characteristics)} event characteristics")
                await self.pairing.unsubscribe(self.subscribed_characteristics)
            except Exception as e:
                logger.warning(f"Error during unsubscribe: {e}")
            self.subscribed_characteristics = []

        if self._dispatcher_unsubscribe is not None:
            self._dispatcher_unsubscribe()
            self._dispatcher_unsubscribe = None

        await self.pairing.close()


class HomeKitDeviceGraph(DeviceGraph):
    """Device graph with one home per HomeKit pairing."""

    def __init__(self, pairings: List[Tuple[str, IpPairing]]):
        super().__init__(
            HomeKitHome(alias, pairing, primary=(i == 0))
            for i, (alias, pairing) in enumerate(pairings)
        )

    @classmethod
    def from_pairing_file(cls, path: Path, alias: Optional[str] = None) -> "HomeKitDeviceGraph":
        return cls(HomeKitBridge.load_pairings(path, alias))

    async def load(self):
        await asyncio.gather(*(home.load() for home in self.homes))
        await super().load()

    async def close(self):
        for home in self.homes:
            try:
                await home.close()
            except Exception as e:
                logger.warning(f"Error closing {home.name}: {e}")
