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
"""HomeKit pairing loading and connection management."""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from aiohomekit.characteristic_cache import CharacteristicCacheMemory
from aiohomekit.controller.ip.controller import IpController
from aiohomekit.controller.ip.pairing import IpPairing

logger = logging.getLogger(__name__)

REQUIRED_PAIRING_KEYS = ("AccessoryPairingID", "AccessoryIP", "iOSPairingId")


class HomeKitBridge:
    """Loads HomeKit pairings and opens IP connections to the paired devices.

    Pairing itself is done with aiohomekit's own tooling, for example::

        python -m aiohomekit pair -f pairing.json -d 12:34:56:78:9A:BC -p 123-45-678 -a living

    which writes a JSON file mapping an alias to the pairing data. Each entry
    becomes one home in the REST API.
    """

    @staticmethod
    def read_pairing_file(path: Path, alias: Optional[str] = None) -> Dict[str, dict]:
        """Read an aiohomekit pairing file.

        Args:
            path: Path to the JSON pairing file
            alias: Only return this pairing, if given

        Raises:
            RuntimeError: the file is missing, unreadable, or has no usable pairing
        """
        path = Path(path).expanduser()
        if not path.exists():
            raise RuntimeError(f"Pairing file not found: {path}")

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise RuntimeError(f"Could not read pairing file {path}: {e}")

        if not isinstance(data, dict):
            raise RuntimeError(f"Pairing file {path} must contain a JSON object")

        pairings = {}
        for name, pairing_data in data.items():
            if alias is not None and name != alias:
                continue
            if not isinstance(pairing_data, dict):
                logger.warning(f"Ignoring pairing {name}: not an object")
                continue
            missing = [k for k in REQUIRED_PAIRING_KEYS if k not in pairing_data]
            if missing:
                logger.warning(f"Ignoring pairing {name}: missing {', '.join(missing)}")
                continue
            if pairing_data.get("Connection", "IP") != "IP":
                logger.warning(f"Ignoring pairing {name}: only IP accessories are supported")
                continue
            pairings[name] = pairing_data

        if not pairings:
            if alias is not None:
                raise RuntimeError(f"No pairing named {alias} in {path}")
            raise RuntimeError(f"No usable pairings in {path}")

        logger.info(f"Found {len(pairings)} pairing(s) in {path}:")
        for i, (name, pairing_data) in enumerate(pairings.items()):
            logger.info(f"  {i+1}. {name} ({pairing_data['AccessoryIP']})")
        return pairings

    @staticmethod
    def create_controller() -> IpController:
        """Create an IP controller with an in-memory characteristic cache."""
        # zeroconf is only needed for discovery, not for known-IP connections
        return IpController(char_cache=CharacteristicCacheMemory(), zeroconf_instance=None)

    @staticmethod
    def load_pairings(path: Path, alias: Optional[str] = None,
                      controller: Optional[IpController] = None) -> List[Tuple[str, IpPairing]]:
        """Create an IpPairing for every usable entry in the pairing file.

        Connections are opened lazily by the first request.
        """
        pairings = HomeKitBridge.read_pairing_file(path, alias)
        controller = controller or HomeKitBridge.create_controller()
        return [(name, IpPairing(controller, pairing_data)) for name, pairing_data in pairings.items()]
