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
"""
HomeKit UUID mappings for services, characteristics and accessory categories.

These mappings convert HomeKit type UUIDs to the human-readable aliases used
throughout the REST API: as keys of the cached accessory ``status`` map, as
names in the accessory detail view, and as the first thing a ``set``
request's ``characteristic`` field is matched against.

All UUIDs are the full, upper-case form that aiohomekit normalizes to.
Lookups are exact; callers normalize before looking up.
"""

from typing import Iterable, Optional

ACCESSORY_INFORMATION_SERVICE = "0000003E-0000-1000-8000-0026BB765291"

CHAR_NAME = "00000023-0000-1000-8000-0026BB765291"
CHAR_MANUFACTURER = "00000020-0000-1000-8000-0026BB765291"
CHAR_MODEL = "00000021-0000-1000-8000-0026BB765291"

HOMEKIT_SERVICES = {
    "0000003E-0000-1000-8000-0026BB765291": "Accessory Information",
    "00000040-0000-1000-8000-0026BB765291": "Fan",
    "00000041-0000-1000-8000-0026BB765291": "Garage Door Opener",
    "00000043-0000-1000-8000-0026BB765291": "Lightbulb",
    "00000045-0000-1000-8000-0026BB765291": "Lock Mechanism",
    "00000047-0000-1000-8000-0026BB765291": "Outlet",
    "00000049-0000-1000-8000-0026BB765291": "Switch",
    "0000004A-0000-1000-8000-0026BB765291": "Thermostat",
    "0000007F-0000-1000-8000-0026BB765291": "Carbon Monoxide Sensor",
    "00000080-0000-1000-8000-0026BB765291": "Contact Sensor",
    "00000081-0000-1000-8000-0026BB765291": "Door",
    "00000082-0000-1000-8000-0026BB765291": "Humidity Sensor",
    "00000083-0000-1000-8000-0026BB765291": "Leak Sensor",
    "00000084-0000-1000-8000-0026BB765291": "Light Sensor",
    "00000085-0000-1000-8000-0026BB765291": "Motion Sensor",
    "00000086-0000-1000-8000-0026BB765291": "Occupancy Sensor",
    "00000087-0000-1000-8000-0026BB765291": "Smoke Sensor",
    "0000008A-0000-1000-8000-0026BB765291": "Temperature Sensor",
    "0000008B-0000-1000-8000-0026BB765291": "Window",
    "0000008C-0000-1000-8000-0026BB765291": "Window Covering",
    "0000008D-0000-1000-8000-0026BB765291": "Air Quality Sensor",
    "00000096-0000-1000-8000-0026BB765291": "Battery",
    "00000097-0000-1000-8000-0026BB765291": "Carbon Dioxide Sensor",
    "000000B7-0000-1000-8000-0026BB765291": "Fan",
    "000000BB-0000-1000-8000-0026BB765291": "Air Purifier",
    "000000CF-0000-1000-8000-0026BB765291": "Irrigation System",
    "000000D0-0000-1000-8000-0026BB765291": "Valve",
    "00000110-0000-1000-8000-0026BB765291": "Camera",
    "00000121-0000-1000-8000-0026BB765291": "Doorbell",
}

# Alias table. Only characteristics listed here show up in the cached
# accessory status map.
CHARACTERISTIC_ALIASES = {
    # === CONTROL ===
    "00000025-0000-1000-8000-0026BB765291": "Power State",
    "00000008-0000-1000-8000-0026BB765291": "Brightness",
    "00000013-0000-1000-8000-0026BB765291": "Hue",
    "0000002F-0000-1000-8000-0026BB765291": "Saturation",
    "000000CE-0000-1000-8000-0026BB765291": "Color Temperature",
    "000000B0-0000-1000-8000-0026BB765291": "Active",
    "000000D2-0000-1000-8000-0026BB765291": "In Use",

    # === CLIMATE ===
    "00000011-0000-1000-8000-0026BB765291": "Current Temperature",
    "00000035-0000-1000-8000-0026BB765291": "Target Temperature",
    "00000010-0000-1000-8000-0026BB765291": "Current Relative Humidity",
    "00000034-0000-1000-8000-0026BB765291": "Target Relative Humidity",
    "0000000F-0000-1000-8000-0026BB765291": "Current Heating Cooling",
    "00000033-0000-1000-8000-0026BB765291": "Target Heating Cooling",

    # === SENSORS ===
    "00000022-0000-1000-8000-0026BB765291": "Motion Detected",
    "0000006A-0000-1000-8000-0026BB765291": "Contact Sensor State",
    "0000006B-0000-1000-8000-0026BB765291": "Current Light Level",
    "00000024-0000-1000-8000-0026BB765291": "Obstruction Detected",

    # === BATTERY ===
    "00000068-0000-1000-8000-0026BB765291": "Battery Level",
    "00000079-0000-1000-8000-0026BB765291": "Status Low Battery",

    # === DOORS & LOCKS ===
    "0000000E-0000-1000-8000-0026BB765291": "Current Door State",
    "00000032-0000-1000-8000-0026BB765291": "Target Door State",
    "0000001D-0000-1000-8000-0026BB765291": "Lock Current State",
    "0000001E-0000-1000-8000-0026BB765291": "Lock Target State",
}

CATEGORIES = (
    "lightbulb",
    "fan",
    "outlet",
    "switch",
    "thermostat",
    "sensor",
    "door",
    "door_lock",
    "garage_door",
    "window",
    "window_covering",
    "camera",
    "doorbell",
    "air_purifier",
    "sprinkler",
    "other",
)

# Primary service type -> accessory category
SERVICE_CATEGORIES = {
    "00000043-0000-1000-8000-0026BB765291": "lightbulb",
    "00000040-0000-1000-8000-0026BB765291": "fan",
    "000000B7-0000-1000-8000-0026BB765291": "fan",
    "00000047-0000-1000-8000-0026BB765291": "outlet",
    "00000049-0000-1000-8000-0026BB765291": "switch",
    "0000004A-0000-1000-8000-0026BB765291": "thermostat",
    "00000081-0000-1000-8000-0026BB765291": "door",
    "00000045-0000-1000-8000-0026BB765291": "door_lock",
    "00000041-0000-1000-8000-0026BB765291": "garage_door",
    "0000008B-0000-1000-8000-0026BB765291": "window",
    "0000008C-0000-1000-8000-0026BB765291": "window_covering",
    "00000110-0000-1000-8000-0026BB765291": "camera",
    "00000121-0000-1000-8000-0026BB765291": "doorbell",
    "000000BB-0000-1000-8000-0026BB765291": "air_purifier",
    "000000CF-0000-1000-8000-0026BB765291": "sprinkler",
    "0000007F-0000-1000-8000-0026BB765291": "sensor",
    "00000080-0000-1000-8000-0026BB765291": "sensor",
    "00000082-0000-1000-8000-0026BB765291": "sensor",
    "00000083-0000-1000-8000-0026BB765291": "sensor",
    "00000084-0000-1000-8000-0026BB765291": "sensor",
    "00000085-0000-1000-8000-0026BB765291": "sensor",
    "00000086-0000-1000-8000-0026BB765291": "sensor",
    "00000087-0000-1000-8000-0026BB765291": "sensor",
    "0000008A-0000-1000-8000-0026BB765291": "sensor",
    "0000008D-0000-1000-8000-0026BB765291": "sensor",
    "00000097-0000-1000-8000-0026BB765291": "sensor",
}


def characteristic_alias(type_id: str) -> Optional[str]:
    """Return the registered alias for a characteristic type, or None."""
    return CHARACTERISTIC_ALIASES.get(type_id)


def status_key(alias: str) -> str:
    """Convert an alias to its key in the accessory status map."""
    return alias.lower().replace(" ", "_")


def get_service_name(type_id: str) -> str:
    """Convert HomeKit service UUID to human-readable name."""
    return HOMEKIT_SERVICES.get(type_id.upper(), type_id)


def category_name(category: Optional[str]) -> str:
    """Clamp a provider category tag to the closed category set."""
    if category in CATEGORIES:
        return category
    return "other"


def category_for_services(service_types: Iterable[str]) -> str:
    """Derive an accessory category from its service types.

    Sensor services are common companions on other devices (a thermostat
    usually also exposes a temperature sensor), so any non-sensor match
    wins over a sensor match.
    """
    fallback = "other"
    for service_type in service_types:
        category = SERVICE_CATEGORIES.get(service_type.upper())
        if category is None:
            continue
        if category != "sensor":
            return category
        fallback = category
    return fallback
