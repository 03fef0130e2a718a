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
"""REST route handlers for Resty Home.

GET endpoints serve from the DeviceGraphCache, except accessory detail which
reads the live device graph. POST endpoints (set characteristic, execute
scene) act on the live device graph and respond once the provider has
finished.

Endpoints:
    GET  /health                                  - Health check
    GET  /homes                                   - List all homes
    GET  /homes/{home_id}/rooms                   - List rooms (cached)
    GET  /homes/{home_id}/accessories             - List accessories (cached)
    GET  /homes/{home_id}/accessories/{id}        - Accessory detail (live)
    POST /homes/{home_id}/accessories/{id}/set    - Set a characteristic
    GET  /homes/{home_id}/scenes                  - List scenes (cached)
    POST /homes/{home_id}/scenes/{id}/execute     - Execute a scene
"""

import logging
import math
from typing import Any, Dict, List, Optional

from .cache import DeviceGraphCache, room_name
from .errors import InvalidRequest, ResourceNotFound, UpstreamFailure
from .graph import Accessory, Characteristic, WriteError
from .homekit_uuids import category_name, characteristic_alias, get_service_name
from .sanitize import sanitize_value
from .server import HTTPServer, Request

logger = logging.getLogger(__name__)


def display_name(characteristic: Characteristic) -> str:
    """Registered alias, falling back to the provider's description."""
    return characteristic_alias(characteristic.type) or characteristic.description


def find_characteristic(accessory: Accessory, query: str) -> Optional[Characteristic]:
    """Find a characteristic by alias, type id or description.

    Matching is case-insensitive. Services are searched in order, and the
    characteristics of each service in order; the first match wins, so two
    characteristics sharing an alias resolve to the first one.
    """
    wanted = query.lower()
    for service in accessory.services:
        for characteristic in service.characteristics:
            alias = characteristic_alias(characteristic.type)
            if alias is not None and alias.lower() == wanted:
                return characteristic
            if characteristic.type.lower() == wanted:
                return characteristic
            if characteristic.description and characteristic.description.lower() == wanted:
                return characteristic
    return None


def available_characteristics(accessory: Accessory) -> List[str]:
    return [
        f"{display_name(characteristic)} ({characteristic.type})"
        for service in accessory.services
        for characteristic in service.characteristics
    ]


def characteristic_detail(characteristic: Characteristic) -> Dict[str, Any]:
    detail = {
        "description": display_name(characteristic),
        "type": characteristic.type,
        "writable": bool(characteristic.writable),
        "readable": bool(characteristic.readable),
    }

    try:
        value = sanitize_value(characteristic.read_value())
    except Exception as e:
        logger.debug(f"Could not read {characteristic!r}: {e}")
        value = None
    if value is not None:
        detail["value"] = value

    minimum = sanitize_value(characteristic.min_value)
    if minimum is not None:
        detail["min"] = minimum
    maximum = sanitize_value(characteristic.max_value)
    if maximum is not None:
        detail["max"] = maximum
    if characteristic.units:
        detail["units"] = characteristic.units

    return detail


def accessory_detail(accessory: Accessory) -> Dict[str, Any]:
    """Full, uncached view of an accessory with all services."""
    services = [
        {
            "name": service.name or get_service_name(service.type),
            "type": service.type,
            "characteristics": [characteristic_detail(c) for c in service.characteristics],
        }
        for service in accessory.services
    ]

    return {
        "id": accessory.id,
        "name": accessory.name,
        "room": room_name(accessory),
        "manufacturer": accessory.manufacturer or "Unknown",
        "model": accessory.model or "Unknown",
        "reachable": bool(accessory.reachable),
        "category": category_name(accessory.category),
        "services": services,
    }


def register_routes(server: HTTPServer, cache: DeviceGraphCache):
    """Register all API routes.

    Args:
        server: HTTPServer instance
        cache: DeviceGraphCache serving reads and live lookups
    """

    def require_home(home_id: str) -> str:
        name = cache.get_home_name(home_id)
        if name is None:
            raise ResourceNotFound(f"Home not found: {home_id}")
        return name

    def require_accessory(home_id: str, accessory_id: str) -> Accessory:
        accessory = cache.get_accessory(home_id, accessory_id)
        if accessory is None:
            raise ResourceNotFound(f"Accessory not found: {accessory_id}")
        return accessory

    @server.get("/health")
    async def health(request: Request):
        return {
            "status": "ok",
            "homes": cache.home_count,
            "total_accessories": cache.total_accessory_count,
            "cache_age_seconds": cache.cache_age_seconds(),
        }

    @server.get("/homes")
    async def get_homes(request: Request):
        return {"homes": cache.get_homes()}

    @server.get("/homes/{home_id}/rooms")
    async def get_rooms(request: Request, home_id: str):
        name = require_home(home_id)
        return {"home": name, "rooms": cache.get_rooms(home_id) or []}

    @server.get("/homes/{home_id}/accessories")
    async def get_accessories(request: Request, home_id: str):
        name = require_home(home_id)
        return {"home": name, "accessories": cache.get_accessories(home_id) or []}

    @server.get("/homes/{home_id}/accessories/{accessory_id}")
    async def get_accessory(request: Request, home_id: str, accessory_id: str):
        require_home(home_id)
        return accessory_detail(require_accessory(home_id, accessory_id))

    @server.post("/homes/{home_id}/accessories/{accessory_id}/set")
    async def set_characteristic(request: Request, home_id: str, accessory_id: str):
        require_home(home_id)
        accessory = require_accessory(home_id, accessory_id)

        body = request.json()
        if not isinstance(body, dict):
            raise InvalidRequest("Request body required")

        query = body.get("characteristic")
        if not isinstance(query, str):
            raise InvalidRequest("Missing 'characteristic' field")
        if body.get("value") is None:
            raise InvalidRequest("Missing 'value' field")

        value = body["value"]
        if isinstance(value, (dict, list)) or (isinstance(value, float) and not math.isfinite(value)):
            raise InvalidRequest("'value' must be a boolean, number or string")

        characteristic = find_characteristic(accessory, query)
        if characteristic is None:
            raise ResourceNotFound(
                f"Characteristic not found: {query}",
                available_characteristics=available_characteristics(accessory),
            )

        if not characteristic.writable:
            raise InvalidRequest(f"Characteristic is not writable: {query}")

        try:
            await characteristic.write(value)
        except WriteError as e:
            logger.warning(f"Set {display_name(characteristic)} on {accessory.name} failed: {e}")
            raise UpstreamFailure(f"Failed to set value: {e}")

        logger.info(f"Set {accessory.name} {display_name(characteristic)} = {value!r}")
        return {
            "success": True,
            "accessory": accessory.name,
            "characteristic": display_name(characteristic),
            "value": value,
        }

    @server.get("/homes/{home_id}/scenes")
    async def get_scenes(request: Request, home_id: str):
        name = require_home(home_id)
        return {"home": name, "scenes": cache.get_scenes(home_id) or []}

    @server.post("/homes/{home_id}/scenes/{scene_id}/execute")
    async def execute_scene(request: Request, home_id: str, scene_id: str):
        require_home(home_id)
        home = cache.get_home(home_id)
        scene = cache.get_scene(home_id, scene_id)
        if home is None or scene is None:
            raise ResourceNotFound(f"Scene not found: {scene_id}")

        try:
            await home.execute_scene(scene)
        except WriteError as e:
            logger.warning(f"Scene {scene.name} failed: {e}")
            raise UpstreamFailure(f"Failed to execute scene: {e}")

        return {"success": True, "scene": scene.name}
