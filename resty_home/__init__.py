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
"""Resty Home - local REST API for a smart-home device graph."""

from .__version__ import __version__

__author__ = "Resty Home Contributors"
__description__ = "Local REST API for a smart-home device graph"

from .cache import DeviceGraphCache
from .errors import ApiError, InvalidRequest, MalformedRequest, ResourceNotFound, UpstreamFailure
from .graph import (
    Accessory,
    Characteristic,
    DeviceGraph,
    Home,
    Room,
    Scene,
    Service,
    WriteError,
    demo_graph,
)
from .routes import register_routes
from .sanitize import sanitize_value
from .server import HTTPServer
from . import homekit_uuids

__all__ = [
    "__version__",
    "DeviceGraphCache",
    "ApiError",
    "InvalidRequest",
    "MalformedRequest",
    "ResourceNotFound",
    "UpstreamFailure",
    "Accessory",
    "Characteristic",
    "DeviceGraph",
    "Home",
    "Room",
    "Scene",
    "Service",
    "WriteError",
    "demo_graph",
    "register_routes",
    "sanitize_value",
    "HTTPServer",
    "homekit_uuids",
]
