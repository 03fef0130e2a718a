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
"""Request error taxonomy for the REST API.

Route handlers raise these; the server turns them into a JSON response of
the form ``{"error": detail, **extra}`` with the exception's status code.
"""

from typing import Any, Dict, Optional


class ApiError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, detail: str, status_code: Optional[int] = None, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        self.extra: Dict[str, Any] = extra

    def to_body(self) -> Dict[str, Any]:
        body = {"error": self.detail}
        body.update(self.extra)
        return body


class MalformedRequest(ApiError):
    """Request line or headers could not be parsed."""
    status_code = 400


class InvalidRequest(ApiError):
    """Well-formed request that asks for something not allowed."""
    status_code = 400


class ResourceNotFound(ApiError):
    """Unknown home, accessory, scene, characteristic or route."""
    status_code = 404


class UpstreamFailure(ApiError):
    """The device graph provider reported an error."""
    status_code = 500
