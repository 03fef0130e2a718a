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
"""JSON-safe normalization of device graph values."""

import math
from decimal import Decimal
from typing import Any


def sanitize_value(value: Any) -> Any:
    """Return a JSON-safe version of a characteristic value.

    Returns None when the field should be dropped: the value is missing or
    is a non-finite number (NaN and infinities have no JSON encoding).
    Booleans, integers, strings and finite floats pass through unchanged;
    any other type is stringified instead of failing serialization.
    """
    if value is None:
        return None
    if isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return float(value) if value.is_finite() else None
    return str(value)
