# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Parsing of Docker style durations such as ``3s``, ``1m30s`` or ``250ms``.
"""
import re
from typing import Union

from ..exceptions import DescriptorError

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Union[str, int, float, None], default: float = 0.0) -> float:
    """
    Converts a duration to seconds.

    Numbers, and strings holding only a number, are taken as seconds.

    :param value: The duration from the descriptor.
    :param default: Returned when the value is missing.
    :return: Seconds as a float.
    :raises DescriptorError: If the value is not a valid duration.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        raise DescriptorError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise DescriptorError(f"Invalid duration: {value!r}")
    return total
