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
Utilities for string interpolation using environment variables.
"""
import re
from typing import Dict

import structlog

from ..exceptions import DescriptorError

logger = structlog.get_logger()

# $$, ${VAR}, ${VAR<op><arg>} with op one of :- - :+ + :? ?, or bare $VAR
_PATTERN = re.compile(
    r"\$(?:(?P<escaped>\$)"
    r"|\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<op>:?[-+?])(?P<arg>[^}]*))?\}"
    r"|(?P<named>[A-Za-z_][A-Za-z0-9_]*))"
)


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings.
    Supports ``$VAR``, ``${VAR}``, ``${VAR:-default}``, ``${VAR-default}``,
    ``${VAR:+value}``, ``${VAR+value}``, ``${VAR:?message}`` and ``$$``.
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.
        An unset variable without a default becomes an empty string.

        :param template: The string containing ``${VAR}`` placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises DescriptorError: For ``${VAR:?message}`` when VAR is unset or empty.
        """
        def replace(match):
            if match.group("escaped"):
                return "$"

            var_name = match.group("braced") or match.group("named")
            op = match.group("op")
            arg = match.group("arg") or ""
            value = context.get(var_name)

            if op == ":-":
                return value if value else arg
            if op == "-":
                return value if value is not None else arg
            if op == ":+":
                return arg if value else ""
            if op == "+":
                return arg if value is not None else ""
            if op in (":?", "?"):
                missing = not value if op == ":?" else value is None
                if missing:
                    raise DescriptorError(arg or f"Required variable {var_name} is not set")
                return value

            if value is None:
                logger.warning("variable_not_set", variable=var_name)
                return ""
            return value

        return _PATTERN.sub(replace, template)
