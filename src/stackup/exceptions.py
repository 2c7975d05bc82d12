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
Errors raised while loading, sequencing and running a stack.
"""
from typing import List, Optional


class StackupError(Exception):
    """Base class for every error raised by stackup."""


class DescriptorError(StackupError):
    """The descriptor is malformed or refers to services that do not exist."""


class CycleError(DescriptorError):
    """
    The dependency graph contains a cycle and cannot be ordered.

    :param cycle: Service names along the cycle, first name repeated at the end.
    """

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.cycle)}")


class HealthCheckExhausted(StackupError):
    """A service never reported healthy within its retry budget."""

    def __init__(self, service: str, attempts: int, last_output: str = ""):
        self.service = service
        self.attempts = attempts
        self.last_output = last_output
        message = f"Service {service} is unhealthy after {attempts} attempt(s)"
        if last_output:
            message += f": {last_output}"
        super().__init__(message)


class ImagePullError(StackupError):
    """The image for a service could not be pulled."""

    def __init__(self, image: str, reason: Optional[str] = None):
        self.image = image
        super().__init__(f"Failed to pull image {image}" + (f": {reason}" if reason else ""))


class ServiceStartError(StackupError):
    """A runner could not launch its service."""


class StackInterrupted(StackupError):
    """Waiting was cancelled because the stack is shutting down."""
