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
Common interface for launching a single service.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..MODELS.service_definition import HealthCheck, ServiceSpec


@dataclass
class CheckResult:
    """Outcome of one health check run."""

    success: bool
    output: str = ""
    exit_code: Optional[int] = None


class ServiceRunner(ABC):
    """
    Launches, inspects and stops one service.
    """

    def __init__(self, spec: ServiceSpec):
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    @abstractmethod
    def start(self) -> None:
        """Launch the service. Raises ServiceStartError or ImagePullError."""

    @abstractmethod
    def stop(self, timeout: float = 10.0) -> None:
        """Stop the service, forcefully once ``timeout`` seconds have passed."""

    @abstractmethod
    def is_running(self) -> bool:
        """Whether the service is currently up."""

    @abstractmethod
    def exit_code(self) -> Optional[int]:
        """Exit code of the last run, or None while running or never started."""

    @abstractmethod
    def run_check(self, check: HealthCheck, timeout: float) -> CheckResult:
        """Run the health check command once."""

    def status(self) -> str:
        """
        Gets the current status of the service.

        :return: Status string (e.g., 'running', 'stopped', 'exited(0)').
        """
        if self.is_running():
            return "running"
        code = self.exit_code()
        if code is None:
            return "stopped"
        return f"exited({code})"


class Runtime(ABC):
    """
    Creates runners for a project and owns resources shared between them.
    """

    @abstractmethod
    def runner(self, spec: ServiceSpec) -> ServiceRunner:
        """Build the runner for one service."""

    def teardown(self) -> None:
        """Release shared resources once every service has stopped."""
