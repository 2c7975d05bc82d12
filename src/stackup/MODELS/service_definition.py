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
Models for defining services, including restart policies, health checks and ports.
"""
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict


class RestartPolicy(str, Enum):
    """
    Conditions under which an exited service is started again.
    """
    NEVER = "never"
    ON_FAILURE = "on-failure"
    ALWAYS = "always"


class DependencyCondition(str, Enum):
    """
    What a dependent waits for before it starts.
    """
    SERVICE_STARTED = "service_started"
    SERVICE_HEALTHY = "service_healthy"


class HealthCheck(BaseModel):
    """
    A command run periodically to decide whether a service is ready.

    ``test`` uses the Docker vector form: ``["CMD", ...]`` runs the arguments
    directly, ``["CMD-SHELL", "..."]`` runs through a shell and ``["NONE"]``
    disables the check.
    """
    model_config = ConfigDict(frozen=True)

    test: Tuple[str, ...] = ()
    interval: float = 30.0
    timeout: float = 30.0
    retries: int = 3
    start_period: float = 0.0
    disabled: bool = False

    @property
    def enabled(self) -> bool:
        return not self.disabled and bool(self.test) and self.test[0] != "NONE"

    @property
    def attempts(self) -> int:
        """Number of checks before the service is declared unhealthy."""
        return max(self.retries, 1)

    def resolve_command(self) -> Tuple[Union[List[str], str], bool]:
        """
        Translates ``test`` into something a runner can execute.

        :return: The command (argv list or shell string) and whether it needs a shell.
        """
        kind, args = self.test[0], list(self.test[1:])
        if kind == "CMD-SHELL":
            return " ".join(args), True
        if kind == "CMD":
            return args, False
        return list(self.test), False


class PortMapping(BaseModel):
    """
    A published port: ``[host_ip:][host:]container[/protocol]``.
    """
    model_config = ConfigDict(frozen=True)

    container: int
    host: Optional[int] = None
    host_ip: Optional[str] = None
    protocol: str = "tcp"

    def __str__(self) -> str:
        text = str(self.container)
        if self.host is not None:
            text = f"{self.host}:{text}"
        if self.host_ip:
            text = f"{self.host_ip}:{text}"
        if self.protocol != "tcp":
            text = f"{text}/{self.protocol}"
        return text


class ServiceSpec(BaseModel):
    """
    The full definition of a single service as declared in the descriptor.
    Created once at load time and never modified afterwards.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    image: str = ""

    # Execution
    command: Tuple[str, ...] = ()
    entrypoint: Tuple[str, ...] = ()
    working_dir: Optional[str] = None
    container_name: Optional[str] = None

    # Environment
    environment: Dict[str, str] = {}
    env_file: Tuple[str, ...] = ()

    # Networking
    ports: Tuple[PortMapping, ...] = ()

    # Lifecycle
    restart: RestartPolicy = RestartPolicy.NEVER
    max_restarts: int = 0
    healthcheck: Optional[HealthCheck] = None
    depends_on: Dict[str, DependencyCondition] = {}
    profiles: Tuple[str, ...] = ()

    # Metadata
    labels: Dict[str, str] = {}

    @property
    def full_command(self) -> List[str]:
        """ENTRYPOINT followed by CMD, as Docker combines them."""
        return list(self.entrypoint) + list(self.command)

    @property
    def has_healthcheck(self) -> bool:
        return self.healthcheck is not None and self.healthcheck.enabled

    def is_enabled(self, profiles) -> bool:
        """
        Whether the service takes part in a run with the given profiles.

        :param profiles: Profiles selected for the run.
        :return: True for services without profiles or with a selected one.
        """
        if not self.profiles:
            return True
        return any(p in profiles for p in self.profiles)
