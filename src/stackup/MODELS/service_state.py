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
Mutable runtime state kept for each service while a stack is up.
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class ServiceStatus(str, Enum):
    """Lifecycle status of a service."""

    PENDING = "pending"
    STARTING = "starting"
    RUNNING = "running"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    BLOCKED = "blocked"
    FAILED = "failed"
    EXITED = "exited"
    STOPPED = "stopped"


class HealthStatus(str, Enum):
    """Health status of a service."""

    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NONE = "none"  # No health check configured


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ServiceState:
    """
    Runtime information for one service.

    ``started`` fires once the service process or container has launched.
    ``settled`` fires once the service is ready or has failed for good; both
    are one-shot and are read by the service's direct dependents.
    """

    name: str
    status: ServiceStatus = ServiceStatus.PENDING
    health: HealthStatus = HealthStatus.NONE
    ready: bool = False
    failed: bool = False
    error: Optional[str] = None
    exit_code: Optional[int] = None
    last_output: str = ""
    restart_count: int = 0
    last_restart: Optional[str] = None
    started_at: Optional[str] = None
    started: threading.Event = field(default_factory=threading.Event, repr=False)
    settled: threading.Event = field(default_factory=threading.Event, repr=False)

    def mark_started(self) -> None:
        self.status = ServiceStatus.STARTING
        self.started_at = _now()
        self.started.set()

    def mark_ready(self, healthy: bool) -> None:
        """Record that the service can be depended upon."""
        self.ready = True
        if healthy:
            self.status = ServiceStatus.HEALTHY
            self.health = HealthStatus.HEALTHY
        else:
            self.status = ServiceStatus.RUNNING
        self.started.set()
        self.settled.set()

    def mark_failed(self, status: ServiceStatus, error: str) -> None:
        """Record a terminal failure and release anything waiting on this service."""
        self.failed = True
        self.status = status
        self.error = error
        if status == ServiceStatus.UNHEALTHY:
            self.health = HealthStatus.UNHEALTHY
        self.started.set()
        self.settled.set()

    def record_restart(self) -> None:
        self.restart_count += 1
        self.last_restart = _now()
