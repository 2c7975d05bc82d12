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
Restart supervision: watches running services for exits and restarts them
according to their restart policy with exponential backoff.
"""
import threading
import time
from typing import Callable, Dict, Optional

import structlog

from ..exceptions import StackupError
from ..MODELS.service_definition import RestartPolicy
from ..MODELS.service_state import ServiceState, ServiceStatus
from ..RUNNERS.base_runner import ServiceRunner

logger = structlog.get_logger()


def should_restart(policy: RestartPolicy, exit_code: Optional[int]) -> bool:
    """
    Decides whether an exited service is started again.

    Args:
        policy: The service's restart policy.
        exit_code: Exit code of the run that just ended.

    Returns:
        True if the service should be restarted.
    """
    if policy == RestartPolicy.ALWAYS:
        return True
    if policy == RestartPolicy.ON_FAILURE:
        return exit_code is not None and exit_code != 0
    return False


class RestartSupervisor:
    """
    Observes supervised runners from a background thread and applies the
    restart policy when one of them exits.

    Restarts wait ``restart_delay`` seconds, doubling after every restart up
    to ``restart_max_delay``; the delay resets once a service has stayed up
    for ``restart_reset_after`` seconds.
    """

    def __init__(
        self,
        runners: Dict[str, ServiceRunner],
        states: Dict[str, ServiceState],
        stop_event: Optional[threading.Event] = None,
        poll_interval: float = 1.0,
        restart_delay: float = 1.0,
        restart_max_delay: float = 30.0,
        restart_reset_after: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.runners = runners
        self.states = states
        self.stop_event = stop_event or threading.Event()
        self.poll_interval = poll_interval
        self.restart_delay = restart_delay
        self.restart_max_delay = restart_max_delay
        self.restart_reset_after = restart_reset_after
        self.clock = clock
        self.thread: Optional[threading.Thread] = None

        self._lock = threading.Lock()
        self._watched: Dict[str, float] = {}  # name -> time the current run started
        self._delays: Dict[str, float] = {}
        self._restart_at: Dict[str, float] = {}

    def start(self) -> None:
        """
        Starts the supervision thread.
        """
        if self.thread is not None and self.thread.is_alive():
            return
        self.thread = threading.Thread(target=self._monitor_loop, name="stackup-supervisor", daemon=True)
        self.thread.start()

    def stop(self) -> None:
        """
        Stops supervising; nothing is restarted after this returns.
        """
        self.stop_event.set()
        with self._lock:
            self._watched.clear()
            self._restart_at.clear()
        if self.thread is not None:
            self.thread.join(timeout=max(self.poll_interval * 2, 1.0))

    def watch(self, name: str) -> None:
        """Begin supervising a service that has just been started."""
        with self._lock:
            self._watched[name] = self.clock()
            self._delays.setdefault(name, self.restart_delay)

    def unwatch(self, name: str) -> None:
        with self._lock:
            self._watched.pop(name, None)
            self._restart_at.pop(name, None)

    def is_watching(self, name: str) -> bool:
        with self._lock:
            return name in self._watched

    def _monitor_loop(self) -> None:
        while not self.stop_event.wait(self.poll_interval):
            with self._lock:
                names = list(self._watched)
            for name in names:
                self.check(name)

    def check(self, name: str) -> None:
        """
        Inspects one service and restarts it if it exited and its policy allows.

        Args:
            name: Service name.
        """
        if self.stop_event.is_set() or not self.is_watching(name):
            return

        runner = self.runners[name]
        state = self.states[name]
        now = self.clock()

        if runner.is_running():
            with self._lock:
                started = self._watched.get(name, now)
                if now - started >= self.restart_reset_after:
                    self._delays[name] = self.restart_delay
            return

        with self._lock:
            scheduled = name in self._restart_at

        if not scheduled:
            exit_code = runner.exit_code()
            state.exit_code = exit_code
            spec = runner.spec

            if not should_restart(spec.restart, exit_code):
                logger.info("service_exited", service=name, exit_code=exit_code)
                state.status = ServiceStatus.EXITED
                self.unwatch(name)
                return

            if spec.max_restarts and state.restart_count >= spec.max_restarts:
                logger.warning(
                    "restart_limit_reached", service=name, restarts=state.restart_count, exit_code=exit_code
                )
                state.status = ServiceStatus.EXITED
                self.unwatch(name)
                return

            delay = self._delays.get(name, self.restart_delay)
            logger.info("service_restart_scheduled", service=name, exit_code=exit_code, delay=delay)
            with self._lock:
                if name in self._watched:
                    self._restart_at[name] = now + delay

        with self._lock:
            restart_at = self._restart_at.get(name)
        if restart_at is None or now < restart_at:
            return
        self._restart(name, runner, state)

    def _restart(self, name: str, runner: ServiceRunner, state: ServiceState) -> None:
        with self._lock:
            self._restart_at.pop(name, None)
            delay = self._delays.get(name, self.restart_delay)
            self._delays[name] = min(delay * 2, self.restart_max_delay)

        logger.info("service_restarting", service=name, attempt=state.restart_count + 1)
        state.record_restart()
        try:
            runner.start()
        except StackupError as e:
            logger.error("service_restart_failed", service=name, error=str(e))
            state.error = str(e)
            return

        state.status = ServiceStatus.RUNNING
        state.exit_code = None
        with self._lock:
            if name in self._watched:
                self._watched[name] = self.clock()
