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
Health polling for services: runs a service's health check command at its
configured interval until it succeeds or the retry budget is used up.
"""
import threading
from typing import Optional

import structlog
from tenacity import (
    RetryError,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    stop_when_event_set,
    wait_fixed,
)

from ..exceptions import HealthCheckExhausted, StackInterrupted
from ..MODELS.service_definition import ServiceSpec
from ..MODELS.service_state import HealthStatus, ServiceState
from ..RUNNERS.base_runner import CheckResult, ServiceRunner

logger = structlog.get_logger()


class HealthPoller:
    """
    Waits for services to report healthy.

    One poller is shared by every service of a stack; each call to
    :meth:`wait_until_healthy` is an independent polling loop that suspends
    between checks and wakes early when ``stop_event`` is set.
    """

    def __init__(self, stop_event: Optional[threading.Event] = None):
        """
        :param stop_event: Set to cancel every polling loop.
        """
        self.stop_event = stop_event or threading.Event()

    def _sleep(self, seconds: float) -> None:
        self.stop_event.wait(seconds)

    def wait_until_healthy(
        self,
        spec: ServiceSpec,
        runner: ServiceRunner,
        state: Optional[ServiceState] = None,
    ) -> CheckResult:
        """
        Blocks until the service's health check passes.

        Services without a health check, or with a disabled one, are healthy
        immediately.

        Args:
            spec: The service to poll.
            runner: Runner that executes the check.
            state: Runtime state updated with the latest check output.

        Returns:
            The successful check result.

        Raises:
            HealthCheckExhausted: After ``retries`` failed checks.
            StackInterrupted: If the stack is stopped while polling.
        """
        if not spec.has_healthcheck:
            return CheckResult(success=True)

        hc = spec.healthcheck
        if state is not None:
            state.health = HealthStatus.STARTING

        if hc.start_period > 0 and self.stop_event.wait(hc.start_period):
            raise StackInterrupted(f"Stopped while waiting for {spec.name}")

        def attempt() -> CheckResult:
            if self.stop_event.is_set():
                raise StackInterrupted(f"Stopped while waiting for {spec.name}")
            result = runner.run_check(hc, hc.timeout)
            if state is not None:
                state.last_output = result.output
            if not result.success:
                logger.debug("healthcheck_failed", service=spec.name, output=result.output)
            return result

        retrying = Retrying(
            stop=stop_after_attempt(hc.attempts) | stop_when_event_set(self.stop_event),
            wait=wait_fixed(hc.interval),
            retry=retry_if_result(lambda result: not result.success),
            sleep=self._sleep,
        )

        try:
            result = retrying(attempt)
        except RetryError as e:
            if self.stop_event.is_set():
                raise StackInterrupted(f"Stopped while waiting for {spec.name}") from e
            last = e.last_attempt.result()
            logger.warning(
                "healthcheck_exhausted",
                service=spec.name,
                attempts=e.last_attempt.attempt_number,
                output=last.output,
            )
            raise HealthCheckExhausted(spec.name, e.last_attempt.attempt_number, last.output) from e

        logger.info("service_healthy", service=spec.name)
        return result
