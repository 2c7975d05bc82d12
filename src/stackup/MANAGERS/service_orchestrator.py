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
Orchestration for multiple services, managing dependencies and health.
"""
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import structlog

from ..CONFIG.settings import Settings, get_settings
from ..exceptions import HealthCheckExhausted, StackInterrupted, StackupError
from ..MODELS.orchestration_config import StackDescriptor
from ..MODELS.service_definition import DependencyCondition, ServiceSpec
from ..MODELS.service_state import ServiceState, ServiceStatus
from ..RUNNERS.base_runner import Runtime, ServiceRunner
from ..RUNNERS.dependency_resolver import DependencyResolver
from .health_monitor import HealthPoller
from .restart_supervisor import RestartSupervisor

logger = structlog.get_logger()

_WAIT_SLICE = 0.1


@dataclass
class UpResult:
    """Outcome of bringing a stack up."""

    order: List[str]
    states: Dict[str, ServiceState] = field(default_factory=dict)

    @property
    def failures(self) -> Dict[str, str]:
        """Services that did not come up, with the reason."""
        return {name: state.error or state.status.value for name, state in self.states.items() if state.failed}

    @property
    def ok(self) -> bool:
        return not self.failures


class StackOrchestrator:
    """
    Orchestrates multiple services based on their dependencies.

    Every selected service gets its own worker; a worker waits until each of
    its dependencies has settled, launches its service and polls its health.
    A service whose dependency failed is never started and is reported as
    blocked, while independent services carry on.
    """
    def __init__(self,
                 descriptor: StackDescriptor,
                 runtime: Runtime,
                 settings: Optional[Settings] = None):
        """
        Initializes the orchestrator.

        :param descriptor: The full stack descriptor.
        :param runtime: Creates the runner for each service.
        :param settings: Launcher settings; defaults to the environment's.
        """
        self.descriptor = descriptor
        self.runtime = runtime
        self.settings = settings or get_settings()
        self.resolver = DependencyResolver()
        self.stop_event = threading.Event()
        self.poller = HealthPoller(self.stop_event)

        self.order: List[str] = []
        self.runners: Dict[str, ServiceRunner] = {}
        self.states: Dict[str, ServiceState] = {}
        self.supervisor = RestartSupervisor(
            self.runners,
            self.states,
            stop_event=self.stop_event,
            poll_interval=self.settings.poll_interval,
            restart_delay=self.settings.restart_delay,
            restart_max_delay=self.settings.restart_max_delay,
            restart_reset_after=self.settings.restart_reset_after,
        )

    def plan(self, profiles: Iterable[str] = (), services: Iterable[str] = ()) -> StackDescriptor:
        """
        Validates the whole descriptor and returns the part selected for a run.

        :raises CycleError: If the dependency graph is cyclic.
        :raises DescriptorError: If the selection is inconsistent.
        """
        self.resolver.resolve_order(self.descriptor)
        return self.descriptor.select(profiles=profiles, services=services)

    def _runner(self, name: str) -> ServiceRunner:
        if name not in self.runners:
            self.runners[name] = self.runtime.runner(self.descriptor.services[name])
        return self.runners[name]

    def up(self, profiles: Iterable[str] = (), services: Iterable[str] = ()) -> UpResult:
        """
        Starts the selected services, each one once its dependencies are ready.

        :param profiles: Profiles enabling opt-in services.
        :param services: Restrict the run to these services and their dependencies.
        :return: The state of every started service.
        """
        active = self.plan(profiles, services)
        waves = self.resolver.start_waves(active)
        self.order = [name for wave in waves for name in wave]
        logger.info("stack_starting", project=self.descriptor.project, waves=waves)

        self.stop_event.clear()
        for name in self.order:
            self.states[name] = ServiceState(name)
            self._runner(name)
        self.supervisor.start()

        if self.order:
            with ThreadPoolExecutor(max_workers=len(self.order), thread_name_prefix="stackup") as pool:
                futures = [pool.submit(self._bring_up, active.services[name]) for name in self.order]
                try:
                    for future in as_completed(futures):
                        future.result()
                except BaseException:
                    # Leaving the pool joins every worker; let them unwind first.
                    self.stop_event.set()
                    raise

        result = UpResult(order=list(self.order), states={n: self.states[n] for n in self.order})
        if result.ok:
            logger.info("stack_started", project=self.descriptor.project, services=self.order)
        else:
            logger.warning("stack_degraded", project=self.descriptor.project, failures=result.failures)
        return result

    def _wait_for(self, event: threading.Event) -> None:
        while not event.wait(_WAIT_SLICE):
            if self.stop_event.is_set():
                raise StackInterrupted("Stack is shutting down")

    def _bring_up(self, spec: ServiceSpec) -> None:
        name = spec.name
        state = self.states[name]
        runner = self.runners[name]
        try:
            for dep, condition in spec.depends_on.items():
                dep_state = self.states[dep]
                if condition == DependencyCondition.SERVICE_STARTED:
                    self._wait_for(dep_state.started)
                else:
                    self._wait_for(dep_state.settled)
                if dep_state.failed:
                    logger.warning("service_blocked", service=name, dependency=dep)
                    state.mark_failed(ServiceStatus.BLOCKED, f"dependency {dep} is {dep_state.status.value}")
                    return

            if self.stop_event.is_set():
                raise StackInterrupted("Stack is shutting down")

            logger.info("service_starting", service=name)
            runner.start()
            state.mark_started()
            self.supervisor.watch(name)

            self.poller.wait_until_healthy(spec, runner, state)
            state.mark_ready(healthy=spec.has_healthcheck)
            logger.info("service_ready", service=name, status=state.status.value)
        except HealthCheckExhausted as e:
            logger.error("service_unhealthy", service=name, attempts=e.attempts)
            state.mark_failed(ServiceStatus.UNHEALTHY, str(e))
        except StackInterrupted as e:
            state.mark_failed(ServiceStatus.STOPPED, str(e))
        except StackupError as e:
            logger.error("service_failed", service=name, error=str(e))
            state.mark_failed(ServiceStatus.FAILED, str(e))
        except Exception as e:
            logger.exception("service_crashed", service=name)
            state.mark_failed(ServiceStatus.FAILED, str(e))
            raise

    def wait(self) -> None:
        """
        Blocks until the stack is stopped.
        """
        while not self.stop_event.wait(1.0):
            pass

    def down(self) -> None:
        """
        Stops all pollers and the supervisor, then every service in reverse
        start order.
        """
        self.stop_event.set()
        self.supervisor.stop()

        order = self.order or self.resolver.resolve_order(self.descriptor)
        for name in reversed(order):
            logger.info("service_stopping", service=name)
            try:
                self._runner(name).stop(timeout=self.settings.stop_timeout)
            except Exception as e:
                logger.error("service_stop_failed", service=name, error=str(e))
                continue
            if name in self.states:
                self.states[name].status = ServiceStatus.STOPPED
        self.runtime.teardown()
        logger.info("stack_stopped", project=self.descriptor.project)

    def ps(self) -> Dict[str, str]:
        """
        Returns the status of all services.

        :return: Service names and their statuses.
        """
        order = self.order or self.resolver.resolve_order(self.descriptor)
        status = {}
        for name in order:
            state = self.states.get(name)
            if state is not None and state.status in (ServiceStatus.BLOCKED, ServiceStatus.UNHEALTHY):
                status[name] = state.status.value
            else:
                status[name] = self._runner(name).status()
        return status
