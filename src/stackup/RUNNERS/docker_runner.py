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
Execution of services as Docker containers through the Docker Engine API.
"""
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, Optional

import docker
import structlog
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from ..exceptions import ImagePullError, ServiceStartError
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MODELS.service_definition import HealthCheck, ServiceSpec
from .base_runner import CheckResult, Runtime, ServiceRunner

logger = structlog.get_logger()

PROJECT_LABEL = "io.stackup.project"
SERVICE_LABEL = "io.stackup.service"

_RUNNING_STATES = {"running", "restarting"}
_OUTPUT_LIMIT = 500


class DockerRuntime(Runtime):
    """
    Runs every service of a stack as a container on a per-project bridge network.
    """
    def __init__(self, project: str, client: Optional[docker.DockerClient] = None, base_dir: str = "."):
        """
        :param project: Project name, used for container, network and label names.
        :param client: Docker client; created from the environment when omitted.
        :param base_dir: Directory that relative env_file paths are resolved against.
        """
        self.project = project
        self.base_dir = base_dir
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise ServiceStartError(f"Docker is not available: {e}") from e
        return self._client

    @property
    def network_name(self) -> str:
        return f"{self.project}_default"

    def ensure_network(self):
        """
        Returns the project network, creating it on first use.
        """
        try:
            return self.client.networks.get(self.network_name)
        except NotFound:
            logger.info("network_creating", network=self.network_name)
            return self.client.networks.create(
                self.network_name, driver="bridge", labels={PROJECT_LABEL: self.project}
            )

    def runner(self, spec: ServiceSpec) -> "DockerRunner":
        return DockerRunner(spec, self)

    def teardown(self) -> None:
        try:
            self.client.networks.get(self.network_name).remove()
            logger.info("network_removed", network=self.network_name)
        except NotFound:
            pass
        except APIError as e:
            logger.warning("network_remove_failed", network=self.network_name, error=str(e))


class DockerRunner(ServiceRunner):
    """
    Manages the container of one service.
    """
    def __init__(self, spec: ServiceSpec, runtime: DockerRuntime):
        super().__init__(spec)
        self.runtime = runtime
        self._check_pool: Optional[ThreadPoolExecutor] = None

    @property
    def container_name(self) -> str:
        return self.spec.container_name or f"{self.runtime.project}-{self.spec.name}-1"

    def _container(self):
        try:
            return self.runtime.client.containers.get(self.container_name)
        except NotFound:
            return None

    def _ensure_image(self) -> None:
        client = self.runtime.client
        try:
            client.images.get(self.spec.image)
            return
        except ImageNotFound:
            pass
        logger.info("image_pulling", service=self.name, image=self.spec.image)
        try:
            client.images.pull(self.spec.image)
        except (APIError, ImageNotFound) as e:
            raise ImagePullError(self.spec.image, str(e)) from e

    def _port_bindings(self) -> Dict[str, Any]:
        bindings: Dict[str, Any] = {}
        for port in self.spec.ports:
            key = f"{port.container}/{port.protocol}"
            if port.host_ip:
                bindings[key] = (port.host_ip, port.host)
            else:
                bindings[key] = port.host
        return bindings

    def start(self) -> None:
        """
        Pulls the image if needed, replaces any stale container of the same
        name, and starts a fresh one attached to the project network.
        """
        if not self.spec.image:
            raise ServiceStartError(f"Service {self.name} has no image")
        self._ensure_image()

        stale = self._container()
        if stale is not None:
            logger.info("container_replacing", service=self.name, container=self.container_name)
            stale.remove(force=True)

        # Host variables are not passed into the container.
        environment = EnvironmentManager(self.runtime.base_dir, inherit=False).get_merged_environment(
            self.spec.environment, self.spec.env_file
        )

        labels = dict(self.spec.labels)
        labels[PROJECT_LABEL] = self.runtime.project
        labels[SERVICE_LABEL] = self.name

        try:
            network = self.runtime.ensure_network()
            container = self.runtime.client.containers.create(
                self.spec.image,
                command=list(self.spec.command) or None,
                entrypoint=list(self.spec.entrypoint) or None,
                name=self.container_name,
                environment=environment,
                ports=self._port_bindings(),
                labels=labels,
                working_dir=self.spec.working_dir,
            )
            network.connect(container, aliases=[self.name])
            container.start()
        except APIError as e:
            raise ServiceStartError(f"Service {self.name} failed to start: {e}") from e
        logger.info("container_started", service=self.name, container=self.container_name)

    def stop(self, timeout: float = 10.0) -> None:
        container = self._container()
        if container is None:
            return
        logger.info("container_stopping", service=self.name, container=self.container_name)
        try:
            container.stop(timeout=int(timeout))
            container.remove(force=True)
        except NotFound:
            pass

    def is_running(self) -> bool:
        container = self._container()
        return container is not None and container.status in _RUNNING_STATES

    def exit_code(self) -> Optional[int]:
        container = self._container()
        if container is None or container.status in _RUNNING_STATES or container.status == "created":
            return None
        return container.attrs.get("State", {}).get("ExitCode")

    def run_check(self, check: HealthCheck, timeout: float) -> CheckResult:
        """
        Runs the health check inside the container with ``docker exec``.

        Checks share one worker thread per runner, so an ``exec`` that never
        returns holds up later checks of this service instead of adding threads.
        """
        container = self._container()
        if container is None:
            return CheckResult(success=False, output="Container not found")

        command, use_shell = check.resolve_command()
        if use_shell:
            command = ["/bin/sh", "-c", command]

        if self._check_pool is None:
            self._check_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"check-{self.name}")
        future = self._check_pool.submit(container.exec_run, command)
        try:
            exit_code, output = future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            return CheckResult(success=False, output="Health check timed out")
        except DockerException as e:
            return CheckResult(success=False, output=str(e))

        text = output.decode("utf-8", errors="replace") if isinstance(output, bytes) else str(output or "")
        return CheckResult(success=exit_code == 0, output=text[:_OUTPUT_LIMIT], exit_code=exit_code)
