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
Execution of services as native processes with log redirection and lifecycle management.
"""
import os
import subprocess
import threading
from typing import IO, Optional

import psutil
import structlog

from ..exceptions import ServiceStartError
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MODELS.service_definition import HealthCheck, ServiceSpec
from .base_runner import CheckResult, Runtime, ServiceRunner

logger = structlog.get_logger()

_OUTPUT_LIMIT = 500


class ProcessRunner(ServiceRunner):
    """
    Runs a service's ``entrypoint + command`` as a host process.
    """
    def __init__(self, spec: ServiceSpec, base_dir: str = ".", log_file: Optional[str] = None):
        """
        Initializes the process runner.

        Args:
            spec: Definition of the service.
            base_dir: Directory that relative working dirs and env files are resolved against.
            log_file: Path where stdout/stderr are appended. Defaults to
                ``<base_dir>/.stackup/logs/<service>.log``.
        """
        super().__init__(spec)
        self.base_dir = base_dir
        self.env_manager = EnvironmentManager(base_dir)
        self.log_file = log_file or os.path.join(base_dir, ".stackup", "logs", f"{spec.name}.log")
        self.process: Optional[subprocess.Popen] = None
        self._log_handle: Optional[IO[str]] = None
        self._lock = threading.Lock()

    @property
    def working_dir(self) -> Optional[str]:
        if not self.spec.working_dir:
            return self.base_dir
        return os.path.join(self.base_dir, self.spec.working_dir)

    def _environment(self):
        return self.env_manager.get_merged_environment(self.spec.environment, self.spec.env_file)

    def start(self) -> None:
        """
        Starts the process.

        Raises:
            ServiceStartError: If there is nothing to run or the command cannot be executed.
        """
        command = self.spec.full_command
        if not command:
            raise ServiceStartError(f"Service {self.name} has no command to run as a process")

        env = self._environment()
        working_dir = self.working_dir
        if working_dir and not os.path.exists(working_dir):
            os.makedirs(working_dir, exist_ok=True)

        with self._lock:
            self._close_log()
            log_dir = os.path.dirname(self.log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            self._log_handle = open(self.log_file, "a")

            logger.info("process_starting", service=self.name, command=" ".join(command))
            try:
                self.process = subprocess.Popen(
                    command,
                    env=env,
                    cwd=working_dir,
                    stdout=self._log_handle,
                    stderr=subprocess.STDOUT,
                    text=True,
                    shell=False,
                )
            except OSError as e:
                self._close_log()
                raise ServiceStartError(f"Service {self.name} failed to start: {e}") from e

    def stop(self, timeout: float = 10.0) -> None:
        """
        Terminates the process and all of its children, killing whatever is
        still alive after ``timeout`` seconds.

        Args:
            timeout: Seconds to wait for termination before killing.
        """
        with self._lock:
            if self.process is None:
                return
            if self.process.poll() is None:
                logger.info("process_stopping", service=self.name, pid=self.process.pid)
                try:
                    parent = psutil.Process(self.process.pid)
                    procs = parent.children(recursive=True) + [parent]
                except psutil.NoSuchProcess:
                    procs = []
                for proc in procs:
                    try:
                        proc.terminate()
                    except psutil.NoSuchProcess:
                        pass
                _, alive = psutil.wait_procs(procs, timeout=timeout)
                for proc in alive:
                    logger.warning("process_killed", service=self.name, pid=proc.pid)
                    try:
                        proc.kill()
                    except psutil.NoSuchProcess:
                        pass
            self.process.wait()
            self._close_log()

    def _close_log(self) -> None:
        if self._log_handle is not None:
            self._log_handle.close()
            self._log_handle = None

    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def exit_code(self) -> Optional[int]:
        if self.process is not None:
            return self.process.poll()
        return None

    def run_check(self, check: HealthCheck, timeout: float) -> CheckResult:
        """
        Runs the health check command on the host with the service's environment.

        Args:
            check: Health check of the service.
            timeout: Seconds before the check counts as failed.

        Returns:
            The check outcome.
        """
        command, use_shell = check.resolve_command()
        try:
            result = subprocess.run(
                command,
                shell=use_shell,
                env=self._environment(),
                cwd=self.working_dir,
                capture_output=True,
                timeout=timeout,
                text=True,
            )
        except subprocess.TimeoutExpired:
            return CheckResult(success=False, output="Health check timed out")
        except OSError as e:
            return CheckResult(success=False, output=str(e))

        if result.returncode == 0:
            return CheckResult(success=True, output=(result.stdout or "")[:_OUTPUT_LIMIT], exit_code=0)
        return CheckResult(
            success=False,
            output=(result.stderr or result.stdout or f"Exit code: {result.returncode}")[:_OUTPUT_LIMIT],
            exit_code=result.returncode,
        )


class ProcessRuntime(Runtime):
    """
    Runs every service of a stack as a host process.
    """
    def __init__(self, base_dir: str = "."):
        self.base_dir = base_dir

    def runner(self, spec: ServiceSpec) -> ProcessRunner:
        return ProcessRunner(spec, base_dir=self.base_dir)
