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
Parsers for docker-compose style YAML descriptors.
"""
import os
import shlex
from typing import Any, Dict, List, Optional, Tuple

import structlog
import yaml
from dotenv import dotenv_values

from ..exceptions import DescriptorError
from ..MODELS.orchestration_config import StackDescriptor
from ..MODELS.service_definition import (
    DependencyCondition,
    HealthCheck,
    PortMapping,
    RestartPolicy,
    ServiceSpec,
)
from ..UTILS.durations import parse_duration
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = structlog.get_logger()

_RESTART_POLICIES = {
    "no": RestartPolicy.NEVER,
    "never": RestartPolicy.NEVER,
    "on-failure": RestartPolicy.ON_FAILURE,
    "always": RestartPolicy.ALWAYS,
    "unless-stopped": RestartPolicy.ALWAYS,
}


class ComposeParser:
    """
    Parser for docker-compose.yml files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: Variables used for interpolation. Defaults to the OS
            environment layered over the ``.env`` file next to the descriptor.
        """
        self.context = context

    def parse(self, compose_path: str, project: Optional[str] = None) -> StackDescriptor:
        """
        Parses a descriptor from a path.

        :param compose_path: Path to the compose file.
        :param project: Project name; defaults to the descriptor's directory name.
        :return: Parsed descriptor.
        """
        with open(compose_path, "r") as f:
            content = f.read()

        base_dir = os.path.dirname(os.path.abspath(compose_path))
        context = self.context
        if context is None:
            dotenv_path = os.path.join(base_dir, ".env")
            context = {}
            if os.path.exists(dotenv_path):
                context.update({k: v for k, v in dotenv_values(dotenv_path).items() if v is not None})
            context.update(os.environ)

        if project is None:
            project = os.path.basename(base_dir) or "default"
        return self.parse_from_string(content, project=project, context=context)

    def parse_from_string(
        self,
        content: str,
        project: str = "default",
        context: Optional[Dict[str, str]] = None,
    ) -> StackDescriptor:
        """
        Parses a descriptor from a string.

        :param content: YAML content of the compose file.
        :param project: Project name used to label what gets launched.
        :param context: Interpolation variables; defaults to the parser's context.
        :return: Parsed descriptor.
        :raises DescriptorError: If the content is not a valid descriptor.
        """
        if context is None:
            context = self.context if self.context is not None else dict(os.environ)
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise DescriptorError(f"Invalid YAML: {e}") from e
        data = self._interpolate(data, context)
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise DescriptorError("Descriptor must be a mapping")

        raw_services = data.get("services") or {}
        if not isinstance(raw_services, dict):
            raise DescriptorError("'services' must be a mapping")

        services = {}
        for name, spec in raw_services.items():
            name = str(name)
            services[name] = self._parse_service(name, spec or {})

        descriptor = StackDescriptor(project=project, services=services)
        logger.debug("descriptor_parsed", project=project, services=list(services))
        return descriptor

    def _interpolate(self, node: Any, context: Dict[str, str]) -> Any:
        """
        Substitutes variables in every string scalar of the parsed document.
        """
        if isinstance(node, str):
            return EnvironmentInterpolator.interpolate(node, context)
        if isinstance(node, dict):
            return {self._interpolate(k, context): self._interpolate(v, context) for k, v in node.items()}
        if isinstance(node, list):
            return [self._interpolate(item, context) for item in node]
        return node

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ServiceSpec:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceSpec instance.
        """
        if not isinstance(spec, dict):
            raise DescriptorError(f"Service {name} must be a mapping")

        image = spec.get("image") or ""
        command = self._to_argv(spec.get("command"))
        entrypoint = self._to_argv(spec.get("entrypoint"))
        if not image and not command and not entrypoint:
            raise DescriptorError(f"Service {name} has neither an image nor a command")

        restart, max_restarts = self._parse_restart(name, spec.get("restart"))

        return ServiceSpec(
            name=name,
            image=str(image),
            command=command,
            entrypoint=entrypoint,
            working_dir=spec.get("working_dir"),
            container_name=spec.get("container_name"),
            environment=self._parse_environment(spec.get("environment")),
            env_file=tuple(self._to_list(spec.get("env_file"))),
            ports=tuple(self._parse_port(name, p) for p in spec.get("ports") or []),
            restart=restart,
            max_restarts=max_restarts,
            healthcheck=self._parse_healthcheck(name, spec.get("healthcheck")),
            depends_on=self._parse_depends_on(name, spec.get("depends_on")),
            profiles=tuple(str(p) for p in self._to_list(spec.get("profiles"))),
            labels=self._parse_environment(spec.get("labels")),
        )

    def _parse_restart(self, name: str, value: Any) -> Tuple[RestartPolicy, int]:
        if value is None or value is False:
            return RestartPolicy.NEVER, 0
        text = str(value).strip()
        max_restarts = 0
        if text.startswith("on-failure:"):
            text, _, count = text.partition(":")
            try:
                max_restarts = int(count)
            except ValueError:
                raise DescriptorError(f"Service {name}: invalid restart count in {value!r}")
        if text not in _RESTART_POLICIES:
            raise DescriptorError(f"Service {name}: unknown restart policy {value!r}")
        return _RESTART_POLICIES[text], max_restarts

    def _parse_environment(self, env_spec: Any) -> Dict[str, str]:
        """
        Accepts both the mapping and the ``KEY=VALUE`` list forms.
        Scalars are stringified; a key with no value becomes empty.
        """
        environment = {}
        if isinstance(env_spec, list):
            for e in env_spec:
                key, sep, value = str(e).partition("=")
                environment[key] = value if sep else ""
        elif isinstance(env_spec, dict):
            for key, value in env_spec.items():
                environment[str(key)] = self._scalar(value)
        elif env_spec is not None:
            raise DescriptorError(f"Invalid environment: {env_spec!r}")
        return environment

    def _parse_port(self, name: str, port: Any) -> PortMapping:
        if isinstance(port, dict):
            try:
                return PortMapping(
                    container=int(port["target"]),
                    host=int(port["published"]) if port.get("published") is not None else None,
                    host_ip=port.get("host_ip"),
                    protocol=port.get("protocol", "tcp"),
                )
            except (KeyError, ValueError) as e:
                raise DescriptorError(f"Service {name}: invalid port {port!r}") from e

        text = str(port)
        protocol = "tcp"
        if "/" in text:
            text, protocol = text.rsplit("/", 1)
        parts = text.split(":")
        try:
            if len(parts) == 1:
                return PortMapping(container=int(parts[0]), protocol=protocol)
            if len(parts) == 2:
                return PortMapping(container=int(parts[1]), host=int(parts[0]), protocol=protocol)
            if len(parts) == 3:
                host = int(parts[1]) if parts[1] else None
                return PortMapping(container=int(parts[2]), host=host, host_ip=parts[0], protocol=protocol)
        except ValueError as e:
            raise DescriptorError(f"Service {name}: invalid port {port!r}") from e
        raise DescriptorError(f"Service {name}: invalid port {port!r}")

    def _parse_healthcheck(self, name: str, hc: Any) -> Optional[HealthCheck]:
        if hc is None:
            return None
        if not isinstance(hc, dict):
            raise DescriptorError(f"Service {name}: healthcheck must be a mapping")

        test = hc.get("test")
        if isinstance(test, str):
            test = ["CMD-SHELL", test]
        elif isinstance(test, list):
            test = [str(t) for t in test]
            if test and test[0] not in ("CMD", "CMD-SHELL", "NONE"):
                test = ["CMD"] + test
        elif test is None:
            test = []
        else:
            raise DescriptorError(f"Service {name}: invalid healthcheck test {test!r}")

        try:
            retries = int(hc.get("retries", 3))
        except (TypeError, ValueError) as e:
            raise DescriptorError(f"Service {name}: invalid healthcheck retries") from e

        return HealthCheck(
            test=tuple(test),
            interval=parse_duration(hc.get("interval"), 30.0),
            timeout=parse_duration(hc.get("timeout"), 30.0),
            start_period=parse_duration(hc.get("start_period"), 0.0),
            retries=retries,
            disabled=_flag(hc.get("disable", False)),
        )

    def _parse_depends_on(self, name: str, deps: Any) -> Dict[str, DependencyCondition]:
        if deps is None:
            return {}
        if isinstance(deps, list):
            return {str(d): DependencyCondition.SERVICE_HEALTHY for d in deps}
        if isinstance(deps, dict):
            result = {}
            for dep, options in deps.items():
                condition = (options or {}).get("condition", DependencyCondition.SERVICE_HEALTHY.value)
                try:
                    result[str(dep)] = DependencyCondition(condition)
                except ValueError:
                    raise DescriptorError(f"Service {name}: unsupported depends_on condition {condition!r}")
            return result
        raise DescriptorError(f"Service {name}: invalid depends_on {deps!r}")

    def _scalar(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def _to_argv(self, val: Any) -> Tuple[str, ...]:
        """
        Command strings are split the way a shell would; lists are kept as given.
        """
        if val is None:
            return ()
        if isinstance(val, str):
            return tuple(shlex.split(val))
        return tuple(str(v) for v in val)

    def _to_list(self, val: Any) -> List[Any]:
        """
        Helper to ensure a value is a list.

        :param val: The value to convert.
        :return: A list.
        """
        if val is None:
            return []
        if isinstance(val, (str, int)):
            return [val]
        return list(val)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)
