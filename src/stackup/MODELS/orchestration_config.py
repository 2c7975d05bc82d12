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
Models for a whole stack: the parsed descriptor and profile selection.
"""
from typing import Dict, Iterable, List

from pydantic import BaseModel, ConfigDict, model_validator

from ..exceptions import DescriptorError
from .service_definition import ServiceSpec


class StackDescriptor(BaseModel):
    """
    Complete configuration for a multi-service stack.
    Equivalent to a parsed docker-compose.yml file.
    """
    model_config = ConfigDict(frozen=True)

    project: str = "default"
    services: Dict[str, ServiceSpec] = {}

    @model_validator(mode="after")
    def check_references(self) -> "StackDescriptor":
        for name, svc in self.services.items():
            if name != svc.name:
                raise DescriptorError(f"Service key {name!r} does not match its name {svc.name!r}")
            for dep in svc.depends_on:
                if dep not in self.services:
                    raise DescriptorError(f"Service {name} depends on undefined service {dep}")
        return self

    @property
    def profiles(self) -> List[str]:
        """Every profile mentioned by any service, in declaration order."""
        seen: List[str] = []
        for svc in self.services.values():
            for profile in svc.profiles:
                if profile not in seen:
                    seen.append(profile)
        return seen

    def select(self, profiles: Iterable[str] = (), services: Iterable[str] = ()) -> "StackDescriptor":
        """
        Returns the part of the stack that takes part in a run.

        With no explicit services, every service without profiles is active,
        plus the services carrying one of ``profiles``. Naming services
        restricts the run to them and everything they transitively depend on.

        :param profiles: Profiles selected for the run.
        :param services: Services explicitly requested.
        :return: A descriptor holding only the active services.
        :raises DescriptorError: On unknown names, or when an active service
            depends on one disabled by its profiles.
        """
        profiles = set(profiles)
        requested = list(services)

        if requested:
            unknown = [name for name in requested if name not in self.services]
            if unknown:
                raise DescriptorError(f"No such service: {', '.join(unknown)}")
            active = set()
            pending = list(requested)
            while pending:
                name = pending.pop()
                if name in active:
                    continue
                active.add(name)
                pending.extend(self.services[name].depends_on)
        else:
            active = {name for name, svc in self.services.items() if svc.is_enabled(profiles)}
            for name in self.services:
                if name not in active:
                    continue
                for dep in self.services[name].depends_on:
                    if dep not in active:
                        raise DescriptorError(
                            f"Service {name} depends on {dep}, which is not enabled by the selected profiles"
                        )

        return StackDescriptor(
            project=self.project,
            services={name: svc for name, svc in self.services.items() if name in active},
        )
