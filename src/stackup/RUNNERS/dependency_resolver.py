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
Dependency resolution for services to determine startup and shutdown order.
"""
from typing import Dict, List, Optional, Set

from ..exceptions import CycleError
from ..MODELS.orchestration_config import StackDescriptor


class DependencyResolver:
    """
    Resolves the startup and shutdown order of services based on their dependencies.
    """
    def resolve_order(self, config: StackDescriptor) -> List[str]:
        """
        Determines the order to start services, every service after all of its
        dependencies. Services that are free to start keep their descriptor order.

        :param config: The stack descriptor.
        :return: Service names in the order they should be started.
        :raises CycleError: If a circular dependency is detected.
        """
        return [name for wave in self.start_waves(config) for name in wave]

    def start_waves(self, config: StackDescriptor) -> List[List[str]]:
        """
        Groups services into waves; every service in a wave depends only on
        services in earlier waves, so a whole wave can start concurrently.

        :param config: The stack descriptor.
        :return: Waves of service names.
        :raises CycleError: If a circular dependency is detected.
        """
        services = config.services
        remaining: Dict[str, Set[str]] = {
            name: {dep for dep in svc.depends_on if dep in services}
            for name, svc in services.items()
        }

        waves = []
        while remaining:
            wave = [name for name, deps in remaining.items() if not deps]
            if not wave:
                raise CycleError(self._find_cycle(remaining))
            for name in wave:
                del remaining[name]
            for deps in remaining.values():
                deps.difference_update(wave)
            waves.append(wave)
        return waves

    def _find_cycle(self, graph: Dict[str, Set[str]]) -> List[str]:
        """
        Returns one cycle from a graph in which every node has an unmet dependency.
        """
        path: List[str] = []
        on_path: Dict[str, int] = {}

        def visit(name: str) -> Optional[List[str]]:
            """
            Depth-first walk that stops at the first node seen twice on the path.
            """
            if name in on_path:
                return path[on_path[name]:] + [name]
            on_path[name] = len(path)
            path.append(name)
            for dep in sorted(graph[name]):
                cycle = visit(dep)
                if cycle:
                    return cycle
            path.pop()
            del on_path[name]
            return None

        for start in graph:
            cycle = visit(start)
            if cycle:
                return cycle
        return list(graph)
