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
Managers for handling environment variables and .env file resolution.
"""
import os
from typing import Dict, Iterable, Optional

from dotenv import dotenv_values

from ..exceptions import ServiceStartError


class EnvironmentManager:
    """
    Manages the merging and resolution of environment variables from multiple sources.
    """
    def __init__(self, base_dir: str = ".", inherit: bool = True):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to .env files.
        :param inherit: Start from the current process environment.
        """
        self.base_dir = base_dir
        self.inherit = inherit

    def get_merged_environment(self,
                               explicit_env: Dict[str, str],
                               env_files: Iterable[str],
                               extra_env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Merges environment variables from the current process, the service's
        env files and its explicit environment, later sources winning.

        :param explicit_env: Variables from the ``environment`` key.
        :param env_files: Paths of env files, relative to ``base_dir``.
        :param extra_env: Variables applied last.
        :return: The merged environment.
        :raises ServiceStartError: If an env file does not exist.
        """
        merged_env = os.environ.copy() if self.inherit else {}

        for env_file in env_files:
            file_path = os.path.join(self.base_dir, env_file)
            if not os.path.exists(file_path):
                raise ServiceStartError(f"env file {file_path} not found")
            merged_env.update({k: v or "" for k, v in dotenv_values(file_path).items()})

        merged_env.update(explicit_env)
        if extra_env:
            merged_env.update(extra_env)
        return merged_env
