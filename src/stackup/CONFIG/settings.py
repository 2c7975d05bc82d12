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
Launcher settings.

Values come from ``STACKUP_*`` environment variables (and ``COMPOSE_PROFILES``
for the active profiles); CLI flags override them.
"""
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Launcher settings."""

    model_config = SettingsConfigDict(env_prefix="STACKUP_", extra="ignore")

    # Descriptor
    file: str = "docker-compose.yml"
    project_name: Optional[str] = None
    profiles: str = Field(
        default="",
        validation_alias=AliasChoices("STACKUP_PROFILES", "COMPOSE_PROFILES"),
    )

    # Runtime
    runtime: Literal["docker", "process"] = "docker"
    poll_interval: float = 1.0
    stop_timeout: float = 10.0

    # Restart backoff
    restart_delay: float = 1.0
    restart_max_delay: float = 30.0
    restart_reset_after: float = 10.0

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def profile_list(self) -> List[str]:
        """Profiles from the comma separated ``profiles`` value."""
        return [p.strip() for p in self.profiles.split(",") if p.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
