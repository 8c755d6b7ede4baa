# Copyright 2025 ApeCloud, Inc.
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

import logging
from typing import Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Process-wide configuration, read from SITEHOSTER_* environment variables or .env"""

    model_config = SettingsConfigDict(env_prefix="SITEHOSTER_", env_file=".env", extra="ignore")

    # Scope: None means cluster-wide
    namespace: Optional[str] = None
    # Name of the SiteConfig resource used to configure this instance
    setting_name: str = "settings"

    metrics_bind_address: str = ":8080"
    health_probe_bind_address: str = ":8081"
    leader_elect: bool = False
    leader_election_id: str = "sitehoster-leader"
    debug: bool = False

    builder_image: str = "ghcr.io/site-hoster/page_builder:main"
    proxy_image: str = "nginx:alpine"

    celery_broker_url: str = "redis://localhost:6379/0"
    redis_url: str = "redis://localhost:6379"

    # Seconds
    requeue_after: float = Field(default=60.0, gt=0)
    fatal_requeue_after: float = Field(default=600.0, gt=0)
    lock_retry_countdown: float = Field(default=5.0, gt=0)
    resync_interval: float = Field(default=300.0, gt=0)
    lock_expire_time: int = Field(default=30, gt=0)


settings = Settings()


def setup_logging(debug: bool = False):
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)
    # kubernetes and urllib3 are very chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("kubernetes").setLevel(logging.INFO)


def parse_bind_address(address: str) -> Tuple[str, int]:
    """Split a ":8080" / "127.0.0.1:8080" style bind address into (host, port)"""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid bind address: {address!r}")
    return host or "0.0.0.0", int(port)
