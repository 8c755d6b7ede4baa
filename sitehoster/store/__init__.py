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

from .accessors import SiteClient, SiteConfigClient, current_namespace
from .base import (
    CHILD_KINDS,
    CONFIG_MAP,
    CRON_JOB,
    DEPLOYMENT,
    INGRESS,
    SERVICE,
    SITE,
    SITE_CONFIG,
    Resource,
    ResourceKind,
    ResourceStore,
)
from .memory import InMemoryResourceStore

__all__ = [
    "CHILD_KINDS",
    "CONFIG_MAP",
    "CRON_JOB",
    "DEPLOYMENT",
    "INGRESS",
    "SERVICE",
    "SITE",
    "SITE_CONFIG",
    "InMemoryResourceStore",
    "Resource",
    "ResourceKind",
    "ResourceStore",
    "SiteClient",
    "SiteConfigClient",
    "current_namespace",
]
