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

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sitehoster.schema.models import API_VERSION

Resource = Dict[str, Any]


@dataclass(frozen=True)
class ResourceKind:
    """Identifies one kind of object in the entity store"""

    api_version: str
    kind: str
    plural: str
    namespaced: bool = True

    @property
    def group(self) -> str:
        return self.api_version.rpartition("/")[0]

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]

    def __str__(self):
        return self.kind


SITE = ResourceKind(API_VERSION, "Site", "sites")
SITE_CONFIG = ResourceKind(API_VERSION, "SiteConfig", "siteconfigs")
CRON_JOB = ResourceKind("batch/v1", "CronJob", "cronjobs")
CONFIG_MAP = ResourceKind("v1", "ConfigMap", "configmaps")
DEPLOYMENT = ResourceKind("apps/v1", "Deployment", "deployments")
SERVICE = ResourceKind("v1", "Service", "services")
INGRESS = ResourceKind("networking.k8s.io/v1", "Ingress", "ingresses")

CHILD_KINDS = (CRON_JOB, CONFIG_MAP, DEPLOYMENT, SERVICE, INGRESS)


class ResourceStore(ABC):
    """Capability set over the entity store used by the accessors and upsert engines.

    Resources are plain manifests (``apiVersion``/``kind``/``metadata``/...). Implementations
    raise NotFoundError for missing objects and ConflictError for create collisions or
    stale writes; anything else surfaces as StoreError.
    """

    @abstractmethod
    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Resource:
        pass

    @abstractmethod
    def list(
        self, kind: ResourceKind, namespace: Optional[str] = None, label_selector: Optional[Dict[str, str]] = None
    ) -> List[Resource]:
        """List resources of a kind, across all namespaces when namespace is None"""
        pass

    @abstractmethod
    def create(self, kind: ResourceKind, resource: Resource) -> Resource:
        pass

    @abstractmethod
    def update(self, kind: ResourceKind, resource: Resource) -> Resource:
        pass

    @abstractmethod
    def update_status(self, kind: ResourceKind, resource: Resource) -> Resource:
        pass

    @abstractmethod
    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> None:
        pass


def label_selector_matches(labels: Optional[Dict[str, str]], selector: Optional[Dict[str, str]]) -> bool:
    if not selector:
        return True
    labels = labels or {}
    return all(labels.get(k) == v for k, v in selector.items())


def format_label_selector(selector: Optional[Dict[str, str]]) -> Optional[str]:
    if not selector:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(selector.items()))
