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
from pathlib import Path
from typing import Generic, List, Optional, Type, TypeVar

from pydantic import ValidationError

from sitehoster.exceptions import StoreError
from sitehoster.schema.models import Site, SiteConfig
from sitehoster.store.base import SITE, SITE_CONFIG, Resource, ResourceKind, ResourceStore

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"

T = TypeVar("T", Site, SiteConfig)


def current_namespace(path: str = SERVICE_ACCOUNT_NAMESPACE_FILE) -> str:
    """Namespace this process runs in, as mounted by the service account"""
    try:
        return Path(path).read_text().strip()
    except OSError as e:
        raise StoreError("Unable to read current namespace") from e


class _TypedClient(Generic[T]):
    kind: ResourceKind
    model: Type[T]

    def __init__(self, store: ResourceStore, namespace_file: str = SERVICE_ACCOUNT_NAMESPACE_FILE):
        self.store = store
        self._namespace_file = namespace_file

    def _namespace(self, namespace: Optional[str]) -> str:
        return namespace or current_namespace(self._namespace_file)

    def _parse(self, resource: Resource) -> T:
        try:
            return self.model.from_resource(resource)
        except ValidationError as e:
            metadata = resource.get("metadata") or {}
            raise StoreError(
                f"Unable to read {self.kind.kind} {metadata.get('namespace')}/{metadata.get('name')}: {e}"
            ) from e

    def get(self, name: str, namespace: Optional[str] = None) -> T:
        """Fetch by name; NotFoundError propagates to the caller, a malformed object is a StoreError"""
        resource = self.store.get(self.kind, name, self._namespace(namespace))
        return self._parse(resource)

    def list(self, namespace: Optional[str] = None, all_namespaces: bool = False) -> List[T]:
        """Objects in scope; malformed ones are logged and left out"""
        scope = None if all_namespaces else self._namespace(namespace)
        result = []
        for resource in self.store.list(self.kind, namespace=scope):
            try:
                result.append(self._parse(resource))
            except StoreError as e:
                logger.warning(f"Skipping {e}")
        return result

    def create(self, obj: T) -> T:
        if not obj.metadata.namespace:
            obj.metadata.namespace = current_namespace(self._namespace_file)
        return self._parse(self.store.create(self.kind, obj.to_resource()))

    def update(self, obj: T) -> T:
        return self._parse(self.store.update(self.kind, obj.to_resource()))

    def delete(self, obj: T) -> None:
        self.store.delete(self.kind, obj.metadata.name, obj.metadata.namespace)


class SiteClient(_TypedClient[Site]):
    kind = SITE
    model = Site

    def update_status(self, site: Site) -> Site:
        """Only the build pipeline writes status; the reconciler never calls this"""
        return self._parse(self.store.update_status(self.kind, site.to_resource()))


class SiteConfigClient(_TypedClient[SiteConfig]):
    kind = SITE_CONFIG
    model = SiteConfig
