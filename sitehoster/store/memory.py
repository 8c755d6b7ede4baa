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

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sitehoster.exceptions import ConflictError, NotFoundError, StoreError
from sitehoster.store.base import Resource, ResourceKind, ResourceStore, label_selector_matches

logger = logging.getLogger(__name__)

# Server-managed metadata that never counts as a content change
_SERVER_FIELDS = ("uid", "resourceVersion", "generation", "creationTimestamp")

_Key = Tuple[str, Optional[str], str]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _comparable(resource: Resource) -> Resource:
    obj = copy.deepcopy(resource)
    obj.pop("status", None)
    metadata = obj.get("metadata", {})
    for field in _SERVER_FIELDS:
        metadata.pop(field, None)
    for field in ("labels", "annotations", "ownerReferences"):
        if not metadata.get(field):
            metadata.pop(field, None)
    return obj


class InMemoryResourceStore(ResourceStore):
    """Thread-safe in-process store with the semantics the reconciler relies on.

    - create fails with ConflictError when the name is taken
    - update/update_status honour resourceVersion when the caller sends one
    - an update that does not change anything keeps the stored resourceVersion
    - delete garbage-collects every object whose ownerReferences point at the deleted uid
    """

    def __init__(self):
        self._objects: Dict[_Key, Resource] = {}
        self._lock = threading.RLock()
        self._version = 0

    def _key(self, kind: ResourceKind, name: str, namespace: Optional[str]) -> _Key:
        return kind.kind, namespace if kind.namespaced else None, name

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _find(self, kind: ResourceKind, name: str, namespace: Optional[str]) -> Resource:
        obj = self._objects.get(self._key(kind, name, namespace))
        if obj is None:
            raise NotFoundError(kind.kind, name, namespace)
        return obj

    @staticmethod
    def _identity(resource: Resource) -> Tuple[str, Optional[str]]:
        metadata = resource.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            raise StoreError("metadata.name is required")
        return name, metadata.get("namespace")

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Resource:
        with self._lock:
            return copy.deepcopy(self._find(kind, name, namespace))

    def list(
        self, kind: ResourceKind, namespace: Optional[str] = None, label_selector: Optional[Dict[str, str]] = None
    ) -> List[Resource]:
        with self._lock:
            result = []
            for (obj_kind, obj_namespace, _), obj in sorted(self._objects.items(), key=lambda item: str(item[0])):
                if obj_kind != kind.kind:
                    continue
                if namespace is not None and obj_namespace != namespace:
                    continue
                if not label_selector_matches(obj["metadata"].get("labels"), label_selector):
                    continue
                result.append(copy.deepcopy(obj))
            return result

    def create(self, kind: ResourceKind, resource: Resource) -> Resource:
        name, namespace = self._identity(resource)
        with self._lock:
            key = self._key(kind, name, namespace)
            if key in self._objects:
                raise ConflictError(kind.kind, name, namespace)

            obj = copy.deepcopy(resource)
            obj.setdefault("apiVersion", kind.api_version)
            obj.setdefault("kind", kind.kind)
            metadata = obj["metadata"]
            metadata["uid"] = str(uuid.uuid4())
            metadata["resourceVersion"] = self._next_version()
            metadata["generation"] = 1
            metadata["creationTimestamp"] = _now()
            self._objects[key] = obj
            logger.debug(f"Created {kind.kind} {namespace}/{name}")
            return copy.deepcopy(obj)

    def update(self, kind: ResourceKind, resource: Resource) -> Resource:
        name, namespace = self._identity(resource)
        with self._lock:
            current = self._find(kind, name, namespace)
            self._check_version(kind, current, resource)

            obj = copy.deepcopy(resource)
            obj.setdefault("apiVersion", kind.api_version)
            obj.setdefault("kind", kind.kind)
            # status is only writable through update_status
            if "status" in current:
                obj["status"] = copy.deepcopy(current["status"])
            else:
                obj.pop("status", None)

            metadata = obj["metadata"]
            for field in _SERVER_FIELDS:
                metadata[field] = current["metadata"][field]

            if _comparable(obj) != _comparable(current):
                metadata["resourceVersion"] = self._next_version()
                metadata["generation"] = current["metadata"]["generation"] + 1
                logger.debug(f"Updated {kind.kind} {namespace}/{name} to version {metadata['resourceVersion']}")
            self._objects[self._key(kind, name, namespace)] = obj
            return copy.deepcopy(obj)

    def update_status(self, kind: ResourceKind, resource: Resource) -> Resource:
        name, namespace = self._identity(resource)
        with self._lock:
            current = self._find(kind, name, namespace)
            self._check_version(kind, current, resource)

            obj = copy.deepcopy(current)
            new_status = copy.deepcopy(resource.get("status") or {})
            if obj.get("status") != new_status:
                obj["status"] = new_status
                obj["metadata"]["resourceVersion"] = self._next_version()
            self._objects[self._key(kind, name, namespace)] = obj
            return copy.deepcopy(obj)

    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> None:
        with self._lock:
            obj = self._find(kind, name, namespace)
            del self._objects[self._key(kind, name, namespace)]
            logger.debug(f"Deleted {kind.kind} {namespace}/{name}")
            self._collect_garbage(obj["metadata"]["uid"])

    def _collect_garbage(self, owner_uid: str):
        dependents = [
            (key, obj)
            for key, obj in self._objects.items()
            if any(ref.get("uid") == owner_uid for ref in obj["metadata"].get("ownerReferences", []))
        ]
        for key, obj in dependents:
            if key in self._objects:
                del self._objects[key]
                logger.debug(f"Garbage collected {key[0]} {key[1]}/{key[2]}")
                self._collect_garbage(obj["metadata"]["uid"])

    @staticmethod
    def _check_version(kind: ResourceKind, current: Resource, resource: Resource):
        sent = resource["metadata"].get("resourceVersion")
        if sent and sent != current["metadata"]["resourceVersion"]:
            raise ConflictError(
                kind.kind,
                current["metadata"]["name"],
                current["metadata"].get("namespace"),
                reason="has been modified; please apply your changes to the latest version",
            )
