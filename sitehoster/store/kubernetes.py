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
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

import urllib3
from kubernetes import client, config, dynamic
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from sitehoster.exceptions import ConflictError, NotFoundError, StoreError
from sitehoster.store.base import Resource, ResourceKind, ResourceStore, format_label_selector

logger = logging.getLogger(__name__)


def load_kube_config():
    """Load in-cluster config, falling back to the local kubeconfig"""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


class KubernetesResourceStore(ResourceStore):
    """ResourceStore backed by the Kubernetes API through the dynamic client"""

    def __init__(self, dynamic_client: Optional[dynamic.DynamicClient] = None):
        if dynamic_client is None:
            load_kube_config()
            dynamic_client = dynamic.DynamicClient(client.ApiClient())
        self._client = dynamic_client
        self._apis = {}

    def _api(self, kind: ResourceKind):
        api = self._apis.get(kind)
        if api is None:
            api = self._client.resources.get(api_version=kind.api_version, kind=kind.kind)
            self._apis[kind] = api
        return api

    @contextmanager
    def _translate_errors(self, kind: ResourceKind, name: Optional[str], namespace: Optional[str], action: str):
        try:
            yield
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind.kind, name, namespace) from e
            if e.status == 409:
                raise ConflictError(kind.kind, name, namespace, reason=e.reason or "conflict") from e
            raise StoreError(f"Failed to {action} {kind.kind} {namespace}/{name}: {e.status} {e.reason}") from e
        except ResourceNotFoundError as e:
            # discovery found no such kind, e.g. the CRD is not installed
            raise StoreError(f"Failed to {action} {kind.kind} {namespace}/{name}: {e}") from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise StoreError(f"Failed to {action} {kind.kind} {namespace}/{name}: {e}") from e

    @staticmethod
    def _identity(resource: Resource) -> Tuple[str, Optional[str]]:
        metadata = resource.get("metadata") or {}
        return metadata.get("name"), metadata.get("namespace")

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Resource:
        with self._translate_errors(kind, name, namespace, "get"):
            return self._api(kind).get(name=name, namespace=namespace).to_dict()

    def list(
        self, kind: ResourceKind, namespace: Optional[str] = None, label_selector: Optional[Dict[str, str]] = None
    ) -> List[Resource]:
        with self._translate_errors(kind, None, namespace, "list"):
            result = self._api(kind).get(namespace=namespace, label_selector=format_label_selector(label_selector))
            return result.to_dict().get("items") or []

    def create(self, kind: ResourceKind, resource: Resource) -> Resource:
        name, namespace = self._identity(resource)
        with self._translate_errors(kind, name, namespace, "create"):
            return self._api(kind).create(body=resource, namespace=namespace).to_dict()

    def update(self, kind: ResourceKind, resource: Resource) -> Resource:
        name, namespace = self._identity(resource)
        with self._translate_errors(kind, name, namespace, "update"):
            return self._api(kind).replace(body=resource, namespace=namespace).to_dict()

    def update_status(self, kind: ResourceKind, resource: Resource) -> Resource:
        name, namespace = self._identity(resource)
        with self._translate_errors(kind, name, namespace, "update status of"):
            return self._api(kind).status.replace(body=resource, namespace=namespace).to_dict()

    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> None:
        with self._translate_errors(kind, name, namespace, "delete"):
            self._api(kind).delete(name=name, namespace=namespace)

    def watch(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> Iterator[Tuple[str, Resource]]:
        """Stream (event type, manifest) pairs for a kind until the server closes the watch"""
        try:
            with self._translate_errors(kind, None, namespace, "watch"):
                for event in self._client.watch(
                    self._api(kind),
                    namespace=namespace,
                    label_selector=format_label_selector(label_selector),
                    timeout=timeout,
                ):
                    yield event["type"], event["raw_object"]
        except StoreError:
            raise
        except Exception as e:
            # dropped connections surface as urllib3 errors
            raise StoreError(f"Watch of {kind.kind} failed: {e}") from e
