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
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sitehoster.exceptions import NotFoundError, OwnershipError, RenderError, SiteHosterError, UpsertError
from sitehoster.schema.models import Site, SiteConfig
from sitehoster.site import children
from sitehoster.site.children import ChildImages
from sitehoster.site.context import ReconcileContext
from sitehoster.site.renderer import NginxConfigRenderer, nginx_config_renderer
from sitehoster.store.base import (
    CONFIG_MAP,
    CRON_JOB,
    DEPLOYMENT,
    INGRESS,
    SERVICE,
    Resource,
    ResourceKind,
    ResourceStore,
)

logger = logging.getLogger(__name__)


def owner_reference(owner: Site) -> Dict[str, Any]:
    ref = {
        "apiVersion": owner.api_version,
        "kind": owner.kind,
        "name": owner.metadata.name,
        "controller": True,
        "blockOwnerDeletion": True,
    }
    if owner.metadata.uid:
        ref["uid"] = owner.metadata.uid
    return ref


def set_controller_reference(owner: Site, obj: Resource) -> Resource:
    """Make owner the controlling owner of obj so deleting the Site cascades to it"""
    metadata = obj.setdefault("metadata", {})
    refs: List[Dict[str, Any]] = metadata.get("ownerReferences") or []
    new_ref = owner_reference(owner)

    def same_owner(ref):
        return ref.get("kind") == new_ref["kind"] and ref.get("name") == new_ref["name"]

    for ref in refs:
        if ref.get("controller") and not same_owner(ref):
            raise OwnershipError(
                f"{obj.get('kind')} {metadata.get('namespace')}/{metadata.get('name')} is already controlled by "
                f"{ref.get('kind')} {ref.get('name')}"
            )

    metadata["ownerReferences"] = [ref for ref in refs if not same_owner(ref)] + [new_ref]
    return obj


class ChildUpsert(ABC):
    """Get-by-name, overwrite desired state, set owner, then create or update one child kind.

    Every call with unchanged (Site, SiteConfig) writes back identical content, so repeated
    passes produce no diff.
    """

    kind: ResourceKind
    description: str
    # Top level keys of the manifest owned by the reconciler
    body_fields = ("spec",)

    def __init__(self, store: ResourceStore):
        self.store = store

    @abstractmethod
    def desired(self, site: Site, site_config: SiteConfig) -> Resource:
        pass

    def merge(self, existing: Resource, desired: Resource) -> Resource:
        obj = copy.deepcopy(existing)
        obj["apiVersion"] = desired["apiVersion"]
        obj["kind"] = desired["kind"]
        metadata = obj.setdefault("metadata", {})
        metadata["name"] = desired["metadata"]["name"]
        metadata["namespace"] = desired["metadata"]["namespace"]
        metadata["labels"] = dict(desired["metadata"]["labels"])
        metadata["annotations"] = dict(desired["metadata"].get("annotations") or {})
        for field in self.body_fields:
            obj[field] = copy.deepcopy(desired[field])
        return obj

    def upsert(self, site: Site, site_config: SiteConfig, context: Optional[ReconcileContext] = None) -> Resource:
        context = context or ReconcileContext()

        try:
            desired = self.desired(site, site_config)
        except RenderError as e:
            raise UpsertError(self.description, "render", f"Failed to render {self.description}: {e}") from e

        name = desired["metadata"]["name"]
        namespace = desired["metadata"]["namespace"]

        context.raise_if_cancelled()
        exists = True
        try:
            existing = self.store.get(self.kind, name, namespace)
        except NotFoundError:
            exists = False
            existing = {"metadata": {"name": name, "namespace": namespace}}
        except SiteHosterError as e:
            raise UpsertError(self.description, "get", f"Failed to get {self.description}: {e}") from e

        obj = self.merge(existing, desired)
        try:
            set_controller_reference(site, obj)
        except OwnershipError as e:
            raise UpsertError(self.description, "own", f"Failed to set owner of {self.description}: {e}") from e

        context.raise_if_cancelled()
        if not exists:
            try:
                result = self.store.create(self.kind, obj)
            except SiteHosterError as e:
                raise UpsertError(self.description, "create", f"Failed to create new {self.description}: {e}") from e
            logger.info(f"Created {self.description} {namespace}/{name}")
            return result

        try:
            result = self.store.update(self.kind, obj)
        except SiteHosterError as e:
            raise UpsertError(self.description, "update", f"Failed to update {self.description}: {e}") from e
        logger.debug(f"Updated {self.description} {namespace}/{name}")
        return result


class CronJobUpsert(ChildUpsert):
    kind = CRON_JOB
    description = "page-builder CronJob"

    def __init__(self, store: ResourceStore, images: ChildImages = ChildImages()):
        super().__init__(store)
        self.images = images

    def desired(self, site: Site, site_config: SiteConfig) -> Resource:
        return children.desired_cronjob(site, site_config, self.images)


class ConfigMapUpsert(ChildUpsert):
    kind = CONFIG_MAP
    description = "nginx proxy config"
    body_fields = ("data",)

    def __init__(self, store: ResourceStore, renderer: NginxConfigRenderer = nginx_config_renderer):
        super().__init__(store)
        self.renderer = renderer

    def desired(self, site: Site, site_config: SiteConfig) -> Resource:
        return children.desired_config_map(site, site_config, self.renderer)


class DeploymentUpsert(ChildUpsert):
    kind = DEPLOYMENT
    description = "nginx proxy Deployment"

    def __init__(self, store: ResourceStore, images: ChildImages = ChildImages()):
        super().__init__(store)
        self.images = images

    def desired(self, site: Site, site_config: SiteConfig) -> Resource:
        return children.desired_deployment(site, site_config, self.images)


class ServiceUpsert(ChildUpsert):
    kind = SERVICE
    description = "nginx proxy Service"

    # Allocated by the API server and immutable afterwards
    _server_assigned = ("clusterIP", "clusterIPs", "ipFamilies", "ipFamilyPolicy")

    def desired(self, site: Site, site_config: SiteConfig) -> Resource:
        return children.desired_service(site, site_config)

    def merge(self, existing: Resource, desired: Resource) -> Resource:
        obj = super().merge(existing, desired)
        existing_spec = existing.get("spec") or {}
        for field in self._server_assigned:
            if field in existing_spec:
                obj["spec"][field] = copy.deepcopy(existing_spec[field])
        return obj


class IngressUpsert(ChildUpsert):
    kind = INGRESS
    description = "site Ingress"

    def desired(self, site: Site, site_config: SiteConfig) -> Resource:
        return children.desired_ingress(site, site_config)
