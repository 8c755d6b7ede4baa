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
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sitehoster.exceptions import (
    FatalPreconditionError,
    NotFoundError,
    ReconcileCancelled,
    SiteHosterError,
    UpsertError,
)
from sitehoster.schema.models import Site, SiteConfig
from sitehoster.site.children import ChildImages
from sitehoster.site.context import ReconcileContext
from sitehoster.site.renderer import NginxConfigRenderer, nginx_config_renderer
from sitehoster.site.telemetry import NoopTelemetry, Telemetry
from sitehoster.site.upsert import (
    ChildUpsert,
    ConfigMapUpsert,
    CronJobUpsert,
    DeploymentUpsert,
    IngressUpsert,
    ServiceUpsert,
    set_controller_reference,
)
from sitehoster.store.accessors import SiteClient, SiteConfigClient
from sitehoster.store.base import Resource, ResourceKind, ResourceStore

logger = logging.getLogger(__name__)

DEFAULT_REQUEUE_AFTER = 60.0


@dataclass
class ReconcileResult:
    requeue: bool = False
    requeue_after: float = 0.0
    error: Optional[Exception] = None

    @property
    def fatal(self) -> bool:
        return isinstance(self.error, FatalPreconditionError)


class SiteReconciler:
    """
    Drives the children of one Site towards the state derived from (Site, SiteConfig).

    One pass fetches the Site and the SiteConfig named ``setting_name`` in the Site's
    namespace, then upserts CronJob, ConfigMap, Deployment, Service and Ingress in that
    order. The first failing child stops the pass and asks for a retry; children that were
    already applied are left in place since every upsert is idempotent.

    Callers must not run two passes for the same key concurrently.
    """

    name = "site"

    def __init__(
        self,
        store: ResourceStore,
        setting_name: str = "settings",
        telemetry: Optional[Telemetry] = None,
        images: ChildImages = ChildImages(),
        renderer: NginxConfigRenderer = nginx_config_renderer,
        requeue_after: float = DEFAULT_REQUEUE_AFTER,
    ):
        self.store = store
        self.setting_name = setting_name
        self.telemetry = telemetry or NoopTelemetry()
        self.requeue_after = requeue_after
        self.sites = SiteClient(store)
        self.site_configs = SiteConfigClient(store)
        self.upserts: List[ChildUpsert] = [
            CronJobUpsert(store, images),
            ConfigMapUpsert(store, renderer),
            DeploymentUpsert(store, images),
            ServiceUpsert(store),
            IngressUpsert(store),
        ]
        # key -> site type of every Site counted in the active gauge
        self._active: Dict[str, str] = {}
        self._active_lock = threading.Lock()

    def reconcile(self, namespace: str, name: str, context: Optional[ReconcileContext] = None) -> ReconcileResult:
        start = time.monotonic()
        try:
            return self._reconcile(namespace, name, context or ReconcileContext())
        finally:
            self.telemetry.observe_reconcile(self.name, name, namespace, time.monotonic() - start)

    def _retry(self, error: Exception) -> ReconcileResult:
        return ReconcileResult(requeue=True, requeue_after=self.requeue_after, error=error)

    def _reconcile(self, namespace: str, name: str, context: ReconcileContext) -> ReconcileResult:
        key = f"{namespace}/{name}"

        try:
            context.raise_if_cancelled()
            site = self.sites.get(name, namespace)
        except NotFoundError:
            logger.info(f"Site {key} not found. Ignoring since object must be deleted")
            self._forget(key)
            return ReconcileResult()
        except SiteHosterError as e:
            logger.error(f"Failed to fetch Site {key}: {e}")
            return self._retry(e)

        try:
            context.raise_if_cancelled()
            site_config = self.site_configs.get(self.setting_name, namespace)
        except ReconcileCancelled as e:
            return self._retry(e)
        except SiteHosterError as e:
            error = FatalPreconditionError(self.setting_name, namespace)
            error.__cause__ = e
            logger.error(f"{error} (site {key}): {e}")
            return ReconcileResult(error=error)

        for upsert in self.upserts:
            try:
                upsert.upsert(site, site_config, context)
            except (UpsertError, ReconcileCancelled) as e:
                logger.error(f"Failed to upsert {upsert.description} for site {key}: {e}")
                return self._retry(e)

        self._remember(key, site)
        logger.debug(f"Site {key} reconciled")
        return ReconcileResult()

    def _remember(self, key: str, site: Site):
        with self._active_lock:
            if key in self._active:
                return
            self._active[key] = site.spec.type.value
        self.telemetry.site_added(site.spec.type.value)

    def _forget(self, key: str):
        with self._active_lock:
            site_type = self._active.pop(key, None)
        if site_type is not None:
            self.telemetry.site_removed(site_type)

    def desired_children(self, site: Site, site_config: SiteConfig) -> List[Tuple[ResourceKind, Resource]]:
        """Desired manifests of every child, owner references included, without touching the store"""
        result = []
        for upsert in self.upserts:
            manifest = upsert.desired(site, site_config)
            result.append((upsert.kind, set_controller_reference(site, manifest)))
        return result
