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
from typing import Callable, List, Optional, Tuple

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_when_event_set,
    wait_exponential,
)

from sitehoster.exceptions import StoreError
from sitehoster.schema.models import API_VERSION
from sitehoster.site.naming import APP_LABEL
from sitehoster.store.accessors import SiteClient
from sitehoster.store.base import CHILD_KINDS, SITE, SITE_CONFIG, Resource, ResourceKind
from sitehoster.tasks.scheduler import ReconcileScheduler

logger = logging.getLogger(__name__)

Key = Tuple[str, str]


class EventRouter:
    """Maps change events to the Site keys that need a reconcile"""

    def __init__(self, sites: SiteClient, setting_name: str = "settings"):
        self.sites = sites
        self.setting_name = setting_name

    def site_event(self, event_type: str, obj: Resource) -> List[Key]:
        metadata = obj.get("metadata") or {}
        return [(metadata.get("namespace"), metadata.get("name"))]

    def site_config_event(self, event_type: str, obj: Resource) -> List[Key]:
        metadata = obj.get("metadata") or {}
        if metadata.get("name") != self.setting_name:
            return []
        namespace = metadata.get("namespace")
        return [(site.namespace, site.name) for site in self.sites.list(namespace=namespace)]

    def child_event(self, event_type: str, obj: Resource) -> List[Key]:
        metadata = obj.get("metadata") or {}
        for ref in metadata.get("ownerReferences") or []:
            if ref.get("controller") and ref.get("kind") == SITE.kind and ref.get("apiVersion") == API_VERSION:
                return [(metadata.get("namespace"), ref.get("name"))]
        return []


class SiteWatcher:
    """
    Feeds reconcile requests to a scheduler from the Kubernetes change feed.

    One thread per watched kind: Sites, SiteConfigs and every child kind labelled
    ``app=site-hoster``. Streams that fail are reopened with exponential backoff. Before
    the streams open, every Site in scope is dispatched once; ``ready`` is set after that.

    With a ``leader_lock`` the watcher first waits to acquire it and then extends it every
    ``lease_renew_interval`` seconds; losing it stops the watcher.
    """

    def __init__(
        self,
        store,
        scheduler: ReconcileScheduler,
        setting_name: str = "settings",
        namespace: Optional[str] = None,
        leader_lock=None,
        lease_renew_interval: float = 10.0,
        watch_timeout: int = 300,
        backoff: float = 1.0,
    ):
        self.store = store
        self.scheduler = scheduler
        self.namespace = namespace
        self.leader_lock = leader_lock
        self.lease_renew_interval = lease_renew_interval
        self.watch_timeout = watch_timeout
        self.backoff = backoff
        self.sites = SiteClient(store)
        self.router = EventRouter(self.sites, setting_name)
        self.ready = threading.Event()
        self.lost_leadership = False
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    def dispatch(self, keys: List[Key]):
        for namespace, name in keys:
            if namespace and name:
                self.scheduler.schedule_reconcile(namespace, name)

    def resync(self) -> int:
        """Dispatch every Site in scope"""
        sites = self.sites.list(namespace=self.namespace, all_namespaces=self.namespace is None)
        self.dispatch([(site.namespace, site.name) for site in sites])
        return len(sites)

    def handle(self, handler: Callable[[str, Resource], List[Key]], event_type: str, obj: Resource):
        try:
            self.dispatch(handler(event_type, obj))
        except Exception as e:
            name = (obj.get("metadata") or {}).get("name")
            logger.error(f"Failed to handle {event_type} event for {name}: {e}", exc_info=True)

    def _watch_once(self, kind: ResourceKind, handler, label_selector=None):
        for event_type, obj in self.store.watch(
            kind, namespace=self.namespace, label_selector=label_selector, timeout=self.watch_timeout
        ):
            if self._stop_event.is_set():
                return
            if event_type == "ERROR":
                raise StoreError(f"Watch of {kind} returned an error: {obj}")
            self.handle(handler, event_type, obj)

    def _stream(self, kind: ResourceKind, handler, label_selector=None):
        retrying = Retrying(
            retry=retry_if_exception_type(StoreError),
            wait=wait_exponential(multiplier=self.backoff, min=self.backoff, max=30 * self.backoff),
            stop=stop_when_event_set(self._stop_event),
            sleep=self._stop_event.wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        while not self._stop_event.is_set():
            try:
                retrying(self._watch_once, kind, handler, label_selector)
            except StoreError as e:
                if not self._stop_event.is_set():
                    raise
                logger.debug(f"Watch of {kind} stopped: {e}")

    def _start_stream(self, kind: ResourceKind, handler, label_selector=None):
        thread = threading.Thread(
            target=self._stream, args=(kind, handler, label_selector), name=f"watch-{kind.plural}", daemon=True
        )
        thread.start()
        self._threads.append(thread)

    def _acquire_leadership(self) -> bool:
        logger.info(f"Waiting for leader lease {self.leader_lock.key}")
        while not self._stop_event.is_set():
            if self.leader_lock.acquire(timeout=self.lease_renew_interval):
                logger.info(f"Acquired leader lease {self.leader_lock.key}")
                return True
        return False

    def start(self) -> bool:
        """Acquire leadership when configured, dispatch all Sites and open the streams"""
        if self.leader_lock is not None and not self._acquire_leadership():
            return False
        count = self.resync()
        logger.info(f"Dispatched initial reconcile for {count} sites")
        self._start_stream(SITE, self.router.site_event)
        self._start_stream(SITE_CONFIG, self.router.site_config_event)
        for kind in CHILD_KINDS:
            self._start_stream(kind, self.router.child_event, {"app": APP_LABEL})
        self.ready.set()
        return True

    def run(self):
        """Start and block until stopped or the leader lease is lost"""
        if not self.start():
            return
        while not self._stop_event.wait(self.lease_renew_interval):
            if self.leader_lock is not None and not self.leader_lock.extend():
                logger.error(f"Lost leader lease {self.leader_lock.key}, stopping")
                self.lost_leadership = True
                self.stop()

    def stop(self):
        self._stop_event.set()
        self.ready.clear()
        if self.leader_lock is not None and not self.lost_leadership:
            self.leader_lock.release()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()
