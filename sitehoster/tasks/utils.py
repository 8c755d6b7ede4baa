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
from typing import Optional

from sitehoster.config import settings
from sitehoster.site.context import ReconcileContext
from sitehoster.site.reconciler import ReconcileResult, SiteReconciler

logger = logging.getLogger(__name__)


class TaskConfig:
    LOCK_KEY_PREFIX = "sitehoster:reconcile"


def site_lock_key(namespace: str, name: str) -> str:
    return f"{TaskConfig.LOCK_KEY_PREFIX}:{namespace}/{name}"


class LockKeeper:
    """Checkpoint hook that extends a held lock during a pass.

    Extends at most once per ``interval`` seconds. When the lock cannot be extended the pass
    is cancelled, so a worker that lost the lock stops writing and retries later.
    """

    def __init__(self, lock, interval: float):
        self.lock = lock
        self.interval = interval
        self._last = time.monotonic()

    def __call__(self, context: ReconcileContext):
        now = time.monotonic()
        if now - self._last < self.interval:
            return
        self._last = now
        try:
            extended = self.lock.extend()
        except Exception as e:
            logger.warning(f"Failed to extend lock {getattr(self.lock, 'key', self.lock)}: {e}")
            extended = False
        if not extended:
            context.cancel()


def requeue_countdown(result: ReconcileResult, fatal_requeue_after: Optional[float] = None) -> Optional[float]:
    """Seconds until the key should be reconciled again, None when it is converged"""
    if result.fatal:
        return fatal_requeue_after if fatal_requeue_after is not None else settings.fatal_requeue_after
    if result.requeue:
        return result.requeue_after
    return None


def run_reconcile_locked(
    reconciler: SiteReconciler,
    namespace: str,
    name: str,
    lock,
    lock_retry_countdown: Optional[float] = None,
    fatal_requeue_after: Optional[float] = None,
    extend_interval: Optional[float] = None,
) -> Optional[float]:
    """
    Run one reconcile pass while holding the per-site lock.

    Returns the countdown before the next attempt, or None when no retry is needed.
    A lock held by another worker means another pass is in flight; try again shortly.
    The lock is extended every ``extend_interval`` seconds (a third of its expiry by default)
    while the pass runs.
    """
    if not lock.acquire():
        logger.debug(f"Reconcile of site {namespace}/{name} already in progress")
        return lock_retry_countdown if lock_retry_countdown is not None else settings.lock_retry_countdown

    if extend_interval is None:
        extend_interval = settings.lock_expire_time / 3
    context = ReconcileContext(on_checkpoint=LockKeeper(lock, extend_interval))
    try:
        result = reconciler.reconcile(namespace, name, context)
    finally:
        lock.release()

    if result.fatal:
        # Only this namespace is affected; keep retrying slowly instead of stopping the controller
        logger.error(f"Site {namespace}/{name} cannot be reconciled: {result.error}")
    return requeue_countdown(result, fatal_requeue_after)


_reconciler: Optional[SiteReconciler] = None
_reconciler_lock = threading.Lock()


def get_site_reconciler() -> SiteReconciler:
    """Process-wide reconciler against the Kubernetes API, built on first use"""
    global _reconciler
    with _reconciler_lock:
        if _reconciler is None:
            from sitehoster.site.children import ChildImages
            from sitehoster.site.telemetry import PrometheusTelemetry
            from sitehoster.store.kubernetes import KubernetesResourceStore

            _reconciler = SiteReconciler(
                KubernetesResourceStore(),
                setting_name=settings.setting_name,
                telemetry=PrometheusTelemetry(),
                images=ChildImages(builder_image=settings.builder_image, proxy_image=settings.proxy_image),
                requeue_after=settings.requeue_after,
            )
        return _reconciler
