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

from config.celery import app
from sitehoster.concurrent_control import create_lock
from sitehoster.config import settings
from sitehoster.tasks.utils import get_site_reconciler, run_reconcile_locked, site_lock_key

logger = logging.getLogger(__name__)


@app.task(bind=True, max_retries=None)
def reconcile_site_task(self, namespace: str, name: str):
    """
    Reconcile one Site

    Args:
        namespace: Site namespace
        name: Site name

    Requeues go through Celery retries: transient failures after ``requeue_after``,
    a missing SiteConfig after ``fatal_requeue_after``, a busy key after ``lock_retry_countdown``.
    """
    lock = create_lock(
        "redis",
        key=site_lock_key(namespace, name),
        redis_url=settings.redis_url,
        expire_time=settings.lock_expire_time,
        retry_times=0,
    )
    countdown = run_reconcile_locked(get_site_reconciler(), namespace, name, lock)
    if countdown is not None:
        logger.info(f"Requeueing site {namespace}/{name} in {countdown}s")
        raise self.retry(countdown=countdown)
    return {"namespace": namespace, "name": name}


@app.task
def resync_sites_task():
    """Periodic task that enqueues a reconcile for every Site in scope"""
    from sitehoster.store.accessors import SiteClient

    try:
        sites = SiteClient(get_site_reconciler().store).list(
            namespace=settings.namespace, all_namespaces=settings.namespace is None
        )
    except Exception as e:
        logger.error(f"Site resync failed: {e}", exc_info=True)
        raise

    for site in sites:
        reconcile_site_task.delay(site.namespace, site.name)
    logger.info(f"Enqueued reconcile for {len(sites)} sites")
    return len(sites)
