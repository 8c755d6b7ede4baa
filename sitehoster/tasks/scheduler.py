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
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from collections import OrderedDict
from typing import Any, Dict, Optional

from sitehoster.concurrent_control import ThreadingLock
from sitehoster.site.reconciler import SiteReconciler
from sitehoster.tasks.utils import run_reconcile_locked, site_lock_key

logger = logging.getLogger(__name__)


class TaskResult:
    """Represents the result of a task execution"""

    def __init__(self, task_id: str, success: bool = True, error: str = None, data: Any = None):
        self.task_id = task_id
        self.success = success
        self.error = error
        self.data = data


class ReconcileScheduler(ABC):
    """Abstract base class for reconcile dispatchers"""

    @abstractmethod
    def schedule_reconcile(self, namespace: str, name: str, countdown: float = 0) -> str:
        """
        Schedule a reconcile pass for one Site

        Args:
            namespace: Site namespace
            name: Site name
            countdown: Seconds to wait before running

        Returns:
            Task ID for tracking
        """
        pass

    def get_task_status(self, task_id: str) -> Optional[TaskResult]:
        """Outcome of a dispatched pass, None when this dispatcher does not track it"""
        return None

    def shutdown(self):
        pass


class LocalReconcileScheduler(ReconcileScheduler):
    """In-process implementation for single-replica deployments, the CLI and tests.

    Passes for the same key never overlap; a pass that finds the key busy retries after
    ``lock_retry_countdown``. Requeues requested by the reconciler are armed as timers.
    """

    def __init__(
        self,
        reconciler: SiteReconciler,
        max_workers: int = 4,
        synchronous: bool = False,
        lock_retry_countdown: float = 5.0,
        fatal_requeue_after: float = 600.0,
        max_results: int = 1000,
    ):
        self.reconciler = reconciler
        self.synchronous = synchronous
        self.lock_retry_countdown = lock_retry_countdown
        self.fatal_requeue_after = fatal_requeue_after
        self._executor = None if synchronous else ThreadPoolExecutor(max_workers=max_workers)
        self._task_counter = 0
        self.max_results = max_results
        self._results: "OrderedDict[str, TaskResult]" = OrderedDict()
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._stopped = False

    def _next_task_id(self) -> str:
        with self._lock:
            self._task_counter += 1
            return f"local_reconcile_{self._task_counter}"

    def schedule_reconcile(self, namespace: str, name: str, countdown: float = 0) -> str:
        task_id = self._next_task_id()
        if countdown and countdown > 0:
            key = f"{namespace}/{name}"
            timer = threading.Timer(countdown, self._submit, args=(namespace, name, task_id))
            timer.daemon = True
            with self._lock:
                # A newer requeue for the same key supersedes the pending one
                previous = self._timers.pop(key, None)
                if previous:
                    previous.cancel()
                self._timers[key] = timer
            timer.start()
            logger.debug(f"Scheduled reconcile {task_id} of site {key} in {countdown}s")
        else:
            self._submit(namespace, name, task_id)
        return task_id

    def _submit(self, namespace: str, name: str, task_id: str):
        if self._stopped:
            return
        if self._executor is None:
            self._execute(namespace, name, task_id)
        else:
            self._executor.submit(self._execute, namespace, name, task_id)

    def _execute(self, namespace: str, name: str, task_id: str):
        lock = ThreadingLock(key=site_lock_key(namespace, name))
        try:
            countdown = run_reconcile_locked(
                self.reconciler,
                namespace,
                name,
                _NonBlocking(lock),
                lock_retry_countdown=self.lock_retry_countdown,
                fatal_requeue_after=self.fatal_requeue_after,
            )
            self._record(TaskResult(task_id, success=countdown is None, data=countdown))
        except Exception as e:
            logger.error(f"Reconcile {task_id} of site {namespace}/{name} failed: {e}", exc_info=True)
            self._record(TaskResult(task_id, success=False, error=str(e)))
            raise

        if countdown is not None:
            self.schedule_reconcile(namespace, name, countdown)

    def _record(self, result: TaskResult):
        # Only the most recent outcomes are kept
        with self._lock:
            self._results[result.task_id] = result
            while len(self._results) > self.max_results:
                self._results.popitem(last=False)

    def get_task_status(self, task_id: str) -> Optional[TaskResult]:
        with self._lock:
            return self._results.get(task_id)

    def pending(self) -> Dict[str, threading.Timer]:
        with self._lock:
            return dict(self._timers)

    def shutdown(self):
        self._stopped = True
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
        if self._executor is not None:
            self._executor.shutdown(wait=True)


class _NonBlocking:
    """Adapts a lock so acquire() never waits"""

    def __init__(self, lock):
        self._lock = lock

    def acquire(self):
        return self._lock.acquire(timeout=0)

    def release(self):
        self._lock.release()

    def extend(self) -> bool:
        return self._lock.extend()


class CeleryReconcileScheduler(ReconcileScheduler):
    """Celery implementation of ReconcileScheduler"""

    def schedule_reconcile(self, namespace: str, name: str, countdown: float = 0) -> str:
        from sitehoster.tasks.reconcile_site_task import reconcile_site_task

        task = reconcile_site_task.apply_async(args=(namespace, name), countdown=countdown or None)
        logger.debug(f"Scheduled reconcile task {task.id} for site {namespace}/{name}")
        return task.id


def create_reconcile_scheduler(scheduler_type: str, reconciler: Optional[SiteReconciler] = None, **kwargs):
    if scheduler_type == "celery":
        return CeleryReconcileScheduler()
    if scheduler_type == "local":
        if reconciler is None:
            raise ValueError("local scheduler requires a reconciler")
        return LocalReconcileScheduler(reconciler, **kwargs)
    raise ValueError(f"Unknown scheduler type: {scheduler_type}")
