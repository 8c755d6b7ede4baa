from unittest.mock import MagicMock, patch

import pytest

from sitehoster.concurrent_control import ThreadingLock
from sitehoster.exceptions import FatalPreconditionError, StoreError
from sitehoster.site.context import ReconcileContext
from sitehoster.site.reconciler import ReconcileResult, SiteReconciler
from sitehoster.store.base import CHILD_KINDS
from sitehoster.tasks.scheduler import (
    CeleryReconcileScheduler,
    LocalReconcileScheduler,
    create_reconcile_scheduler,
)
from sitehoster.tasks.utils import LockKeeper, requeue_countdown, run_reconcile_locked, site_lock_key


class TestRequeueCountdown:
    def test_converged(self):
        assert requeue_countdown(ReconcileResult()) is None

    def test_transient(self):
        result = ReconcileResult(requeue=True, requeue_after=60, error=StoreError("x"))
        assert requeue_countdown(result) == 60

    def test_fatal_requeues_slowly(self):
        result = ReconcileResult(error=FatalPreconditionError("settings", "default"))
        assert requeue_countdown(result, fatal_requeue_after=600) == 600


class TestRunReconcileLocked:
    def test_runs_and_releases(self, memory_store, site, site_config):
        lock = ThreadingLock(key=site_lock_key("default", "locked-run"))
        assert run_reconcile_locked(SiteReconciler(memory_store), "default", "blog", lock) is None
        assert not lock.is_locked()

    def test_busy_key(self):
        reconciler = MagicMock()
        lock = MagicMock()
        lock.acquire.return_value = False

        countdown = run_reconcile_locked(reconciler, "default", "blog", lock, lock_retry_countdown=5)

        assert countdown == 5
        reconciler.reconcile.assert_not_called()

    def test_lock_released_when_reconcile_raises(self):
        reconciler = MagicMock()
        reconciler.reconcile.side_effect = RuntimeError("boom")
        lock = MagicMock()
        lock.acquire.return_value = True

        with pytest.raises(RuntimeError):
            run_reconcile_locked(reconciler, "default", "blog", lock)
        lock.release.assert_called_once()

    def test_lock_is_extended_during_pass(self, memory_store, site, site_config):
        lock = MagicMock()
        lock.acquire.return_value = True
        lock.extend.return_value = True

        assert run_reconcile_locked(SiteReconciler(memory_store), "default", "blog", lock, extend_interval=0) is None

        assert lock.extend.call_count > 1
        assert all(len(memory_store.list(kind)) == 1 for kind in CHILD_KINDS)

    def test_lost_lock_stops_the_pass(self, memory_store, site, site_config):
        lock = MagicMock()
        lock.acquire.return_value = True
        lock.extend.return_value = False

        countdown = run_reconcile_locked(SiteReconciler(memory_store), "default", "blog", lock, extend_interval=0)

        assert countdown == 60
        assert all(len(memory_store.list(kind)) == 0 for kind in CHILD_KINDS)
        lock.release.assert_called_once()


class TestLockKeeper:
    def test_extends_at_most_once_per_interval(self):
        lock = MagicMock()
        keeper = LockKeeper(lock, interval=3600)
        keeper(ReconcileContext())
        lock.extend.assert_not_called()

    def test_extend_error_cancels(self):
        lock = MagicMock()
        lock.extend.side_effect = ConnectionError("redis down")
        context = ReconcileContext()

        LockKeeper(lock, interval=0)(context)

        assert context.cancelled


class TestLocalReconcileScheduler:
    def test_synchronous_reconcile(self, memory_store, site, site_config):
        scheduler = LocalReconcileScheduler(SiteReconciler(memory_store), synchronous=True)
        try:
            task_id = scheduler.schedule_reconcile("default", "blog")
            status = scheduler.get_task_status(task_id)
            assert status.success
            assert all(len(memory_store.list(kind)) == 1 for kind in CHILD_KINDS)
            assert scheduler.pending() == {}
        finally:
            scheduler.shutdown()

    def test_failure_arms_requeue_timer(self, faulty_store, site, site_config):
        faulty_store.fail("create", "Deployment")
        scheduler = LocalReconcileScheduler(SiteReconciler(faulty_store, requeue_after=60), synchronous=True)
        try:
            task_id = scheduler.schedule_reconcile("default", "blog")
            assert scheduler.get_task_status(task_id).data == 60
            assert list(scheduler.pending()) == ["default/blog"]
        finally:
            scheduler.shutdown()
        assert scheduler.pending() == {}

    def test_missing_site_config_requeues_slowly(self, memory_store, site):
        scheduler = LocalReconcileScheduler(SiteReconciler(memory_store), synchronous=True, fatal_requeue_after=600)
        try:
            task_id = scheduler.schedule_reconcile("default", "blog")
            assert scheduler.get_task_status(task_id).data == 600
        finally:
            scheduler.shutdown()

    def test_busy_key_is_retried(self, memory_store, site, site_config):
        scheduler = LocalReconcileScheduler(SiteReconciler(memory_store), synchronous=True, lock_retry_countdown=5)
        held = ThreadingLock(key=site_lock_key("default", "blog"))
        held.acquire()
        try:
            task_id = scheduler.schedule_reconcile("default", "blog")
            assert scheduler.get_task_status(task_id).data == 5
            assert all(len(memory_store.list(kind)) == 0 for kind in CHILD_KINDS)
        finally:
            held.release()
            scheduler.shutdown()

    def test_only_recent_results_are_kept(self, memory_store, site, site_config):
        scheduler = LocalReconcileScheduler(SiteReconciler(memory_store), synchronous=True, max_results=3)
        try:
            task_ids = [scheduler.schedule_reconcile("default", "blog") for _ in range(5)]
            assert len(scheduler._results) == 3
            assert scheduler.get_task_status(task_ids[0]) is None
            assert scheduler.get_task_status(task_ids[-1]).success
        finally:
            scheduler.shutdown()

    def test_newer_requeue_supersedes_pending(self):
        scheduler = LocalReconcileScheduler(MagicMock(), synchronous=True)
        try:
            scheduler.schedule_reconcile("default", "blog", countdown=30)
            first = scheduler.pending()["default/blog"]
            scheduler.schedule_reconcile("default", "blog", countdown=30)
            assert scheduler.pending()["default/blog"] is not first
            assert first.finished.is_set()
        finally:
            scheduler.shutdown()


class TestCeleryReconcileScheduler:
    @patch("sitehoster.tasks.reconcile_site_task.reconcile_site_task")
    def test_enqueues_task(self, mock_task):
        mock_task.apply_async.return_value.id = "task-1"
        assert CeleryReconcileScheduler().schedule_reconcile("default", "blog", countdown=60) == "task-1"
        mock_task.apply_async.assert_called_once_with(args=("default", "blog"), countdown=60)

    def test_task_status_is_not_tracked(self):
        assert CeleryReconcileScheduler().get_task_status("task-1") is None


class TestCreateReconcileScheduler:
    def test_types(self):
        assert isinstance(create_reconcile_scheduler("celery"), CeleryReconcileScheduler)
        scheduler = create_reconcile_scheduler("local", MagicMock(), synchronous=True)
        assert isinstance(scheduler, LocalReconcileScheduler)

    def test_local_requires_reconciler(self):
        with pytest.raises(ValueError):
            create_reconcile_scheduler("local")

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_reconcile_scheduler("cron")
