"""
Unit tests for SiteReconciler.

Covers convergence of the five children, idempotent repeated passes, the missing
or malformed SiteConfig precondition, partial failure with retry, API transport
failures, deletion cascade, cancellation and the telemetry bookkeeping.
"""

from unittest.mock import MagicMock

import pytest
import urllib3
from prometheus_client import CollectorRegistry

from sitehoster.exceptions import FatalPreconditionError, ReconcileCancelled, StoreError, UpsertError
from sitehoster.site.context import ReconcileContext
from sitehoster.site.reconciler import SiteReconciler
from sitehoster.site.telemetry import PrometheusTelemetry
from sitehoster.store.accessors import SiteConfigClient
from sitehoster.store.base import CHILD_KINDS, CONFIG_MAP, CRON_JOB, DEPLOYMENT, INGRESS, SERVICE, SITE, SITE_CONFIG
from sitehoster.store.kubernetes import KubernetesResourceStore


def _child_counts(store):
    return {kind.kind: len(store.list(kind, namespace="default")) for kind in CHILD_KINDS}


def _versions(store):
    return {
        (kind.kind, obj["metadata"]["name"]): obj["metadata"]["resourceVersion"]
        for kind in CHILD_KINDS
        for obj in store.list(kind)
    }


class TestReconcileConvergence:
    def test_creates_all_children(self, memory_store, site, site_config, telemetry):
        result = SiteReconciler(memory_store, telemetry=telemetry).reconcile("default", "blog")

        assert result.error is None
        assert result.requeue is False
        assert _child_counts(memory_store) == {
            "CronJob": 1,
            "ConfigMap": 1,
            "Deployment": 1,
            "Service": 1,
            "Ingress": 1,
        }
        memory_store.get(CRON_JOB, "blog", "default")
        memory_store.get(CONFIG_MAP, "nginx-proxy-conf-blog", "default")
        memory_store.get(DEPLOYMENT, "nginx-proxy-blog", "default")
        memory_store.get(SERVICE, "nginx-proxy-blog-svc", "default")
        memory_store.get(INGRESS, "blog", "default")

    def test_every_child_is_controlled_by_the_site(self, memory_store, site, site_config):
        SiteReconciler(memory_store).reconcile("default", "blog")
        for kind in CHILD_KINDS:
            for obj in memory_store.list(kind):
                refs = obj["metadata"]["ownerReferences"]
                assert len(refs) == 1
                assert refs[0]["uid"] == site.metadata.uid
                assert refs[0]["controller"] is True

    def test_repeated_pass_changes_nothing(self, memory_store, site, site_config):
        reconciler = SiteReconciler(memory_store)
        reconciler.reconcile("default", "blog")
        before = _versions(memory_store)

        result = reconciler.reconcile("default", "blog")

        assert result.error is None
        assert _versions(memory_store) == before

    def test_site_config_change_reaches_children(self, memory_store, site, site_config):
        reconciler = SiteReconciler(memory_store)
        reconciler.reconcile("default", "blog")

        site_config.spec.nginx_proxy_replica = 3
        SiteConfigClient(memory_store).update(site_config)
        reconciler.reconcile("default", "blog")

        assert memory_store.get(DEPLOYMENT, "nginx-proxy-blog", "default")["spec"]["replicas"] == 3

    def test_desired_children_order(self, memory_store, site, site_config):
        kinds = [kind.kind for kind, _ in SiteReconciler(memory_store).desired_children(site, site_config)]
        assert kinds == ["CronJob", "ConfigMap", "Deployment", "Service", "Ingress"]
        assert _child_counts(memory_store) == {kind.kind: 0 for kind in CHILD_KINDS}


class TestReconcileFailures:
    def test_missing_site_is_ignored(self, memory_store, site_config, telemetry):
        result = SiteReconciler(memory_store, telemetry=telemetry).reconcile("default", "gone")

        assert result.error is None
        assert result.requeue is False
        assert _child_counts(memory_store) == {kind.kind: 0 for kind in CHILD_KINDS}
        assert len(telemetry.observations) == 1

    def test_missing_site_config_is_fatal(self, memory_store, site):
        result = SiteReconciler(memory_store).reconcile("default", "blog")

        assert isinstance(result.error, FatalPreconditionError)
        assert result.fatal
        assert result.requeue is False
        assert "You MUST configure site-hoster before deploying a site" in str(result.error)
        assert _child_counts(memory_store) == {kind.kind: 0 for kind in CHILD_KINDS}

    def test_site_config_with_other_name_is_not_used(self, memory_store, site, make_site_config):
        SiteConfigClient(memory_store).create(make_site_config(name="other"))
        result = SiteReconciler(memory_store).reconcile("default", "blog")
        assert result.fatal

    def test_custom_setting_name(self, memory_store, site, make_site_config):
        SiteConfigClient(memory_store).create(make_site_config(name="hoster"))
        result = SiteReconciler(memory_store, setting_name="hoster").reconcile("default", "blog")
        assert result.error is None

    def test_site_fetch_error_is_retried(self, faulty_store, site, site_config):
        faulty_store.fail("get", "Site")
        result = SiteReconciler(faulty_store, requeue_after=60).reconcile("default", "blog")
        assert isinstance(result.error, StoreError)
        assert result.requeue is True
        assert result.requeue_after == 60
        assert not result.fatal

    def test_partial_failure_then_convergence(self, faulty_store, memory_store, site, site_config):
        reconciler = SiteReconciler(faulty_store)
        faulty_store.fail("create", "Deployment")

        result = reconciler.reconcile("default", "blog")

        assert result.requeue is True
        assert result.requeue_after == 60
        assert _child_counts(memory_store) == {
            "CronJob": 1,
            "ConfigMap": 1,
            "Deployment": 0,
            "Service": 0,
            "Ingress": 0,
        }

        faulty_store.heal()
        result = reconciler.reconcile("default", "blog")

        assert result.error is None
        assert _child_counts(memory_store) == {kind.kind: 1 for kind in CHILD_KINDS}

    def test_cancelled_pass_is_retried(self, memory_store, site, site_config):
        context = ReconcileContext()
        context.cancel()
        result = SiteReconciler(memory_store).reconcile("default", "blog", context)
        assert result.requeue is True
        assert _child_counts(memory_store) == {kind.kind: 0 for kind in CHILD_KINDS}

    def test_expired_deadline_is_retried(self, memory_store, site, site_config):
        result = SiteReconciler(memory_store).reconcile("default", "blog", ReconcileContext.with_timeout(-1))
        assert isinstance(result.error, ReconcileCancelled)
        assert result.requeue is True

    def test_checkpoint_can_cancel_mid_pass(self, memory_store, site, site_config):
        checks = []

        def stop_after_two(context):
            checks.append(1)
            if len(checks) > 2:
                context.cancel()

        context = ReconcileContext(on_checkpoint=stop_after_two)
        result = SiteReconciler(memory_store).reconcile("default", "blog", context)

        assert isinstance(result.error, ReconcileCancelled)
        assert result.requeue is True
        assert _child_counts(memory_store)["Ingress"] == 0

    def test_malformed_site_config_is_fatal(self, memory_store, site):
        memory_store.create(SITE_CONFIG, {"metadata": {"name": "settings", "namespace": "default"}, "spec": {}})

        result = SiteReconciler(memory_store).reconcile("default", "blog")

        assert result.fatal
        assert isinstance(result.error.__cause__, StoreError)
        assert _child_counts(memory_store) == {kind.kind: 0 for kind in CHILD_KINDS}

    def test_malformed_site_is_retried(self, memory_store, site_config):
        memory_store.create(SITE, {"metadata": {"name": "blog", "namespace": "default"}, "spec": {"url": "b.example"}})

        result = SiteReconciler(memory_store, requeue_after=60).reconcile("default", "blog")

        assert isinstance(result.error, StoreError)
        assert result.requeue is True
        assert result.requeue_after == 60
        assert not result.fatal


class TestReconcileOverKubernetesApi:
    """Transport failures of the API client surface as retryable results."""

    @pytest.fixture
    def apis(self):
        return {}

    @pytest.fixture
    def kube_store(self, apis, make_site, make_site_config):
        dynamic_client = MagicMock()
        dynamic_client.resources.get.side_effect = lambda api_version, kind: apis.setdefault(kind, MagicMock())
        for kind, obj in (("Site", make_site()), ("SiteConfig", make_site_config())):
            apis[kind] = MagicMock(name=kind)
            apis[kind].get.return_value.to_dict.return_value = obj.to_resource()
        return KubernetesResourceStore(dynamic_client=dynamic_client)

    def test_connection_refused_is_retried(self, apis, kube_store):
        apis["CronJob"] = MagicMock(name="CronJob")
        apis["CronJob"].get.side_effect = urllib3.exceptions.MaxRetryError(
            None, "/apis/batch/v1/namespaces/default/cronjobs/blog-page-builder", reason="connection refused"
        )

        result = SiteReconciler(kube_store, requeue_after=60).reconcile("default", "blog")

        assert isinstance(result.error, UpsertError)
        assert result.requeue is True
        assert result.requeue_after == 60
        assert not result.fatal

    def test_site_fetch_socket_error_is_retried(self, apis, kube_store):
        apis["Site"].get.side_effect = ConnectionResetError("connection reset by peer")

        result = SiteReconciler(kube_store, requeue_after=60).reconcile("default", "blog")

        assert isinstance(result.error, StoreError)
        assert result.requeue is True


class TestSiteDeletion:
    def test_children_are_collected_with_the_site(self, memory_store, site, site_config, telemetry):
        reconciler = SiteReconciler(memory_store, telemetry=telemetry)
        reconciler.reconcile("default", "blog")
        assert telemetry.active == {"cron": 1}

        memory_store.delete(SITE, "blog", "default")
        result = reconciler.reconcile("default", "blog")

        assert result.error is None
        assert _child_counts(memory_store) == {kind.kind: 0 for kind in CHILD_KINDS}
        assert telemetry.active == {"cron": 0}


class TestReconcileTelemetry:
    def test_prometheus_instruments(self, memory_store, site, site_config):
        registry = CollectorRegistry()
        reconciler = SiteReconciler(memory_store, telemetry=PrometheusTelemetry(registry))

        reconciler.reconcile("default", "blog")
        reconciler.reconcile("default", "blog")

        labels = {"reconciler": "site", "name": "blog", "namespace": "default"}
        assert registry.get_sample_value("site_reconciler_duration_seconds_count", labels) == 2.0
        assert registry.get_sample_value("site_active", {"type": "cron"}) == 1.0

    def test_failed_pass_not_counted_as_active(self, memory_store, site, telemetry):
        SiteReconciler(memory_store, telemetry=telemetry).reconcile("default", "blog")
        assert telemetry.active == {}
        assert len(telemetry.observations) == 1
