from typing import Dict, Optional, Set, Tuple

import pytest

from sitehoster.exceptions import StoreError
from sitehoster.schema.models import ObjectMeta, S3Config, Site, SiteConfig, SiteConfigSpec, SiteSpec, TLSSpec
from sitehoster.site.telemetry import Telemetry
from sitehoster.store.accessors import SiteClient, SiteConfigClient
from sitehoster.store.base import ResourceStore
from sitehoster.store.memory import InMemoryResourceStore


class FaultyStore(ResourceStore):
    """Delegates to another store and fails chosen (operation, kind) pairs with StoreError"""

    def __init__(self, inner: ResourceStore):
        self.inner = inner
        self.failures: Set[Tuple[str, str]] = set()
        self.calls = []

    def fail(self, operation: str, kind: str):
        self.failures.add((operation, kind))

    def heal(self):
        self.failures.clear()

    def _check(self, operation: str, kind):
        self.calls.append((operation, kind.kind))
        if (operation, kind.kind) in self.failures:
            raise StoreError(f"injected {operation} failure for {kind.kind}")

    def get(self, kind, name, namespace=None):
        self._check("get", kind)
        return self.inner.get(kind, name, namespace)

    def list(self, kind, namespace=None, label_selector=None):
        self._check("list", kind)
        return self.inner.list(kind, namespace, label_selector)

    def create(self, kind, resource):
        self._check("create", kind)
        return self.inner.create(kind, resource)

    def update(self, kind, resource):
        self._check("update", kind)
        return self.inner.update(kind, resource)

    def update_status(self, kind, resource):
        self._check("update_status", kind)
        return self.inner.update_status(kind, resource)

    def delete(self, kind, name, namespace=None):
        self._check("delete", kind)
        return self.inner.delete(kind, name, namespace)


class RecordingTelemetry(Telemetry):
    def __init__(self):
        self.observations = []
        self.active: Dict[str, int] = {}

    def observe_reconcile(self, reconciler, name, namespace, seconds):
        self.observations.append((reconciler, name, namespace, seconds))

    def site_added(self, site_type):
        self.active[site_type] = self.active.get(site_type, 0) + 1

    def site_removed(self, site_type):
        self.active[site_type] = self.active.get(site_type, 0) - 1


@pytest.fixture
def memory_store():
    return InMemoryResourceStore()


@pytest.fixture
def faulty_store(memory_store):
    return FaultyStore(memory_store)


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest.fixture
def make_site():
    def _make(name: str = "blog", namespace: str = "default", url: str = "blog.example.com", **spec) -> Site:
        spec.setdefault("repository", "https://github.com/example/blog.git")
        return Site(metadata=ObjectMeta(name=name, namespace=namespace), spec=SiteSpec(url=url, **spec))

    return _make


@pytest.fixture
def make_site_config():
    def _make(
        name: str = "settings",
        namespace: str = "default",
        tls: bool = False,
        tls_annotations: Optional[Dict[str, str]] = None,
        serving_url: Optional[str] = None,
        replicas: int = 1,
        endpoint: str = "https://s3.example.com",
        bucket: str = "my-bucket",
    ) -> SiteConfig:
        return SiteConfig(
            metadata=ObjectMeta(name=name, namespace=namespace),
            spec=SiteConfigSpec(
                tls=TLSSpec(enable=tls, annotations=tls_annotations or {}),
                s3_config=S3Config(endpoint=endpoint, bucketname=bucket, secretName="s3-credentials"),
                serving_url=serving_url,
                nginxProxyReplica=replicas,
            ),
        )

    return _make


@pytest.fixture
def site(memory_store, make_site):
    return SiteClient(memory_store).create(make_site())


@pytest.fixture
def site_config(memory_store, make_site_config):
    return SiteConfigClient(memory_store).create(make_site_config())
