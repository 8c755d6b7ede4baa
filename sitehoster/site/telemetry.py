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

from abc import ABC, abstractmethod
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Gauge, Histogram


class Telemetry(ABC):
    """Instruments written by every reconcile; implementations must be safe to share across threads"""

    @abstractmethod
    def observe_reconcile(self, reconciler: str, name: str, namespace: str, seconds: float) -> None:
        pass

    @abstractmethod
    def site_added(self, site_type: str) -> None:
        pass

    @abstractmethod
    def site_removed(self, site_type: str) -> None:
        pass


class NoopTelemetry(Telemetry):
    def observe_reconcile(self, reconciler: str, name: str, namespace: str, seconds: float) -> None:
        pass

    def site_added(self, site_type: str) -> None:
        pass

    def site_removed(self, site_type: str) -> None:
        pass


class PrometheusTelemetry(Telemetry):
    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY
        self.reconcile_duration = Histogram(
            "site_reconciler_duration_seconds",
            "How long the reconcile loop ran for in seconds",
            ["reconciler", "name", "namespace"],
            registry=self.registry,
        )
        self.active_sites = Gauge(
            "site_active",
            "Number of Site objects reconciled by this instance",
            ["type"],
            registry=self.registry,
        )

    def observe_reconcile(self, reconciler: str, name: str, namespace: str, seconds: float) -> None:
        self.reconcile_duration.labels(reconciler, name, namespace).observe(seconds)

    def site_added(self, site_type: str) -> None:
        self.active_sites.labels(site_type).inc()

    def site_removed(self, site_type: str) -> None:
        self.active_sites.labels(site_type).dec()
