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

"""
Site reconciliation

Given a Site and the shared SiteConfig of its namespace, derive the five child
resources that build and serve the site and converge the cluster towards them:

- CronJob: periodically builds the site and publishes it to the bucket
- ConfigMap: the rendered nginx proxy config
- Deployment: nginx proxies serving the site out of the bucket
- Service: cluster-internal endpoint for the proxies
- Ingress: public route for the Site's URL, with optional TLS

Every child is owned by its Site so deleting the Site garbage-collects them.
"""

from .context import ReconcileContext
from .reconciler import ReconcileResult, SiteReconciler
from .telemetry import NoopTelemetry, PrometheusTelemetry, Telemetry

__all__ = [
    "NoopTelemetry",
    "PrometheusTelemetry",
    "ReconcileContext",
    "ReconcileResult",
    "SiteReconciler",
    "Telemetry",
]
