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


class SiteHosterError(Exception):
    """Base exception for all site-hoster errors"""


class StoreError(SiteHosterError):
    """The entity store rejected or failed a request"""


class NotFoundError(StoreError):
    def __init__(self, kind: str, name: str, namespace: str = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where} not found")


class ConflictError(StoreError):
    def __init__(self, kind: str, name: str, namespace: str = None, reason: str = "already exists"):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where} {reason}")


class RenderError(SiteHosterError):
    """The nginx proxy config template could not be compiled or rendered"""


class OwnershipError(SiteHosterError):
    """A child resource is already controlled by a different owner"""


class UpsertError(SiteHosterError):
    """Wraps any failure of a child upsert with the child kind and the failing operation"""

    def __init__(self, child: str, operation: str, message: str):
        self.child = child
        self.operation = operation
        super().__init__(message)


class FatalPreconditionError(SiteHosterError):
    """The SiteConfig a Site depends on is missing or unreadable"""

    def __init__(self, setting_name: str, namespace: str, message: str = None):
        self.setting_name = setting_name
        self.namespace = namespace
        super().__init__(
            message
            or f"Failed to fetch SiteConfig {namespace}/{setting_name}. "
            f"You MUST configure site-hoster before deploying a site"
        )


class ReconcileCancelled(SiteHosterError):
    """The reconcile context was cancelled or its deadline passed"""
