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

from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

API_GROUP = "sitehoster.dev"
API_VERSION = f"{API_GROUP}/v1alpha1"

DEFAULT_BRANCH = "main"
DEFAULT_INTERVAL = "*/5 * * * *"
DEFAULT_INGRESS_CLASS = "nginx"
DEFAULT_ACCESS_KEY_ID_KEY = "AccessKeyId"
DEFAULT_ACCESS_KEY_KEY = "AccessKey"


class BuildType(str, Enum):
    CRON = "cron"


class BuildStatus(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class PullPolicy(str, Enum):
    ALWAYS = "Always"
    IF_NOT_PRESENT = "IfNotPresent"
    NEVER = "Never"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OwnerReference(_WireModel):
    api_version: str = Field(alias="apiVersion")
    kind: str
    name: str
    uid: str
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = Field(default=None, alias="blockOwnerDeletion")


class ObjectMeta(_WireModel):
    name: str
    namespace: Optional[str] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    generation: Optional[int] = None
    creation_timestamp: Optional[str] = Field(default=None, alias="creationTimestamp")
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    owner_references: List[OwnerReference] = Field(default_factory=list, alias="ownerReferences")


class _Resource(_WireModel):
    """Common conversion between typed models and plain store manifests"""

    KIND: ClassVar[str] = ""

    api_version: str = Field(default=API_VERSION, alias="apiVersion")
    kind: str = ""
    metadata: ObjectMeta

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]):
        return cls.model_validate(resource)

    def to_resource(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"


# Site


class BuildImageOptions(_WireModel):
    image: Optional[str] = None
    tag: Optional[str] = None
    image_pull_policy: Optional[PullPolicy] = Field(default=None, alias="imagePullPolicy")


class BuildOptions(_WireModel):
    command: Optional[str] = None
    image: Optional[BuildImageOptions] = None


class SiteSpec(_WireModel):
    repository: str
    branch: str = DEFAULT_BRANCH
    url: str
    type: BuildType = BuildType.CRON
    interval: str = DEFAULT_INTERVAL
    options: Optional[BuildOptions] = None


class SiteStatus(_WireModel):
    last_build: Optional[str] = Field(default=None, alias="lastbuild")
    commit: Optional[str] = None
    status: Optional[BuildStatus] = None


class Site(_Resource):
    """A static site declared by a user: where its source lives, how often it is built and where it is served"""

    KIND: ClassVar[str] = "Site"

    kind: str = KIND
    spec: SiteSpec
    status: SiteStatus = Field(default_factory=SiteStatus)


# SiteConfig


class TLSSpec(_WireModel):
    enable: bool = False
    annotations: Dict[str, str] = Field(default_factory=dict)


class S3Config(_WireModel):
    endpoint: str
    bucket_name: str = Field(alias="bucketname")
    secret_name: str = Field(alias="secretName")
    access_key_id_key_name: str = Field(default=DEFAULT_ACCESS_KEY_ID_KEY, alias="accessKeyIdKeyName")
    access_key_key_name: str = Field(default=DEFAULT_ACCESS_KEY_KEY, alias="accessKeyKeyName")


class SiteConfigSpec(_WireModel):
    tls: TLSSpec = Field(default_factory=TLSSpec)
    ingress_class_name: str = Field(default=DEFAULT_INGRESS_CLASS, alias="ingressClassName")
    s3_config: S3Config
    serving_url: Optional[str] = None
    nginx_proxy_replica: int = Field(default=1, ge=0, alias="nginxProxyReplica")


class SiteConfig(_Resource):
    """Shared storage, TLS and proxy sizing configuration for every Site in its scope"""

    KIND: ClassVar[str] = "SiteConfig"

    kind: str = KIND
    spec: SiteConfigSpec
