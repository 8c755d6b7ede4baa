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
Desired state of every child resource a Site owns.

Each builder is a pure function of (Site, SiteConfig) and returns a manifest with
``metadata`` (name, namespace, labels, annotations) plus the kind-specific body.
Owner references are added by the upsert engines, not here.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sitehoster.schema.models import Site, SiteConfig
from sitehoster.site import naming
from sitehoster.site.naming import Component
from sitehoster.site.renderer import NginxConfigRenderer, nginx_config_renderer

DEFAULT_BUILDER_IMAGE = "ghcr.io/site-hoster/page_builder:main"
DEFAULT_PROXY_IMAGE = "nginx:alpine"


@dataclass(frozen=True)
class ChildImages:
    builder_image: str = DEFAULT_BUILDER_IMAGE
    proxy_image: str = DEFAULT_PROXY_IMAGE


def _metadata(name: str, site: Site, component: Component, annotations: Optional[Dict[str, str]] = None):
    return {
        "name": name,
        "namespace": site.metadata.namespace,
        "labels": naming.make_labels(site.metadata.name, component),
        "annotations": dict(annotations or {}),
    }


def split_image(reference: str) -> Tuple[str, Optional[str]]:
    """Split "registry:5000/repo:tag" into ("registry:5000/repo", "tag")"""
    repository, sep, tag = reference.rpartition(":")
    if not sep or "/" in tag:
        return reference, None
    return repository, tag


def builder_container_image(site: Site, default_image: str) -> Tuple[str, Optional[str]]:
    """Resolve the build image (and pull policy) honouring the Site's image overrides"""
    options = site.spec.options
    image_options = options.image if options else None
    if image_options is None:
        return default_image, None

    repository, tag = split_image(default_image)
    if image_options.image:
        repository, tag = split_image(image_options.image)
    if image_options.tag:
        tag = image_options.tag
    image = f"{repository}:{tag}" if tag else repository
    pull_policy = image_options.image_pull_policy.value if image_options.image_pull_policy else None
    return image, pull_policy


def _secret_env(name: str, secret_name: str, key: str) -> Dict[str, Any]:
    return {"name": name, "valueFrom": {"secretKeyRef": {"name": secret_name, "key": key}}}


def builder_env(site: Site, site_config: SiteConfig) -> List[Dict[str, Any]]:
    s3 = site_config.spec.s3_config
    env = [
        {"name": "REPO_URL", "value": site.spec.repository},
        {"name": "REPO_BRANCH", "value": site.spec.branch},
        {"name": "PAGE_NAME", "value": site.metadata.name},
        {"name": "S3_BUCKET_NAME", "value": s3.bucket_name},
        # SiteConfig names which keys inside the generic secret hold the credentials
        _secret_env("AWS_ACCESS_KEY_ID", s3.secret_name, s3.access_key_id_key_name),
        _secret_env("AWS_SECRET_ACCESS_KEY", s3.secret_name, s3.access_key_key_name),
        {"name": "S3_ENDPOINT", "value": s3.endpoint},
    ]
    if site.spec.options and site.spec.options.command:
        env.append({"name": "BUILD_COMMAND", "value": site.spec.options.command})
    return env


def desired_cronjob(site: Site, site_config: SiteConfig, images: ChildImages = ChildImages()) -> Dict[str, Any]:
    image, pull_policy = builder_container_image(site, images.builder_image)
    container = {
        "name": "page-builder",
        "image": image,
        "env": builder_env(site, site_config),
    }
    if pull_policy:
        container["imagePullPolicy"] = pull_policy

    return {
        "apiVersion": "batch/v1",
        "kind": "CronJob",
        "metadata": _metadata(naming.builder_cronjob_name(site.metadata.name), site, Component.BUILDER),
        "spec": {
            "schedule": site.spec.interval,
            "concurrencyPolicy": "Forbid",
            "startingDeadlineSeconds": 100,
            "suspend": False,
            "successfulJobsHistoryLimit": 3,
            "failedJobsHistoryLimit": 10,
            "jobTemplate": {
                "spec": {
                    "template": {
                        "spec": {
                            "restartPolicy": "OnFailure",
                            "containers": [container],
                        }
                    }
                }
            },
        },
    }


def desired_config_map(
    site: Site, site_config: SiteConfig, renderer: NginxConfigRenderer = nginx_config_renderer
) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": _metadata(naming.proxy_config_name(site.metadata.name), site, Component.NGINX_PROXY),
        "data": {naming.NGINX_CONF_KEY: renderer.render_for(site.metadata.name, site_config)},
    }


def desired_deployment(site: Site, site_config: SiteConfig, images: ChildImages = ChildImages()) -> Dict[str, Any]:
    labels = naming.make_labels(site.metadata.name, Component.NGINX_PROXY)
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(naming.proxy_deployment_name(site.metadata.name), site, Component.NGINX_PROXY),
        "spec": {
            "replicas": site_config.spec.nginx_proxy_replica,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": dict(labels)},
                "spec": {
                    "containers": [
                        {
                            "name": "nginx",
                            "image": images.proxy_image,
                            "ports": [{"containerPort": naming.PROXY_PORT}],
                            "volumeMounts": [
                                {
                                    "name": "nginx-config",
                                    "mountPath": naming.NGINX_CONF_PATH,
                                    "subPath": naming.NGINX_CONF_KEY,
                                    "readOnly": True,
                                }
                            ],
                        }
                    ],
                    "volumes": [
                        {
                            "name": "nginx-config",
                            "configMap": {"name": naming.proxy_config_name(site.metadata.name)},
                        }
                    ],
                },
            },
        },
    }


def desired_service(site: Site, site_config: SiteConfig = None) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(naming.proxy_service_name(site.metadata.name), site, Component.NGINX_PROXY),
        "spec": {
            "selector": naming.make_labels(site.metadata.name, Component.NGINX_PROXY),
            "ports": [
                {
                    "name": "nginx",
                    "protocol": "TCP",
                    "port": naming.PROXY_PORT,
                    "targetPort": naming.PROXY_PORT,
                }
            ],
        },
    }


def desired_ingress(site: Site, site_config: SiteConfig) -> Dict[str, Any]:
    tls = site_config.spec.tls
    annotations = tls.annotations if tls.enable else {}
    spec = {
        "ingressClassName": site_config.spec.ingress_class_name,
        "rules": [
            {
                "host": site.spec.url,
                "http": {
                    "paths": [
                        {
                            "path": "/",
                            "pathType": "Prefix",
                            "backend": {
                                "service": {
                                    "name": naming.proxy_service_name(site.metadata.name),
                                    "port": {"number": naming.PROXY_PORT},
                                }
                            },
                        }
                    ]
                },
            }
        ],
    }
    if tls.enable:
        spec["tls"] = [{"hosts": [site.spec.url], "secretName": naming.tls_secret_name(site.spec.url)}]

    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": _metadata(naming.ingress_name(site.metadata.name), site, Component.NGINX_PROXY, annotations),
        "spec": spec,
    }
