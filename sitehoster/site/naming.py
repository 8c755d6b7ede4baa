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
from typing import Dict

APP_LABEL = "site-hoster"

NGINX_CONF_KEY = "nginx.conf"
NGINX_CONF_PATH = "/etc/nginx/nginx.conf"
PROXY_PORT = 80


class Component(str, Enum):
    BUILDER = "builder"
    NGINX_PROXY = "nginx-proxy"


def make_labels(site_name: str, component: Component) -> Dict[str, str]:
    return {
        "app": APP_LABEL,
        "component": Component(component).value,
        "page": site_name,
    }


def builder_cronjob_name(site_name: str) -> str:
    return site_name


def proxy_config_name(site_name: str) -> str:
    return f"nginx-proxy-conf-{site_name}"


def proxy_deployment_name(site_name: str) -> str:
    return f"nginx-proxy-{site_name}"


def proxy_service_name(site_name: str) -> str:
    return f"nginx-proxy-{site_name}-svc"


def ingress_name(site_name: str) -> str:
    return site_name


def tls_secret_name(url: str) -> str:
    """docs.example.com -> docs-example-com-page-secret"""
    return f"{url.replace('.', '-')}-page-secret"
