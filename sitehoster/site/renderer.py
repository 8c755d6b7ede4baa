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
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from sitehoster.exceptions import RenderError
from sitehoster.schema.models import SiteConfig

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
NGINX_CONF_TEMPLATE = "nginx.conf.j2"


def resolve_upstream(site_config: SiteConfig) -> str:
    """serving_url wins over the S3 endpoint when it is set"""
    return site_config.spec.serving_url or site_config.spec.s3_config.endpoint


class NginxConfigRenderer:
    """Renders the nginx reverse-proxy config that serves one site out of the bucket"""

    def __init__(self, template_dir: Optional[Path] = None, template_name: str = NGINX_CONF_TEMPLATE):
        self.template_name = template_name
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def render(self, upstream_url: str, bucket_name: str, site_name: str) -> str:
        try:
            template = self.env.get_template(self.template_name)
            return template.render(
                upstream_url=upstream_url.rstrip("/"),
                bucket_name=bucket_name,
                site_name=site_name,
            )
        except TemplateError as e:
            raise RenderError(f"Unable to compile {self.template_name} template: {e}") from e

    def render_for(self, site_name: str, site_config: SiteConfig) -> str:
        return self.render(resolve_upstream(site_config), site_config.spec.s3_config.bucket_name, site_name)


nginx_config_renderer = NginxConfigRenderer()
