import pytest
from pydantic import ValidationError

from sitehoster.schema.models import BuildType, Site, SiteConfig


SITE_MANIFEST = {
    "apiVersion": "sitehoster.dev/v1alpha1",
    "kind": "Site",
    "metadata": {"name": "blog", "namespace": "default", "uid": "1234", "resourceVersion": "7"},
    "spec": {
        "repository": "https://github.com/example/blog.git",
        "url": "blog.example.com",
        "options": {"command": "make", "image": {"tag": "v2", "imagePullPolicy": "IfNotPresent"}},
    },
    "status": {"lastbuild": "2024-05-01T10:00:00Z", "commit": "abc", "status": "Failed"},
}

SITE_CONFIG_MANIFEST = {
    "apiVersion": "sitehoster.dev/v1alpha1",
    "kind": "SiteConfig",
    "metadata": {"name": "settings", "namespace": "default"},
    "spec": {
        "tls": {"enable": True, "annotations": {"cert-manager.io/cluster-issuer": "letsencrypt"}},
        "s3_config": {"endpoint": "https://s3.example.com", "bucketname": "sites", "secretName": "s3"},
    },
}


class TestSite:
    def test_defaults(self):
        site = Site.from_resource(SITE_MANIFEST)
        assert site.spec.branch == "main"
        assert site.spec.interval == "*/5 * * * *"
        assert site.spec.type == BuildType.CRON
        assert site.metadata.resource_version == "7"
        assert site.key == "default/blog"

    def test_wire_names_preserved(self):
        resource = Site.from_resource(SITE_MANIFEST).to_resource()
        assert resource["status"]["lastbuild"] == "2024-05-01T10:00:00Z"
        assert resource["spec"]["options"]["image"]["imagePullPolicy"] == "IfNotPresent"
        assert resource["metadata"]["resourceVersion"] == "7"

    def test_repository_required(self):
        manifest = dict(SITE_MANIFEST, spec={"url": "blog.example.com"})
        with pytest.raises(ValidationError):
            Site.from_resource(manifest)


class TestSiteConfig:
    def test_defaults(self):
        site_config = SiteConfig.from_resource(SITE_CONFIG_MANIFEST)
        assert site_config.spec.ingress_class_name == "nginx"
        assert site_config.spec.nginx_proxy_replica == 1
        assert site_config.spec.serving_url is None
        assert site_config.spec.s3_config.access_key_id_key_name == "AccessKeyId"
        assert site_config.spec.s3_config.access_key_key_name == "AccessKey"

    def test_negative_replicas_rejected(self):
        spec = dict(SITE_CONFIG_MANIFEST["spec"], nginxProxyReplica=-1)
        with pytest.raises(ValidationError):
            SiteConfig.from_resource(dict(SITE_CONFIG_MANIFEST, spec=spec))
