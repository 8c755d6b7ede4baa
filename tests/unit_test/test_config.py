import pytest

from sitehoster.config import Settings, parse_bind_address


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SITEHOSTER_SETTING_NAME", raising=False)
        settings = Settings(_env_file=None)
        assert settings.setting_name == "settings"
        assert settings.metrics_bind_address == ":8080"
        assert settings.health_probe_bind_address == ":8081"
        assert settings.requeue_after == 60.0
        assert settings.fatal_requeue_after == 600.0
        assert settings.leader_elect is False
        assert settings.namespace is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SITEHOSTER_SETTING_NAME", "hoster")
        monkeypatch.setenv("SITEHOSTER_LEADER_ELECT", "true")
        monkeypatch.setenv("SITEHOSTER_REQUEUE_AFTER", "30")
        settings = Settings(_env_file=None)
        assert settings.setting_name == "hoster"
        assert settings.leader_elect is True
        assert settings.requeue_after == 30.0


class TestParseBindAddress:
    def test_port_only(self):
        assert parse_bind_address(":8080") == ("0.0.0.0", 8080)

    def test_host_and_port(self):
        assert parse_bind_address("127.0.0.1:9090") == ("127.0.0.1", 9090)

    @pytest.mark.parametrize("address", ["8080", ":http", ""])
    def test_invalid(self, address):
        with pytest.raises(ValueError):
            parse_bind_address(address)
