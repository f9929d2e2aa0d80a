"""
Tests for configuration persistence
"""

import json

import pytest

from config_manager import ConfigManager
from registry_errors import ConfigurationError
from registry_models import RegistryRef, RegistryType


@pytest.fixture
def config_manager(tmp_path):
    return ConfigManager(config_dir=tmp_path / "config")


class TestConfigManager:
    def test_defaults_without_config_file(self, config_manager):
        config = config_manager.load_config()

        assert config["registries"] == []
        assert config["app_settings"]["default_page_size"] == 100
        assert config["app_settings"]["verify_tls"] is True

    def test_registry_round_trip(self, config_manager):
        registry_id = config_manager.save_registry_config(
            "https://ghcr.io", "GitHub", RegistryType.GITHUB,
            {"auth_type": "bearer", "password": "token"},
        )

        stored = config_manager.get_registry_config(registry_id)
        assert stored["url"] == "https://ghcr.io"
        assert stored["type"] == 8
        assert stored["auth_type"] == "bearer"
        assert config_manager.registry_ref(registry_id) == RegistryRef(registry_id, RegistryType.GITHUB, "GitHub")

    def test_saving_same_url_updates_entry(self, config_manager):
        first = config_manager.save_registry_config("https://reg.example", "one")
        second = config_manager.save_registry_config("https://reg.example", "two", "gitlab")

        assert first == second
        registries = config_manager.list_configured_registries()
        assert len(registries) == 1
        assert registries[0]["name"] == "two"
        assert registries[0]["type"] == int(RegistryType.GITLAB)

    def test_backup_written_on_second_save(self, config_manager):
        config_manager.save_registry_config("https://a.example", "a")
        config_manager.save_registry_config("https://b.example", "b")

        backup = json.loads(config_manager.backup_file.read_text())
        assert len(backup["registries"]) == 1
        assert config_manager.get_config_info()["registry_count"] == 2

    def test_corrupt_file_falls_back_to_defaults(self, config_manager):
        config_manager.config_file.write_text("{not json")

        assert config_manager.load_config()["registries"] == []

    def test_remove_registry(self, config_manager):
        registry_id = config_manager.save_registry_config("https://a.example", "a")

        assert config_manager.remove_registry_config(registry_id)
        assert not config_manager.remove_registry_config(registry_id)
        with pytest.raises(ConfigurationError):
            config_manager.registry_ref(registry_id)

    def test_partial_app_settings_are_completed(self, config_manager):
        config_manager.config_file.write_text(json.dumps({"registries": [], "app_settings": {"request_timeout": 5}}))

        settings = config_manager.get_app_settings()

        assert settings["request_timeout"] == 5
        assert settings["default_page_size"] == 100

    def test_missing_registry_type_means_custom(self, config_manager):
        config_manager.config_file.write_text(json.dumps({
            "registries": [{"id": "nulltype", "url": "https://registry.example", "type": None}],
        }))

        assert config_manager.registry_ref("nulltype").type == RegistryType.CUSTOM

    def test_invalid_registry_type_is_configuration_error(self, config_manager):
        config_manager.config_file.write_text(json.dumps({
            "registries": [{"id": "odd", "url": "https://registry.example", "type": 99}],
        }))

        with pytest.raises(ConfigurationError):
            config_manager.registry_ref("odd")
