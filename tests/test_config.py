"""Tests for the INI configuration layer and the settings state file."""

import json

import pytest

from ext_updater.exceptions import ConfigurationError
from ext_updater.models.config import (
    DEFAULT_RETRY_DELAY,
    DEFAULT_UPDATE_INTERVAL,
    UpdaterConfig,
)
from ext_updater.storage.config_manager import ConfigManager
from ext_updater.storage.settings import SettingsStore


class TestConfigManager:
    def test_missing_file_raises(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.ini")
        with pytest.raises(ConfigurationError, match="ext-updater init"):
            manager.load_config()

    def test_new_config_loads_with_defaults(self, tmp_path):
        config_file = tmp_path / "config.ini"
        ConfigManager(config_file).save_new_config(
            {"repository_url": "https://repo.example.org/", "max_workers": 2}
        )

        config = ConfigManager(config_file).load_config()

        assert config.repository_url == "https://repo.example.org"
        assert config.max_workers == 2
        assert config.update_interval == DEFAULT_UPDATE_INTERVAL
        assert config.retry_delay == DEFAULT_RETRY_DELAY
        assert config.auto_update is False
        assert config.config_path == str(tmp_path)

    def test_lists_and_cli_overrides(self, tmp_path):
        config_file = tmp_path / "config.ini"
        config_file.write_text(
            "[DEFAULT]\n"
            "disabled_extensions = a@x, b@x ,\n"
            "protocol = TAGGED\n"
            "auto_update = yes\n"
        )

        config = ConfigManager(config_file).load_config({"auto_update": False})

        assert config.disabled_extensions == ["a@x", "b@x"]
        assert config.protocol == "tagged"
        assert config.uses_version_tags is True
        assert config.auto_update is False

    def test_missing_keys_are_migrated(self, tmp_path):
        config_file = tmp_path / "config.ini"
        config_file.write_text("[DEFAULT]\nshell_version = 40.0\n")

        ConfigManager(config_file).load_config()

        text = config_file.read_text()
        assert "shell_version = 40.0" in text
        assert "update_interval = 432000" in text
        assert "self_uuid = updater@patapon.info" in text

    @pytest.mark.parametrize(
        "line",
        [
            "max_workers = 0",
            "retry_delay = 500000",
            "repository_url = ftp://repo",
            "protocol = carrier-pigeon",
            "update_interval = soon",
        ],
    )
    def test_invalid_values_raise(self, tmp_path, line):
        config_file = tmp_path / "config.ini"
        config_file.write_text(f"[DEFAULT]\n{line}\n")

        with pytest.raises(ConfigurationError):
            ConfigManager(config_file).load_config()


def test_repository_urls():
    config = UpdaterConfig(repository_url="https://extensions.gnome.org/", config_path=".")

    assert config.update_info_url == "https://extensions.gnome.org/update-info/"
    assert config.download_url("a@b") == (
        "https://extensions.gnome.org/download-extension/a@b.shell-extension.zip"
    )


class TestSettingsStore:
    def test_never_checked_is_zero(self, tmp_path):
        assert SettingsStore(tmp_path).get_last_check() == 0

    def test_last_check_survives_restart(self, tmp_path):
        SettingsStore(tmp_path).set_last_check(1_700_000_000)

        assert SettingsStore(tmp_path).get_last_check() == 1_700_000_000
        assert json.loads((tmp_path / "state.json").read_text()) == {
            "lastcheck": 1_700_000_000
        }
        assert not (tmp_path / "state.json.tmp").exists()

    def test_corrupt_state_is_a_configuration_error(self, tmp_path):
        (tmp_path / "state.json").write_text("{not json")
        with pytest.raises(ConfigurationError):
            SettingsStore(tmp_path)

    def test_wrong_layout_is_a_configuration_error(self, tmp_path):
        (tmp_path / "state.json").write_text(json.dumps({"lastcheck": "yesterday"}))
        with pytest.raises(ConfigurationError):
            SettingsStore(tmp_path)
