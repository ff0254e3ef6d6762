"""Tests for configuration module."""

from __future__ import annotations

import os

import pytest

from claudecode_client.config import (
    AppConfig,
    ClientConfig,
    StorageConfig,
    get_config,
    load_config,
    merge_client_config,
    reset_config,
    save_config,
)
from claudecode_client.errors import ConfigurationError


@pytest.fixture
def config_paths(tmp_path, monkeypatch):
    import claudecode_client.config as cfg_module

    config_file = tmp_path / "config.toml"
    monkeypatch.setattr(cfg_module, "CONFIG_FILE", config_file)
    monkeypatch.setattr(cfg_module, "CONFIG_DIR", tmp_path)
    for name in list(os.environ):
        if name.startswith("CLAUDECODE_"):
            monkeypatch.delenv(name)
    return config_file


class TestAppConfig:
    def test_defaults(self):
        config = AppConfig()
        assert config.client.executable == "claude"
        assert config.client.default_timeout == 30000
        assert config.client.max_concurrent_sessions == 10
        assert config.client.default_working_directory == os.getcwd()
        assert config.client.enable_streaming_by_default is False
        assert config.client.stream_buffer_size == 1024
        assert config.client.session_cleanup_interval == 60000
        assert config.client.max_session_idle_time == 300000
        assert config.storage.enabled is False

    def test_save_and_load(self, config_paths):
        config = AppConfig(
            client=ClientConfig(
                executable="/opt/claude",
                default_timeout=60000,
                default_working_directory="/tmp/test",
                enable_streaming_by_default=True,
            ),
            storage=StorageConfig(enabled=True, db_path="/tmp/history.db"),
        )

        save_config(config)
        assert config_paths.exists()
        assert config_paths.stat().st_mode & 0o777 == 0o600

        loaded = load_config()
        assert loaded.client.executable == "/opt/claude"
        assert loaded.client.default_timeout == 60000
        assert loaded.client.default_working_directory == "/tmp/test"
        assert loaded.client.enable_streaming_by_default is True
        assert loaded.storage.enabled is True
        assert loaded.storage.db_path == "/tmp/history.db"

    def test_env_overrides_file(self, config_paths, monkeypatch):
        save_config(AppConfig(client=ClientConfig(default_timeout=60000)))
        monkeypatch.setenv("CLAUDECODE_TIMEOUT", "1500")
        monkeypatch.setenv("CLAUDECODE_STREAMING", "yes")
        monkeypatch.setenv("CLAUDECODE_MAX_SESSIONS", "2")

        loaded = load_config()
        assert loaded.client.default_timeout == 1500
        assert loaded.client.enable_streaming_by_default is True
        assert loaded.client.max_concurrent_sessions == 2

    def test_missing_file_gives_defaults(self, config_paths):
        assert load_config().client.default_timeout == 30000

    def test_singleton(self, config_paths):
        reset_config()
        try:
            assert get_config() is get_config()
        finally:
            reset_config()


class TestMergeClientConfig:
    def test_partial_overrides(self):
        base = ClientConfig(default_timeout=1000)
        merged = merge_client_config(base, {"max_concurrent_sessions": 2, "executable": None})

        assert merged.max_concurrent_sessions == 2
        assert merged.default_timeout == 1000
        assert merged.executable == "claude"
        assert base.max_concurrent_sessions == 10

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="max_sessions"):
            merge_client_config(None, {"max_sessions": 2})

    @pytest.mark.parametrize("key", ["default_timeout", "stream_buffer_size", "max_concurrent_sessions"])
    def test_non_positive_rejected(self, key):
        with pytest.raises(ConfigurationError, match=key):
            merge_client_config(None, {key: 0})

    def test_invalid_base_rejected(self):
        with pytest.raises(ConfigurationError):
            merge_client_config(ClientConfig(executable=""))
