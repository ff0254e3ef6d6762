"""Tests for CLI module."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from claudecode_client.cli import app

runner = CliRunner()


@pytest.fixture
def cli_config(app_config, monkeypatch):
    """Point the CLI at the test configuration."""
    import claudecode_client.cli as cli_module

    monkeypatch.setattr(cli_module, "load_config", lambda: app_config)
    return app_config


class TestCli:
    def test_version(self, cli_config):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "claudecode-client v" in result.output
        assert "Python 3" in result.output

    def test_version_tool_missing(self, cli_config):
        cli_config.client.executable = "definitely-not-a-real-binary-xyz"

        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "not installed" in result.output

    def test_run(self, cli_config):
        result = runner.invoke(app, ["run", "--", "-c", "print('hi')"])
        assert result.exit_code == 0
        assert "hi" in result.output

    def test_run_exit_code(self, cli_config):
        result = runner.invoke(app, ["run", "--", "-c", "import sys; sys.exit(4)"])
        assert result.exit_code == 4

    def test_run_stream_with_env(self, cli_config):
        result = runner.invoke(
            app,
            ["run", "--stream", "-e", "CC_VALUE=streamed", "--", "-c", "import os; print(os.environ['CC_VALUE'])"],
        )
        assert result.exit_code == 0
        assert "streamed" in result.output

    def test_run_summary(self, cli_config):
        result = runner.invoke(app, ["run", "--summary", "--", "-c", "print('hi')"])
        assert result.exit_code == 0
        assert "[OK]" in result.output
        assert "hi" in result.output

    def test_run_timeout(self, cli_config):
        result = runner.invoke(app, ["run", "-t", "300", "--", "-c", "import time; time.sleep(10)"])
        assert result.exit_code == 1

    def test_run_missing_executable(self, cli_config):
        result = runner.invoke(app, ["run", "--exe", "definitely-not-a-real-binary-xyz"])
        assert result.exit_code == 1

    def test_run_bad_env(self, cli_config):
        result = runner.invoke(app, ["run", "-e", "NOEQUALS", "--", "-c", "pass"])
        assert result.exit_code == 1

    def test_config_without_file(self, tmp_path, monkeypatch):
        import claudecode_client.cli as cli_module
        import claudecode_client.config as cfg_module

        monkeypatch.setattr(cfg_module, "CONFIG_FILE", tmp_path / "nonexistent.toml")
        monkeypatch.setattr(cli_module, "CONFIG_FILE", tmp_path / "nonexistent.toml")

        result = runner.invoke(app, ["config"], env={"COLUMNS": "200"})
        assert result.exit_code == 0
        assert "client.default_timeout" in result.output

    def test_config_set(self, tmp_path, monkeypatch):
        import claudecode_client.cli as cli_module
        import claudecode_client.config as cfg_module

        config_file = tmp_path / "config.toml"
        monkeypatch.setattr(cfg_module, "CONFIG_FILE", config_file)
        monkeypatch.setattr(cfg_module, "CONFIG_DIR", tmp_path)
        monkeypatch.setattr(cli_module, "CONFIG_FILE", config_file)
        monkeypatch.delenv("CLAUDECODE_TIMEOUT", raising=False)

        result = runner.invoke(app, ["config", "client.default_timeout", "45000"])
        assert result.exit_code == 0
        assert cfg_module.load_config().client.default_timeout == 45000

    def test_config_bad_key_format(self):
        result = runner.invoke(app, ["config", "default_timeout", "1"])
        assert result.exit_code == 1

    def test_config_bad_value(self):
        result = runner.invoke(app, ["config", "client.default_timeout", "soon"])
        assert result.exit_code == 1

    def test_history_disabled(self, cli_config):
        result = runner.invoke(app, ["history"])
        assert result.exit_code == 0
        assert "disabled" in result.output.lower()

    def test_history_empty(self, cli_config):
        cli_config.storage.enabled = True

        result = runner.invoke(app, ["history"])
        assert result.exit_code == 0
        assert "no executions" in result.output.lower()
