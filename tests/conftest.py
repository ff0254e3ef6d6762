"""Shared test fixtures."""

from __future__ import annotations

import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

from claudecode_client.config import AppConfig, ClientConfig, LoggingConfig, StorageConfig
from claudecode_client.models import Command, ExecutionResult, Result
from claudecode_client.services.process import ProcessRunner


@pytest.fixture
def client_config(tmp_path):
    """Client defaults pointing at a scratch directory."""
    workdir = tmp_path / "work"
    workdir.mkdir()
    return ClientConfig(
        executable=sys.executable,
        default_timeout=10000,
        max_concurrent_sessions=3,
        default_working_directory=str(workdir),
        stream_buffer_size=16,
        session_cleanup_interval=60000,
        max_session_idle_time=1000,
    )


@pytest.fixture
def app_config(tmp_path, client_config):
    """Create a test configuration."""
    return AppConfig(
        client=client_config,
        storage=StorageConfig(enabled=False, db_path=str(tmp_path / "history.db")),
        logging=LoggingConfig(level="DEBUG", file=str(tmp_path / "test.log")),
    )


@pytest.fixture
def mock_runner():
    """ProcessRunner double whose calls succeed with output 'ok'."""
    runner = MagicMock(spec=ProcessRunner)
    runner.execute = AsyncMock(
        return_value=Result.ok(ExecutionResult(id="exec_1", output="ok", duration_ms=5))
    )

    async def fake_stream(command: Command, on_chunk):
        for piece in ("a", "b", "c"):
            on_chunk(piece)
        return Result.ok(ExecutionResult(id="stream_1", output="abc", duration_ms=5))

    runner.execute_stream = AsyncMock(side_effect=fake_stream)
    runner.cleanup = AsyncMock(return_value=[])
    runner.is_available = AsyncMock(return_value=True)
    runner.get_version = AsyncMock(return_value=Result.ok("1.0.0 (Claude Code)"))
    return runner


def python_command(code: str, **kwargs) -> Command:
    """Command running an inline script with unbuffered output."""
    return Command(sys.executable, ("-u", "-c", code), **kwargs)
