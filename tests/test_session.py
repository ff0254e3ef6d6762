"""Tests for session context merging and statistics."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from claudecode_client.errors import (
    ConfigurationError,
    ExecutionTimeoutError,
    InactiveSessionError,
)
from claudecode_client.models import Command, ExecutionOptions, Result, SessionConfig
from claudecode_client.services.session import Session


@pytest.fixture
def session(mock_runner, tmp_path):
    config = SessionConfig(
        id="s1",
        working_directory=str(tmp_path),
        environment={"SESSION_VAR": "1", "SHARED": "session"},
        timeout=5000,
        stream_buffer_size=8,
    )
    return Session(config, mock_runner)


def sent_command(runner, method: str = "execute") -> Command:
    return getattr(runner, method).await_args.args[0]


class TestContextMerge:
    @pytest.mark.asyncio
    async def test_session_timeout_applies(self, session, mock_runner):
        await session.execute(Command("claude"))

        assert sent_command(mock_runner).timeout == 5000

    @pytest.mark.asyncio
    async def test_option_timeout_wins(self, session, mock_runner):
        await session.execute(Command("claude", timeout=2000), ExecutionOptions(timeout=1000))

        assert sent_command(mock_runner).timeout == 1000

    @pytest.mark.asyncio
    async def test_command_timeout_beats_session(self, session, mock_runner):
        await session.execute(Command("claude", timeout=2000))

        assert sent_command(mock_runner).timeout == 2000

    @pytest.mark.asyncio
    async def test_working_directory_and_environment(self, session, mock_runner, tmp_path):
        await session.execute(Command("claude", ("-p", "hi"), env={"SHARED": "command"}))

        sent = sent_command(mock_runner)
        assert sent.cwd == str(tmp_path)
        assert sent.args == ("-p", "hi")
        assert sent.env == {"SESSION_VAR": "1", "SHARED": "command"}

    @pytest.mark.asyncio
    async def test_command_cwd_beats_session(self, session, mock_runner):
        await session.execute(Command("claude", cwd="/elsewhere"))

        assert sent_command(mock_runner).cwd == "/elsewhere"

    @pytest.mark.asyncio
    async def test_result_passed_through_unchanged(self, session, mock_runner):
        result = await session.execute(Command("claude"))

        assert result is mock_runner.execute.return_value


class TestStreaming:
    @pytest.mark.asyncio
    async def test_chunks_sequenced(self, session, mock_runner):
        seen: list[tuple[int, str]] = []

        result = await session.execute_stream(
            Command("claude"), lambda c: seen.append((c.sequence, c.data))
        )

        assert seen == [(0, "a"), (1, "b"), (2, "c")]
        assert result.data.output == "abc"
        assert sent_command(mock_runner, "execute_stream").timeout == 5000

    @pytest.mark.asyncio
    async def test_stream_counts_as_execution(self, session):
        await session.execute_stream(Command("claude"))

        assert session.get_stats().execution_count == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_inactive_rejects(self, session, mock_runner):
        session.destroy()

        result = await session.execute(Command("claude"))
        stream_result = await session.execute_stream(Command("claude"))

        assert isinstance(result.error, InactiveSessionError)
        assert isinstance(stream_result.error, InactiveSessionError)
        assert result.error.session_id == "s1"
        mock_runner.execute.assert_not_awaited()
        assert session.get_stats().execution_count == 0

    def test_destroy_is_idempotent(self, session):
        assert session.destroy().success
        assert session.destroy().success
        assert not session.is_active

    @pytest.mark.asyncio
    async def test_update_config_affects_later_calls(self, session, mock_runner):
        assert session.update_config(timeout=750, working_directory="/tmp/next").success

        await session.execute(Command("claude"))

        sent = sent_command(mock_runner)
        assert sent.timeout == 750
        assert sent.cwd == "/tmp/next"

    def test_update_config_rejects_unknown_and_id(self, session):
        assert isinstance(session.update_config(colour="blue").error, ConfigurationError)
        assert isinstance(session.update_config(id="other").error, ConfigurationError)
        assert session.id == "s1"

    def test_update_config_on_inactive(self, session):
        session.destroy()

        assert isinstance(session.update_config(timeout=1).error, InactiveSessionError)

    def test_busy_tracking(self, session):
        assert not session.busy
        session.acquire()
        session.acquire()
        session.release()
        assert session.busy
        session.release()
        assert not session.busy


class TestStats:
    def test_no_executions(self, session):
        stats = session.get_stats()

        assert stats.execution_count == 0
        assert stats.average_duration_ms == 0
        assert stats.last_execution_time is None

    @pytest.mark.asyncio
    async def test_counts_success_and_failure(self, session, mock_runner):
        await session.execute(Command("claude"))
        mock_runner.execute = AsyncMock(return_value=Result.fail(ExecutionTimeoutError("slow")))
        result = await session.execute(Command("claude"))

        stats = session.get_stats()
        assert not result.success
        assert stats.execution_count == 2
        assert stats.total_duration_ms >= 0
        assert stats.last_execution_time is not None

    @pytest.mark.asyncio
    async def test_activity_updated(self, session):
        before = session.last_activity

        await session.execute(Command("claude"))

        assert session.last_activity >= before
