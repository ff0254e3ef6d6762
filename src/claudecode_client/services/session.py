"""Persistent execution context routed through a ProcessRunner."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import fields, replace
from datetime import datetime
from typing import Any

from claudecode_client.errors import ConfigurationError, InactiveSessionError
from claudecode_client.models import (
    Command,
    ExecutionOptions,
    ExecutionResult,
    Result,
    SessionConfig,
    SessionStats,
    StreamChunk,
)
from claudecode_client.services.process import ProcessRunner
from claudecode_client.services.stream import DEFAULT_BUFFER_SIZE, StreamAggregator, stream_through

logger = logging.getLogger(__name__)

_UPDATABLE = {f.name for f in fields(SessionConfig)} - {"id"}


class Session:
    """Apply a fixed directory/environment/timeout to every command.

    Statistics count every routed execution, successful or not. A destroyed
    session rejects further work and is never reactivated.
    """

    def __init__(self, config: SessionConfig, runner: ProcessRunner) -> None:
        self.id = config.id
        self.config = replace(config, environment=dict(config.environment))
        self.created_at = datetime.now()
        self._runner = runner
        self._active = True
        self._last_activity = self.created_at
        self._execution_count = 0
        self._total_duration_ms = 0
        self._last_execution_time: datetime | None = None
        self._in_flight = 0

        logger.info("Session created: %s (cwd=%s)", self.id, self.config.working_directory)

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def last_activity(self) -> datetime:
        return self._last_activity

    @property
    def busy(self) -> bool:
        return self._in_flight > 0

    def acquire(self) -> None:
        """Mark a call as in flight so idle eviction leaves the session alone."""
        self._in_flight += 1

    def release(self) -> None:
        self._in_flight = max(0, self._in_flight - 1)

    def _touch(self) -> None:
        self._last_activity = datetime.now()

    def _resolve(self, command: Command, options: ExecutionOptions | None) -> Command:
        merged = command.with_defaults(
            cwd=self.config.working_directory,
            env=self.config.environment,
            timeout=self.config.timeout,
        )
        if options is not None and options.timeout and options.timeout > 0:
            merged = replace(merged, timeout=options.timeout)
        return merged

    def _inactive(self) -> Result[Any]:
        return Result.fail(
            InactiveSessionError(f"Session {self.id} is not active", session_id=self.id)
        )

    async def execute(
        self,
        command: Command,
        options: ExecutionOptions | None = None,
    ) -> Result[ExecutionResult]:
        """Run a command with this session's context applied."""
        if not self._active:
            return self._inactive()

        merged = self._resolve(command, options)
        logger.info("Executing in session %s: %s", self.id, merged)
        return await self._track(self._runner.execute(merged))

    async def execute_stream(
        self,
        command: Command,
        on_chunk: Callable[[StreamChunk], None] | None = None,
        options: ExecutionOptions | None = None,
        aggregator: StreamAggregator | None = None,
    ) -> Result[ExecutionResult]:
        """Streaming variant of :meth:`execute`.

        Raw output is sequenced by a StreamAggregator owned by this call;
        ``on_chunk`` receives its chunks in order.
        """
        if not self._active:
            return self._inactive()

        merged = self._resolve(command, options)
        if aggregator is None:
            aggregator = StreamAggregator(
                self.id, buffer_size=self.config.stream_buffer_size or DEFAULT_BUFFER_SIZE
            )
        if on_chunk is not None:
            aggregator.on_chunk(on_chunk)

        logger.info("Executing streaming command in session %s: %s", self.id, merged)
        return await self._track(
            stream_through(aggregator, lambda push: self._runner.execute_stream(merged, push)),
        )

    async def _track(
        self, call: Awaitable[Result[ExecutionResult]]
    ) -> Result[ExecutionResult]:
        self._touch()
        start = time.monotonic()
        try:
            result = await call
        finally:
            duration_ms = int((time.monotonic() - start) * 1000)
            self._execution_count += 1
            self._total_duration_ms += duration_ms
            self._last_execution_time = datetime.now()
            self._touch()

        if result.data is not None:
            logger.info(
                "Session %s command finished: exit=%d duration=%dms",
                self.id,
                result.data.exit_code,
                duration_ms,
            )
        else:
            logger.error("Session %s command failed after %dms: %s", self.id, duration_ms, result.error)
        return result

    def update_config(self, **changes: Any) -> Result[None]:
        """Merge fields into the live config; in-flight calls are unaffected."""
        if not self._active:
            return self._inactive()

        unknown = sorted(set(changes) - _UPDATABLE)
        if unknown:
            return Result.fail(
                ConfigurationError(
                    f"Cannot update session fields: {', '.join(unknown)}", session_id=self.id
                )
            )

        if "environment" in changes and changes["environment"] is not None:
            changes["environment"] = dict(changes["environment"])
        self.config = replace(self.config, **changes)
        self._touch()
        logger.info("Session %s config updated: %s", self.id, sorted(changes))
        return Result.ok()

    def destroy(self) -> Result[None]:
        """Deactivate the session. Idempotent; running processes are left alone."""
        if self._active:
            self._active = False
            lifespan = datetime.now() - self.created_at
            logger.info(
                "Session destroyed: %s executions=%d lifespan=%.1fs",
                self.id,
                self._execution_count,
                lifespan.total_seconds(),
            )
        return Result.ok()

    def get_stats(self) -> SessionStats:
        count = self._execution_count
        return SessionStats(
            execution_count=count,
            total_duration_ms=self._total_duration_ms,
            average_duration_ms=self._total_duration_ms / count if count else 0,
            last_execution_time=self._last_execution_time,
        )

    def idle_ms(self, now: datetime | None = None) -> int:
        """Milliseconds since the last activity."""
        now = now or datetime.now()
        return int((now - self._last_activity).total_seconds() * 1000)
