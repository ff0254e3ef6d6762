"""Top-level client: session registry, routing and idle eviction."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any

from claudecode_client.config import ClientConfig, StorageConfig, merge_client_config
from claudecode_client.errors import (
    CapacityError,
    DuplicateSessionError,
    ExecutionTimeoutError,
    NotFoundError,
)
from claudecode_client.models import (
    ClaudeEvent,
    Command,
    EventType,
    ExecutionOptions,
    ExecutionResult,
    Result,
    SessionConfig,
    StreamChunk,
    new_execution_id,
)
from claudecode_client.services.process import ProcessRunner
from claudecode_client.services.session import Session
from claudecode_client.services.stream import StreamAggregator, stream_through
from claudecode_client.storage import database

logger = logging.getLogger(__name__)

EventListener = Callable[[ClaudeEvent], None]
ChunkListener = Callable[[StreamChunk], None]


class ClaudeClient:
    """Single entry point for direct and session-scoped execution.

    The session registry is guarded by an asyncio lock. Routing a call to a
    session looks it up and marks it busy under that lock, so destroy and idle
    eviction are atomic relative to routing, and eviction never destroys a
    session while one of its calls is in flight.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        runner: ProcessRunner | None = None,
        storage: StorageConfig | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.storage = storage or StorageConfig()
        self.runner = runner or ProcessRunner(
            default_cwd=self.config.default_working_directory,
            executable=self.config.executable,
            probe_timeout=self.config.probe_timeout,
        )
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._listeners: list[EventListener] = []
        self._eviction_task: asyncio.Task[None] | None = None
        self._closed = False

    async def __aenter__(self) -> ClaudeClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.cleanup()

    async def start(self) -> None:
        """Open the history store (if enabled) and start idle eviction."""
        self._closed = False
        if self.storage.enabled and not database.is_open():
            await database.init_db(self.storage.db_path)
        if self._eviction_task is None:
            self._eviction_task = asyncio.create_task(self._eviction_loop())
        logger.info(
            "Client started: max_sessions=%d idle_limit=%dms",
            self.config.max_concurrent_sessions,
            self.config.max_session_idle_time,
        )

    # --- Events ---

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register an event listener. Returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(
        self,
        event_type: EventType,
        session_id: str | None = None,
        execution_id: str | None = None,
        **payload: Any,
    ) -> None:
        if not self._listeners:
            return
        event = ClaudeEvent(
            type=event_type,
            session_id=session_id,
            execution_id=execution_id,
            payload=payload,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed: %s", event_type.value)

    # --- Sessions ---

    async def create_session(self, config: SessionConfig | str) -> Result[str]:
        """Register a new session, filling unset fields from client defaults."""
        if isinstance(config, str):
            config = SessionConfig(id=config)

        async with self._lock:
            existing = self._sessions.get(config.id)
            if existing is not None and not existing.is_active:
                del self._sessions[config.id]
                existing = None

            active = sum(1 for s in self._sessions.values() if s.is_active)
            if active >= self.config.max_concurrent_sessions:
                return Result.fail(
                    CapacityError(
                        "Maximum concurrent sessions limit reached "
                        f"({self.config.max_concurrent_sessions})",
                        session_id=config.id,
                    )
                )
            if existing is not None:
                return Result.fail(
                    DuplicateSessionError(f"Session {config.id} already exists", session_id=config.id)
                )

            session_config = replace(
                config,
                working_directory=config.working_directory or self.config.default_working_directory,
                timeout=config.timeout or self.config.default_timeout,
                enable_streaming=(
                    config.enable_streaming
                    if config.enable_streaming is not None
                    else self.config.enable_streaming_by_default
                ),
                stream_buffer_size=config.stream_buffer_size or self.config.stream_buffer_size,
            )
            self._sessions[config.id] = Session(session_config, self.runner)
            total = len(self._sessions)

        logger.info("Session registered: %s (total=%d)", config.id, total)
        self._emit(EventType.SESSION_CREATED, session_id=config.id)
        return Result.ok(config.id)

    async def destroy_session(self, session_id: str) -> Result[None]:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return Result.fail(
                    NotFoundError(f"Session {session_id} not found", session_id=session_id)
                )
            session.destroy()
            del self._sessions[session_id]
            remaining = len(self._sessions)

        logger.info("Session removed: %s (remaining=%d)", session_id, remaining)
        self._emit(
            EventType.SESSION_DESTROYED,
            session_id=session_id,
            reason="requested",
            execution_count=session.get_stats().execution_count,
        )
        return Result.ok()

    def get_active_sessions(self) -> set[str]:
        return {sid for sid, s in list(self._sessions.items()) if s.is_active}

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def _checkout(self, session_id: str) -> Session | None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.acquire()
            return session

    async def evict_idle_sessions(self, now: datetime | None = None) -> list[str]:
        """Run one eviction cycle. Returns the ids removed from the registry.

        Busy sessions are skipped and reconsidered on the next cycle.
        """
        now = now or datetime.now()
        removed: list[str] = []
        idle: list[str] = []

        async with self._lock:
            for session_id, session in list(self._sessions.items()):
                if not session.is_active:
                    del self._sessions[session_id]
                    removed.append(session_id)
                elif not session.busy and session.idle_ms(now) > self.config.max_session_idle_time:
                    session.destroy()
                    del self._sessions[session_id]
                    removed.append(session_id)
                    idle.append(session_id)

        if removed:
            logger.info("Evicted %d session(s): %s", len(removed), ", ".join(removed))
        for session_id in idle:
            self._emit(EventType.SESSION_DESTROYED, session_id=session_id, reason="idle")
        return removed

    async def _eviction_loop(self) -> None:
        interval = self.config.session_cleanup_interval / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                await self.evict_idle_sessions()
            except Exception:
                logger.exception("Idle session eviction failed")

    # --- Execution ---

    async def execute(
        self,
        command: Command,
        options: ExecutionOptions | None = None,
    ) -> Result[ExecutionResult]:
        """Run a command directly, or inside ``options.session_id``."""
        return await self._route(command, options, None, force_stream=False)

    async def execute_stream(
        self,
        command: Command,
        on_chunk: ChunkListener | None = None,
        options: ExecutionOptions | None = None,
    ) -> Result[ExecutionResult]:
        """Run a command, delivering sequenced chunks to ``on_chunk``."""
        return await self._route(command, options, on_chunk, force_stream=True)

    async def _route(
        self,
        command: Command,
        options: ExecutionOptions | None,
        on_chunk: ChunkListener | None,
        force_stream: bool,
    ) -> Result[ExecutionResult]:
        options = options or ExecutionOptions()
        session_id = options.session_id

        if session_id is None:
            streaming = force_stream or self._wants_stream(
                options, self.config.enable_streaming_by_default
            )
            call = self._run_direct(command, options, on_chunk, streaming)
            return await self._observe(command, options, call)

        session = await self._checkout(session_id)
        if session is None:
            return Result.fail(
                NotFoundError(
                    f"Session {session_id} not found", session_id=session_id, command=str(command)
                )
            )
        try:
            if force_stream or self._wants_stream(options, bool(session.config.enable_streaming)):
                aggregator = self._aggregator(
                    session_id, session.config.stream_buffer_size or self.config.stream_buffer_size, on_chunk
                )
                call = session.execute_stream(command, options=options, aggregator=aggregator)
            else:
                call = session.execute(command, options)
            return await self._observe(command, options, call)
        finally:
            session.release()

    @staticmethod
    def _wants_stream(options: ExecutionOptions, default: bool) -> bool:
        return options.stream if options.stream is not None else default

    def _run_direct(
        self,
        command: Command,
        options: ExecutionOptions,
        on_chunk: ChunkListener | None,
        streaming: bool,
    ) -> Awaitable[Result[ExecutionResult]]:
        merged = command.with_defaults(
            cwd=self.config.default_working_directory,
            timeout=self.config.default_timeout,
        )
        if options.timeout and options.timeout > 0:
            merged = replace(merged, timeout=options.timeout)

        if not streaming:
            return self.runner.execute(merged)

        aggregator = self._aggregator(
            new_execution_id("stream"), self.config.stream_buffer_size, on_chunk
        )
        return stream_through(aggregator, lambda push: self.runner.execute_stream(merged, push))

    def _aggregator(
        self,
        stream_id: str,
        buffer_size: int,
        on_chunk: ChunkListener | None,
    ) -> StreamAggregator:
        aggregator = StreamAggregator(stream_id, buffer_size=buffer_size)
        if on_chunk is not None:
            aggregator.on_chunk(on_chunk)
        aggregator.on_chunk(
            lambda chunk: self._emit(
                EventType.STREAM_CHUNK,
                session_id=stream_id,
                sequence=chunk.sequence,
                data=chunk.data,
            )
        )
        aggregator.on_complete(
            lambda done: self._emit(
                EventType.STREAM_COMPLETED,
                session_id=stream_id,
                total_chunks=done.total_chunks,
                duration_ms=done.duration_ms,
            )
        )
        aggregator.on_error(
            lambda failure: self._emit(
                EventType.STREAM_ERROR,
                session_id=stream_id,
                error=str(failure.error),
                duration_ms=failure.duration_ms,
                chunks_processed=failure.chunks_processed,
            )
        )
        return aggregator

    async def _observe(
        self,
        command: Command,
        options: ExecutionOptions,
        call: Awaitable[Result[ExecutionResult]],
    ) -> Result[ExecutionResult]:
        session_id = options.session_id
        logger.info("Executing %s (session=%s)", command, session_id or "-")
        self._emit(
            EventType.EXECUTION_STARTED,
            session_id=session_id,
            command=str(command),
            context=dict(options.context),
        )

        result = await call

        if result.data is not None:
            self._emit(
                EventType.EXECUTION_COMPLETED,
                session_id=session_id,
                execution_id=result.data.id,
                exit_code=result.data.exit_code,
                duration_ms=result.data.duration_ms,
            )
        elif result.error is not None:
            logger.warning("Execution failed: %s %s", result.error, result.error.context())
            self._emit(
                EventType.EXECUTION_FAILED,
                session_id=session_id,
                error=str(result.error),
                error_type=type(result.error).__name__,
            )
        await self._record(command, session_id, result)
        return result

    async def _record(
        self,
        command: Command,
        session_id: str | None,
        result: Result[ExecutionResult],
    ) -> None:
        if not self.storage.enabled or not database.is_open():
            return
        if result.data is not None:
            await database.save_execution(
                command=str(command),
                status="completed",
                execution_id=result.data.id,
                session_id=session_id,
                exit_code=result.data.exit_code,
                duration_ms=result.data.duration_ms,
                output_length=len(result.data.output),
                error=result.data.error or "",
            )
        else:
            error = result.error
            await database.save_execution(
                command=str(command),
                status="timeout" if isinstance(error, ExecutionTimeoutError) else "failed",
                session_id=session_id,
                duration_ms=error.duration_ms if error is not None else None,
                error=str(error),
            )

    # --- Host probing ---

    async def is_available(self) -> bool:
        return await self.runner.is_available()

    async def get_version(self) -> Result[str]:
        return await self.runner.get_version()

    # --- Shutdown ---

    async def cleanup(self) -> None:
        """Stop eviction, destroy all sessions and kill live processes."""
        if self._closed:
            return
        self._closed = True
        logger.info("Cleaning up client: %d session(s)", len(self._sessions))

        if self._eviction_task is not None:
            self._eviction_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._eviction_task
            self._eviction_task = None

        async with self._lock:
            sessions = list(self._sessions.items())
            self._sessions.clear()
        for session_id, session in sessions:
            session.destroy()
            self._emit(EventType.SESSION_DESTROYED, session_id=session_id, reason="shutdown")

        await self.runner.cleanup()

        if self.storage.enabled and database.is_open():
            await database.close_db()
        logger.info("Client cleanup completed")


async def create_client(
    config: ClientConfig | Mapping[str, Any] | None = None,
    *,
    storage: StorageConfig | None = None,
    runner: ProcessRunner | None = None,
    **overrides: Any,
) -> ClaudeClient:
    """Build a started ClaudeClient from partial configuration.

    Raises ConfigurationError for unknown keys or invalid values.
    """
    if isinstance(config, ClientConfig):
        client_config = merge_client_config(config, overrides)
    else:
        client_config = merge_client_config(None, {**(config or {}), **overrides})

    client = ClaudeClient(client_config, runner=runner, storage=storage)
    await client.start()
    return client
