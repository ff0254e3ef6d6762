"""Data models for claudecode-client."""

from __future__ import annotations

import shlex
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from claudecode_client.errors import ClaudeClientError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success or failure of a client operation.

    Operations never raise across the client boundary; they return a Result
    carrying either ``data`` or a structured ``error``.
    """

    success: bool
    data: T | None = None
    error: ClaudeClientError | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> Result[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ClaudeClientError) -> Result[T]:
        return cls(success=False, error=error)

    def unwrap(self) -> T:
        """Return the data, or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.data  # type: ignore[return-value]


@dataclass(frozen=True)
class Command:
    """One execution request. Timeout is in milliseconds."""

    command: str
    args: tuple[str, ...] = ()
    cwd: str | None = None
    env: Mapping[str, str] | None = None
    timeout: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))
        if self.env is not None:
            object.__setattr__(self, "env", dict(self.env))

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def with_defaults(
        self,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: int | None = None,
    ) -> Command:
        """Fill unset fields; env is layered beneath the command's own env.

        A timeout of zero or less counts as unset.
        """
        merged_env: dict[str, str] | None = None
        if env or self.env:
            merged_env = {**(env or {}), **(self.env or {})}
        return replace(
            self,
            cwd=self.cwd or cwd,
            env=merged_env,
            timeout=self.timeout if self.timeout and self.timeout > 0 else timeout,
        )

    def __str__(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one completed command."""

    id: str
    output: str = ""
    error: str | None = None
    exit_code: int = 0
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StreamChunk:
    """One ordered fragment of a stream's output."""

    session_id: str
    sequence: int
    data: str
    is_complete: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StreamCompletion:
    """Payload handed to completion subscribers."""

    session_id: str
    total_chunks: int
    total_data: str
    duration_ms: int


@dataclass(frozen=True)
class StreamFailure:
    """Payload handed to error subscribers."""

    session_id: str
    error: BaseException
    duration_ms: int
    chunks_processed: int


@dataclass(frozen=True)
class StreamStats:
    session_id: str
    chunks_processed: int
    is_complete: bool
    duration_ms: int
    buffer_size: int
    data_length: int


@dataclass
class SessionConfig:
    """Execution context bound to a session."""

    id: str
    working_directory: str | None = None
    environment: dict[str, str] = field(default_factory=dict)
    timeout: int | None = None
    enable_streaming: bool | None = None
    stream_buffer_size: int | None = None


@dataclass(frozen=True)
class SessionStats:
    execution_count: int
    total_duration_ms: int
    average_duration_ms: float
    last_execution_time: datetime | None = None


@dataclass(frozen=True)
class ExecutionOptions:
    """Per-call options. A positive ``timeout`` (ms) beats the command and session values."""

    stream: bool | None = None
    session_id: str | None = None
    timeout: int | None = None
    context: Mapping[str, Any] = field(default_factory=dict)


class EventType(str, Enum):
    SESSION_CREATED = "session.created"
    SESSION_DESTROYED = "session.destroyed"
    EXECUTION_STARTED = "execution.started"
    EXECUTION_COMPLETED = "execution.completed"
    EXECUTION_FAILED = "execution.failed"
    STREAM_CHUNK = "stream.chunk"
    STREAM_COMPLETED = "stream.completed"
    STREAM_ERROR = "stream.error"


@dataclass(frozen=True)
class ClaudeEvent:
    """Lifecycle notification published by the client."""

    type: EventType
    session_id: str | None = None
    execution_id: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


def new_execution_id(prefix: str = "exec") -> str:
    """Generate an id like ``exec_1718000000000_3f9a1c2b7``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
