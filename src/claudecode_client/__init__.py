"""Managed subprocess client for the Claude Code CLI."""

from __future__ import annotations

__version__ = "0.1.0"

from claudecode_client.client import ClaudeClient, create_client
from claudecode_client.config import ClientConfig, StorageConfig
from claudecode_client.errors import (
    CapacityError,
    ClaudeClientError,
    ConfigurationError,
    DuplicateSessionError,
    ExecutionTimeoutError,
    InactiveSessionError,
    NotFoundError,
    ProcessError,
    SpawnError,
    StreamClosedError,
)
from claudecode_client.models import (
    ClaudeEvent,
    Command,
    EventType,
    ExecutionOptions,
    ExecutionResult,
    Result,
    SessionConfig,
    SessionStats,
    StreamChunk,
)
from claudecode_client.services.process import ProcessRunner
from claudecode_client.services.session import Session
from claudecode_client.services.stream import StreamAggregator, create_stream_aggregator

__all__ = [
    "__version__",
    "CapacityError",
    "ClaudeClient",
    "ClaudeClientError",
    "ClaudeEvent",
    "ClientConfig",
    "Command",
    "ConfigurationError",
    "DuplicateSessionError",
    "EventType",
    "ExecutionOptions",
    "ExecutionResult",
    "ExecutionTimeoutError",
    "InactiveSessionError",
    "NotFoundError",
    "ProcessError",
    "ProcessRunner",
    "Result",
    "Session",
    "SessionConfig",
    "SessionStats",
    "SpawnError",
    "StorageConfig",
    "StreamAggregator",
    "StreamChunk",
    "StreamClosedError",
    "create_client",
    "create_stream_aggregator",
]
