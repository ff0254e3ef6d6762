"""Error kinds returned by the client, sessions and process runner."""

from __future__ import annotations


class ClaudeClientError(Exception):
    """Base error carrying enough context to log or retry at a higher layer."""

    def __init__(
        self,
        message: str,
        *,
        command: str | None = None,
        session_id: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.command = command
        self.session_id = session_id
        self.duration_ms = duration_ms

    def context(self) -> dict[str, object]:
        """Non-empty context fields, for structured logging."""
        fields = {
            "command": self.command,
            "session_id": self.session_id,
            "duration_ms": self.duration_ms,
        }
        return {k: v for k, v in fields.items() if v is not None}


class SpawnError(ClaudeClientError):
    """The executable is missing or the OS refused to create the process."""


class ExecutionTimeoutError(ClaudeClientError):
    """The process outlived its timeout and was terminated."""


class ProcessError(ClaudeClientError):
    """The process could not be driven to completion or signalled."""


class NotFoundError(ClaudeClientError):
    """Unknown session or process identifier."""


class DuplicateSessionError(ClaudeClientError):
    """A live session already uses the requested identifier."""


class CapacityError(ClaudeClientError):
    """The concurrent session ceiling has been reached."""


class InactiveSessionError(ClaudeClientError):
    """The session was destroyed and rejects further work."""


class ConfigurationError(ClaudeClientError):
    """Invalid configuration keys or values."""


class StreamClosedError(ClaudeClientError):
    """Data was pushed to a stream that already finished."""
