"""Output formatting helpers for the command line."""

from __future__ import annotations

from claudecode_client.models import ExecutionResult


def format_duration(ms: int) -> str:
    """Format milliseconds to human-readable duration."""
    if ms < 1000:
        return f"{ms}ms"
    elif ms < 60000:
        return f"{ms / 1000:.1f}s"
    else:
        minutes = ms // 60000
        seconds = (ms % 60000) // 1000
        return f"{minutes}m {seconds}s"


def format_result(result: ExecutionResult, command: str) -> str:
    """One-line status header followed by the command output."""
    output = result.output or result.error or "(no output)"
    icon = "OK" if result.exit_code == 0 else f"ERR({result.exit_code})"
    return f"$ {command}\n[{icon}] {format_duration(result.duration_ms)}\n\n{output}"
