"""Subprocess execution for the wrapped CLI tool.

Each command gets exactly one subprocess, started in its own process group so
that termination reaches any children it forks. Output is drained from both
pipes concurrently; the timeout is a single ``asyncio.wait_for`` over the
drain-and-wait coroutine, so either the process exit or the timer wins and
only the winner's outcome is reported.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import shutil
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable
from typing import Any

from claudecode_client.config import DEFAULT_EXECUTABLE
from claudecode_client.errors import (
    ExecutionTimeoutError,
    NotFoundError,
    ProcessError,
    SpawnError,
)
from claudecode_client.models import Command, ExecutionResult, Result, new_execution_id

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

READ_SIZE = 4096
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL
DEFAULT_PROBE_TIMEOUT = 5000  # ms

_KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)

ChunkCallback = Callable[[str], None]
Process = asyncio.subprocess.Process


def _elapsed_ms(start: float) -> int:
    return max(0, int((time.monotonic() - start) * 1000))


def _isolation_kwargs() -> dict[str, Any]:
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _signal_group(process: Process, sig: int) -> None:
    """Signal the process group, falling back to the process itself."""
    if IS_WINDOWS:
        process.kill()
        return
    try:
        os.killpg(os.getpgid(process.pid), sig)
    except ProcessLookupError:
        raise
    except OSError as e:
        logger.debug("killpg failed for pid=%d, signalling process: %s", process.pid, e)
        process.send_signal(sig)


class ProcessRunner:
    """Spawn, drain, time out and kill subprocesses of the wrapped tool."""

    def __init__(
        self,
        default_cwd: str | None = None,
        executable: str = DEFAULT_EXECUTABLE,
        probe_timeout: int = DEFAULT_PROBE_TIMEOUT,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ) -> None:
        self.default_cwd = default_cwd
        self.executable = executable
        self.probe_timeout = probe_timeout
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self._processes: dict[int, Process] = {}
        self._lock = threading.Lock()
        self._reapers: set[asyncio.Task[None]] = set()

    # --- Registry ---

    def _register(self, process: Process) -> None:
        with self._lock:
            self._processes[process.pid] = process

    def _unregister(self, pid: int, process: Process | None = None) -> Process | None:
        """Drop a pid, leaving it alone if it now belongs to a different process."""
        with self._lock:
            current = self._processes.get(pid)
            if current is None or (process is not None and current is not process):
                return None
            return self._processes.pop(pid)

    def get_running_processes(self) -> set[int]:
        """Snapshot of live process ids."""
        with self._lock:
            return set(self._processes)

    async def _reap(self, process: Process) -> None:
        try:
            await process.wait()
        finally:
            self._unregister(process.pid, process)

    # --- Spawning ---

    async def spawn(self, command: Command) -> Result[Process]:
        """Start the subprocess and register it until it exits."""
        cwd = command.cwd or self.default_cwd
        env = {**os.environ, **(command.env or {})}

        logger.debug("Spawning process: %s (cwd=%s)", command, cwd)
        try:
            process = await asyncio.create_subprocess_exec(
                *command.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
                **_isolation_kwargs(),
            )
        except (OSError, ValueError) as e:
            logger.error("Failed to spawn %s: %s", command.command, e)
            return Result.fail(
                SpawnError(f"Failed to spawn {command.command}: {e}", command=str(command))
            )

        self._register(process)
        reaper = asyncio.create_task(self._reap(process))
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)

        logger.debug("Started subprocess pid=%d argv=%s", process.pid, command.command)
        return Result.ok(process)

    # --- Execution ---

    async def execute(self, command: Command) -> Result[ExecutionResult]:
        """Run to completion and return the collected output."""
        return await self._run(command, None, "exec")

    async def execute_stream(
        self, command: Command, on_chunk: ChunkCallback
    ) -> Result[ExecutionResult]:
        """Run to completion, forwarding each stdout read to ``on_chunk``."""
        return await self._run(command, on_chunk, "stream")

    async def _run(
        self,
        command: Command,
        on_chunk: ChunkCallback | None,
        prefix: str,
    ) -> Result[ExecutionResult]:
        execution_id = new_execution_id(prefix)
        start = time.monotonic()
        logger.info("Executing %s [%s] timeout=%s", command, execution_id, command.timeout)

        spawned = await self.spawn(command)
        if not spawned.success:
            return Result.fail(spawned.error)  # type: ignore[arg-type]
        process: Process = spawned.data  # type: ignore[assignment]

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        timeout = command.timeout / 1000 if command.timeout else None

        try:
            exit_code = await asyncio.wait_for(
                self._communicate(process, stdout_parts, stderr_parts, on_chunk),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            await self._terminate(process)
            elapsed_ms = _elapsed_ms(start)
            logger.warning(
                "Process timed out after %dms [%s] pid=%d", command.timeout, execution_id, process.pid
            )
            return Result.fail(
                ExecutionTimeoutError(
                    f"Process timed out after {command.timeout}ms",
                    command=str(command),
                    duration_ms=elapsed_ms,
                )
            )
        except asyncio.CancelledError:
            await asyncio.shield(self._terminate(process))
            raise
        except Exception as e:
            logger.exception("Execution error [%s]", execution_id)
            await self._terminate(process)
            return Result.fail(
                ProcessError(str(e), command=str(command), duration_ms=_elapsed_ms(start))
            )
        finally:
            self._unregister(process.pid, process)

        elapsed_ms = _elapsed_ms(start)
        output = "".join(stdout_parts)
        error = "".join(stderr_parts)

        logger.info(
            "Command completed [%s] exit=%d duration=%dms output=%d chars",
            execution_id,
            exit_code,
            elapsed_ms,
            len(output),
        )
        return Result.ok(
            ExecutionResult(
                id=execution_id,
                output=output,
                error=error or None,
                exit_code=exit_code,
                duration_ms=elapsed_ms,
            )
        )

    async def _communicate(
        self,
        process: Process,
        stdout_parts: list[str],
        stderr_parts: list[str],
        on_chunk: ChunkCallback | None,
    ) -> int:
        await asyncio.gather(
            self._drain(process.stdout, stdout_parts, on_chunk),
            self._drain(process.stderr, stderr_parts, None),
        )
        return await process.wait()

    @staticmethod
    async def _drain(
        stream: asyncio.StreamReader | None,
        parts: list[str],
        on_chunk: ChunkCallback | None,
    ) -> None:
        if stream is None:
            return
        # Incremental decoding keeps multi-byte characters split across reads intact
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(READ_SIZE)
            text = decoder.decode(data, final=not data)
            if text:
                parts.append(text)
                if on_chunk is not None:
                    on_chunk(text)
            if not data:
                break

    # --- Termination ---

    async def _terminate(self, process: Process) -> None:
        """SIGTERM the process group, then SIGKILL if it lingers."""
        if process.returncode is not None:
            return

        pid = process.pid
        logger.debug("Terminating subprocess pid=%d", pid)
        try:
            _signal_group(process, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                return
            except asyncio.TimeoutError:
                pass

            logger.debug("Force killing subprocess pid=%d", pid)
            _signal_group(process, _KILL_SIGNAL)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
            except asyncio.TimeoutError:
                logger.warning("Subprocess did not exit after kill pid=%d", pid)
        except ProcessLookupError:
            logger.debug("Subprocess already exited pid=%d", pid)

    def kill(self, pid: int, sig: int = signal.SIGTERM) -> Result[None]:
        """Signal a registered process and drop it from the registry."""
        process = self._unregister(pid)
        if process is None:
            return Result.fail(NotFoundError(f"Process {pid} not found"))

        try:
            _signal_group(process, sig)
        except ProcessLookupError:
            logger.debug("Process %d exited before signal %s", pid, sig)
        except OSError as e:
            logger.error("Failed to kill process %d: %s", pid, e)
            return Result.fail(ProcessError(f"Failed to kill process {pid}: {e}"))

        logger.info("Killed process pid=%d signal=%s", pid, sig)
        return Result.ok()

    async def cleanup(self) -> list[BaseException]:
        """Signal every live process. Returns the errors of failed kills."""
        pids = self.get_running_processes()
        logger.info("Cleaning up processes: %d running", len(pids))

        errors: list[BaseException] = []
        for pid in pids:
            result = self.kill(pid)
            if result.error is not None:
                errors.append(result.error)

        if self._reapers:
            await asyncio.wait(set(self._reapers), timeout=self.term_timeout)

        if errors:
            logger.warning("Process cleanup finished with %d failure(s)", len(errors))
        else:
            logger.info("Process cleanup completed")
        return errors

    # --- Probing ---

    async def is_available(self) -> bool:
        """Whether the wrapped tool can be found on this host."""
        if shutil.which(self.executable):
            return True
        result = await self.get_version()
        return result.success

    async def get_version(self) -> Result[str]:
        """Version string reported by ``<executable> --version``."""
        probe = Command(self.executable, ("--version",), timeout=self.probe_timeout)
        result = await self.execute(probe)
        if not result.success:
            logger.debug("Version probe failed: %s", result.error)
            return Result.fail(result.error)  # type: ignore[arg-type]

        execution: ExecutionResult = result.data  # type: ignore[assignment]
        if execution.exit_code != 0:
            return Result.fail(
                ProcessError(
                    f"{self.executable} --version exited with {execution.exit_code}",
                    command=str(probe),
                    duration_ms=execution.duration_ms,
                )
            )

        version = execution.output.strip() or (execution.error or "").strip()
        logger.debug("Retrieved version: %s", version)
        return Result.ok(version)
