"""Sequencing, bounded buffering and fan-out of streamed output."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from claudecode_client.errors import StreamClosedError
from claudecode_client.models import (
    Result,
    StreamChunk,
    StreamCompletion,
    StreamFailure,
    StreamStats,
)

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1024

ChunkListener = Callable[[StreamChunk], None]
CompleteListener = Callable[[StreamCompletion], None]
ErrorListener = Callable[[StreamFailure], None]

L = TypeVar("L")
T = TypeVar("T")


class StreamAggregator:
    """Turn raw output fragments into ordered, bounded, observable chunks.

    The buffer keeps only the most recent ``buffer_size`` fragments. When it
    overflows, the oldest surplus is dropped as one batch and subscribers are
    not told: the buffer is recent history, not a transcript.
    """

    def __init__(self, session_id: str, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self.session_id = session_id
        self.buffer_size = buffer_size
        self._buffer: list[str] = []
        self._sequence = 0
        self._complete = False
        self._start = time.monotonic()
        self._chunk_listeners: list[ChunkListener] = []
        self._complete_listeners: list[CompleteListener] = []
        self._error_listeners: list[ErrorListener] = []

        logger.debug("Stream aggregator created: %s (buffer=%d)", session_id, buffer_size)

    @property
    def is_complete(self) -> bool:
        return self._complete

    # --- Subscription ---

    def on_chunk(self, listener: ChunkListener) -> Callable[[], None]:
        return self._subscribe(self._chunk_listeners, listener)

    def on_complete(self, listener: CompleteListener) -> Callable[[], None]:
        return self._subscribe(self._complete_listeners, listener)

    def on_error(self, listener: ErrorListener) -> Callable[[], None]:
        return self._subscribe(self._error_listeners, listener)

    @staticmethod
    def _subscribe(listeners: list[L], listener: L) -> Callable[[], None]:
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _notify(self, listeners: list, payload: object) -> None:
        for listener in list(listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception("Stream subscriber failed: %s", self.session_id)

    # --- Stream lifecycle ---

    def push_chunk(self, data: str) -> StreamChunk:
        """Sequence a fragment, buffer it and notify chunk subscribers."""
        if self._complete:
            raise StreamClosedError(
                f"Stream {self.session_id} already finished", session_id=self.session_id
            )

        chunk = StreamChunk(session_id=self.session_id, sequence=self._sequence, data=data)
        self._sequence += 1
        self._buffer.append(data)

        self._notify(self._chunk_listeners, chunk)

        overflow = len(self._buffer) - self.buffer_size
        if overflow > 0:
            del self._buffer[:overflow]
            logger.debug(
                "Stream buffer overflow: %s dropped %d chunk(s)", self.session_id, overflow
            )

        return chunk

    def complete(self) -> StreamChunk:
        """Finish the stream and return the terminal chunk."""
        final = StreamChunk(
            session_id=self.session_id,
            sequence=self._sequence,
            data="",
            is_complete=True,
        )
        if self._complete:
            return final

        self._complete = True
        duration_ms = self._elapsed_ms()
        self._notify(
            self._complete_listeners,
            StreamCompletion(
                session_id=self.session_id,
                total_chunks=self._sequence,
                total_data=self.get_buffered_data(),
                duration_ms=duration_ms,
            ),
        )
        logger.info(
            "Stream completed: %s chunks=%d duration=%dms",
            self.session_id,
            self._sequence,
            duration_ms,
        )
        return final

    def fail(self, error: BaseException) -> None:
        """Finish the stream with an error. Never raises."""
        if self._complete:
            logger.debug("Ignoring failure on finished stream %s: %s", self.session_id, error)
            return

        self._complete = True
        duration_ms = self._elapsed_ms()
        self._notify(
            self._error_listeners,
            StreamFailure(
                session_id=self.session_id,
                error=error,
                duration_ms=duration_ms,
                chunks_processed=self._sequence,
            ),
        )
        logger.warning(
            "Stream failed: %s after %d chunk(s), %dms: %s",
            self.session_id,
            self._sequence,
            duration_ms,
            error,
        )

    def get_buffered_data(self) -> str:
        return "".join(self._buffer)

    def get_stats(self) -> StreamStats:
        return StreamStats(
            session_id=self.session_id,
            chunks_processed=self._sequence,
            is_complete=self._complete,
            duration_ms=self._elapsed_ms(),
            buffer_size=len(self._buffer),
            data_length=len(self.get_buffered_data()),
        )

    def create_chunk_handler(self) -> Callable[[str], None]:
        """Adapter for ProcessRunner's raw ``on_chunk`` callback."""

        def handler(data: str) -> None:
            self.push_chunk(data)

        return handler

    def close(self) -> None:
        """Drop buffered data and all subscribers."""
        self._buffer = []
        self._chunk_listeners.clear()
        self._complete_listeners.clear()
        self._error_listeners.clear()
        logger.debug("Stream aggregator closed: %s", self.session_id)

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)


def create_stream_aggregator(
    session_id: str,
    on_chunk: ChunkListener | None = None,
    on_complete: CompleteListener | None = None,
    on_error: ErrorListener | None = None,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> StreamAggregator:
    """Create an aggregator with the given subscribers already attached."""
    aggregator = StreamAggregator(session_id, buffer_size=buffer_size)
    if on_chunk:
        aggregator.on_chunk(on_chunk)
    if on_complete:
        aggregator.on_complete(on_complete)
    if on_error:
        aggregator.on_error(on_error)
    return aggregator


async def stream_through(
    aggregator: StreamAggregator,
    run: Callable[[Callable[[str], None]], Awaitable[Result[T]]],
) -> Result[T]:
    """Feed a runner call's raw output through ``aggregator`` and finish it.

    The aggregator is completed when ``run`` succeeds and failed otherwise.
    """
    result = await run(aggregator.create_chunk_handler())
    if result.success:
        aggregator.complete()
    else:
        aggregator.fail(result.error)  # type: ignore[arg-type]
    return result
