"""Pipe streams attached to a child process.

This module provides:
- BroadcastStream: one reader of a child's stdout/stderr fanned out to any
  number of listeners and sinks, so a logger and a data observer never
  compete for the same bytes
- InputStream: fire-and-forget writes to a child's stdin, queued until the
  pipe exists and drained in the background
- parent_sink(): byte sink for the parent process's own stdout/stderr
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import Callable
from typing import Any, Protocol, TextIO

__all__ = [
    "BroadcastStream",
    "ChunkListener",
    "InputStream",
    "Sink",
    "parent_sink",
]

logger = logging.getLogger(__name__)

# Listener receiving each raw chunk read from a pipe
ChunkListener = Callable[[bytes], None]


class Sink(Protocol):
    """Anything bytes can be written to."""

    def write(self, data: bytes) -> Any: ...


class BroadcastStream:
    """Read side of a child pipe with independent subscribers.

    Every chunk read from the pipe is delivered, as read, to every listener
    in registration order. A listener that raises is logged and skipped; the
    other listeners and the pump keep going.

    Attributes:
        name: Stream name ("stdout" or "stderr"), used in log records
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[ChunkListener] = []
        self._end_listeners: list[Callable[[], None]] = []
        self._ended = False

    @property
    def ended(self) -> bool:
        """Whether the pipe reached EOF."""
        return self._ended

    def on_data(self, listener: ChunkListener) -> None:
        """Subscribe to raw chunks."""
        self._listeners.append(listener)

    def on_end(self, listener: Callable[[], None]) -> None:
        """Subscribe to end of stream, called once after the last chunk."""
        self._end_listeners.append(listener)

    def pipe(self, sink: Sink) -> Sink:
        """Forward every chunk to sink, flushing after each write.

        A sink with an end() method has it called at end of stream.

        Args:
            sink: Object with write(bytes) and optionally flush() and end()

        Returns:
            The sink, for chaining
        """

        def forward(chunk: bytes) -> None:
            sink.write(chunk)
            flush = getattr(sink, "flush", None)
            if flush is not None:
                flush()

        self.on_data(forward)
        end = getattr(sink, "end", None)
        if end is not None:
            self.on_end(end)
        return sink

    def push(self, chunk: bytes) -> None:
        """Deliver one chunk to every listener."""
        for listener in list(self._listeners):
            try:
                listener(chunk)
            except Exception:
                logger.exception(f"{self.name} listener failed")

    def end(self) -> None:
        """Mark the stream ended and notify end listeners (once)."""
        if self._ended:
            return
        self._ended = True
        for listener in list(self._end_listeners):
            try:
                listener()
            except Exception:
                logger.exception(f"{self.name} end listener failed")

    async def pump(self, reader: asyncio.StreamReader | None, read_size: int) -> None:
        """Read reader until EOF, pushing each chunk as it arrives.

        Args:
            reader: The child's pipe (None when not piped)
            read_size: Maximum bytes per chunk
        """
        try:
            if reader is None:
                return
            while True:
                chunk = await reader.read(read_size)
                if not chunk:
                    break
                self.push(chunk)
        finally:
            self.end()


class InputStream:
    """Write side of a child's stdin.

    Writes never block the caller. Data written before the process started
    is queued and sent in order once attach() is called; afterwards every
    write is handed to the transport immediately and drained by a background
    task. Writes after the pipe closed are dropped with a warning.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self._writer: asyncio.StreamWriter | None = None
        self._pending: list[bytes] = []
        self._closed = False
        self._drain_task: asyncio.Future[None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: str | bytes) -> bool:
        """Queue data for the child's stdin.

        Args:
            data: Text (encoded with self.encoding) or bytes

        Returns:
            False if the data was dropped because stdin is closed

        Raises:
            TypeError: If data is neither str nor bytes-like
        """
        if isinstance(data, str):
            payload = data.encode(self.encoding)
        elif isinstance(data, (bytes, bytearray, memoryview)):
            payload = bytes(data)
        else:
            raise TypeError(f"stdin data must be str or bytes, not {type(data).__name__}")

        if self._closed:
            logger.warning(f"Dropped {len(payload)} bytes written to closed stdin")
            return False
        if self._writer is None:
            self._pending.append(payload)
            return True
        return self._send(payload)

    def attach(self, writer: asyncio.StreamWriter | None) -> None:
        """Bind the started process's stdin and flush queued writes."""
        if writer is None:
            self.close()
            return
        self._writer = writer
        pending, self._pending = self._pending, []
        for payload in pending:
            self._send(payload)

    def close(self) -> None:
        """Stop accepting writes and close the pipe if it is open."""
        if self._closed:
            return
        self._closed = True
        if self._pending:
            logger.debug(f"Discarding {len(self._pending)} unsent stdin writes")
            self._pending.clear()
        if self._writer is not None and not self._writer.is_closing():
            self._writer.close()

    def _send(self, payload: bytes) -> bool:
        if self._writer is None:
            return False
        if self._writer.is_closing():
            self._closed = True
            logger.warning(f"Dropped {len(payload)} bytes written to closed stdin")
            return False
        self._writer.write(payload)
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.ensure_future(self._drain())
        return True

    async def _drain(self) -> None:
        if self._writer is None:
            return
        try:
            await self._writer.drain()
        except ConnectionError as e:
            # Child exited or closed its stdin
            self._closed = True
            logger.debug(f"stdin drain stopped: {e}")


class _TextSink:
    """Byte sink over a text-only stream."""

    def __init__(self, stream: TextIO, encoding: str) -> None:
        self._stream = stream
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def write(self, data: bytes) -> None:
        self._stream.write(self._decoder.decode(data))

    def flush(self) -> None:
        self._stream.flush()

    def end(self) -> None:
        """Write out a trailing incomplete character as U+FFFD."""
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._stream.write(tail)
        self.flush()


def parent_sink(stream: TextIO, encoding: str = "utf-8") -> Sink:
    """Return a byte sink writing into one of the parent's std streams.

    Uses the stream's binary buffer when it has one so bytes pass through
    unmodified; falls back to decoding for text-only replacements.
    """
    buffer = getattr(stream, "buffer", None)
    if buffer is not None:
        return buffer
    return _TextSink(stream, encoding)
