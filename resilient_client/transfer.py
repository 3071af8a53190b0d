"""Stream wrappers for upload sources and download sinks.

A retried transfer is a fresh send, so both ends must be restartable:

    RewindableSource  seeks back to the beginning of the source before every
                      send; the whole stream is uploaded each time. Sources
                      that cannot seek are rejected up front with
                      NonRetryableStream.
    StreamSink        counts written bytes, accepts sinks with sync or async
                      ``write``/``flush``, truncates partial output before a
                      resend, and reports completion only after flushing.
"""

from __future__ import annotations

import inspect
import io
import os
from typing import Any, BinaryIO, Optional, Union

from loguru import logger

from .errors import NonRetryableStream

DEFAULT_CHUNK_SIZE = 64 * 1024


def _is_seekable(stream: Any) -> bool:
    seekable = getattr(stream, "seekable", None)
    if callable(seekable):
        try:
            return bool(seekable())
        except (OSError, ValueError):
            return False
    return hasattr(stream, "seek") and hasattr(stream, "tell")


class RewindableSource:
    """
    Upload source that can be replayed from its beginning.

    Args:
        stream: Binary file-like object, or bytes (wrapped in BytesIO)
        field_name: Multipart field carrying the content
        filename: File name sent with the part (defaults to the stream's name)
        content_type: Content type of the part

    Raises:
        NonRetryableStream: The stream cannot seek back to its start
    """

    def __init__(
        self,
        stream: Union[BinaryIO, bytes, bytearray],
        field_name: str = "file",
        filename: Optional[str] = None,
        content_type: str = "application/octet-stream",
    ) -> None:
        self.field_name = field_name
        self.content_type = content_type
        if isinstance(stream, (bytes, bytearray)):
            stream = io.BytesIO(bytes(stream))
        if not hasattr(stream, "read"):
            raise TypeError(f"Upload source must be readable, got {type(stream).__name__}")
        if not _is_seekable(stream):
            raise NonRetryableStream(stream, "upload source is not seekable")

        self.stream = stream

        stream_name = getattr(stream, "name", None)
        if filename is None and isinstance(stream_name, str):
            filename = os.path.basename(stream_name)
        self.filename = filename or "upload.bin"

    def as_file_field(self):
        """(filename, stream, content_type) tuple in the form httpx expects."""
        return (self.filename, self.stream, self.content_type)

    def rewind(self) -> None:
        """Seek back to the beginning of the stream."""
        try:
            self.stream.seek(0)
        except (OSError, ValueError) as e:
            raise NonRetryableStream(self.stream, f"rewind failed: {e}") from e


class StreamSink:
    """
    Download destination.

    ``write`` and ``flush`` may be plain methods or coroutines (e.g. an
    aiofiles handle); both are awaited when needed. Sinks with coroutine
    ``write`` are treated as non-rewindable.
    """

    def __init__(self, stream: Any, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if not hasattr(stream, "write"):
            raise TypeError(f"Download sink must be writable, got {type(stream).__name__}")
        self.stream = stream
        self.chunk_size = chunk_size
        self.bytes_written = 0
        self._start: Optional[int] = None
        if not inspect.iscoroutinefunction(stream.write) and _is_seekable(stream):
            try:
                self._start = stream.tell()
            except (OSError, ValueError):
                self._start = None

    async def write(self, chunk: bytes) -> None:
        result = self.stream.write(chunk)
        if inspect.isawaitable(result):
            await result
        self.bytes_written += len(chunk)

    async def finish(self) -> int:
        """Flush the sink; returns the number of bytes delivered."""
        flush = getattr(self.stream, "flush", None)
        if callable(flush):
            result = flush()
            if inspect.isawaitable(result):
                await result
        logger.debug(f"Sink flushed after {self.bytes_written} bytes")
        return self.bytes_written

    def reset(self) -> None:
        """
        Discard partial output before the transfer is restarted.

        Raises:
            NonRetryableStream: Bytes were written and the sink cannot rewind
        """
        if self.bytes_written == 0:
            return
        if self._start is None:
            raise NonRetryableStream(self.stream, "download sink is not seekable")
        try:
            self.stream.seek(self._start)
            self.stream.truncate()
        except (OSError, ValueError) as e:
            raise NonRetryableStream(self.stream, f"sink reset failed: {e}") from e
        self.bytes_written = 0


__all__ = ["RewindableSource", "StreamSink"]
