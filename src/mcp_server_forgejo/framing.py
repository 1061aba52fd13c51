"""Newline-delimited JSON framing over an asyncio byte stream.

One JSON document per line, UTF-8 encoded. The framer knows nothing about
JSON-RPC; it only cuts the stream into frames and writes frames back.
"""

import asyncio
import json
import logging
import sys
from typing import Any, AsyncIterator, Dict, Tuple

from .error_handling import FramingError

logger = logging.getLogger(__name__)

DEFAULT_MAX_FRAME_BYTES = 4 * 1024 * 1024
FRAME_DELIMITER = b"\n"


def encode_message(message: Dict[str, Any]) -> bytes:
    """Serialize a message to a single terminated frame."""
    data = json.dumps(message, separators=(",", ":"), ensure_ascii=False)
    return data.encode("utf-8") + FRAME_DELIMITER


def decode_frame(frame: bytes) -> Any:
    """Parse one frame (with or without its terminator).

    Raises:
        json.JSONDecodeError / UnicodeDecodeError: the frame is not JSON.
    """
    return json.loads(frame.decode("utf-8"))


class FrameReader:
    """Cuts a byte stream into frames.

    A reader belongs to one connection; create a new one per connection.
    """

    def __init__(self, stream: asyncio.StreamReader, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES):
        self._stream = stream
        self.max_frame_bytes = max_frame_bytes
        self.frames_read = 0

    async def read_frame(self) -> bytes | None:
        """Return the next non-blank frame, or None on a clean end of stream.

        Raises:
            FramingError: the frame exceeds the size limit or the stream ended
                in the middle of a frame.
        """
        while True:
            try:
                line = await self._stream.readuntil(FRAME_DELIMITER)
            except asyncio.IncompleteReadError as e:
                if e.partial.strip():
                    raise FramingError(
                        f"Stream ended mid-frame ({len(e.partial)} bytes without terminator)"
                    ) from None
                return None
            except asyncio.LimitOverrunError as e:
                raise FramingError(
                    f"Frame exceeds the stream buffer limit ({e.consumed} bytes buffered)"
                ) from None

            frame = line[: -len(FRAME_DELIMITER)]
            if frame.endswith(b"\r"):
                frame = frame[:-1]
            if len(frame) > self.max_frame_bytes:
                raise FramingError(
                    f"Frame of {len(frame)} bytes exceeds maximum of {self.max_frame_bytes}"
                )
            if not frame.strip():
                continue
            self.frames_read += 1
            return frame

    async def frames(self) -> AsyncIterator[bytes]:
        """Lazily yield frames until the stream closes."""
        while True:
            frame = await self.read_frame()
            if frame is None:
                logger.debug(f"Input stream closed after {self.frames_read} frames")
                return
            yield frame


class FrameWriter:
    """Serializes frames onto the outbound stream, one writer at a time."""

    def __init__(self, stream: asyncio.StreamWriter):
        self._stream = stream
        self._lock = asyncio.Lock()
        self._closed = False
        self.frames_written = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, message: Dict[str, Any]) -> bool:
        """Write one message. Returns False if the stream is already closed."""
        data = encode_message(message)
        async with self._lock:
            if self._closed:
                logger.debug(f"Dropping frame for id={message.get('id')!r}: output closed")
                return False
            try:
                self._stream.write(data)
                await self._stream.drain()
            except (ConnectionError, BrokenPipeError, RuntimeError) as e:
                logger.warning(f"Output stream failed, closing writer: {e}")
                self._closed = True
                return False
            self.frames_written += 1
            return True

    async def close(self) -> None:
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._stream.close()
            except (ConnectionError, RuntimeError) as e:
                logger.debug(f"Ignoring error while closing output stream: {e}")


async def open_stdio_streams(
    limit: int = DEFAULT_MAX_FRAME_BYTES,
) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Wrap the process stdin/stdout as asyncio streams."""
    loop = asyncio.get_running_loop()

    # one extra byte lets a frame of exactly ``limit`` bytes plus terminator through
    reader = asyncio.StreamReader(limit=limit + 2)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout)
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer
