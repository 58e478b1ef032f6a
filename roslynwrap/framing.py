"""Content-Length framing for LSP traffic.

The decoder works over a live byte stream with arbitrary chunk boundaries.
Bytes are appended with :meth:`FrameDecoder.feed` and complete messages are
pulled out one at a time; anything not yet complete stays buffered.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator

logger = logging.getLogger(__name__)

HEADER_TOKEN = b"Content-Length:"
SEPARATOR = b"\r\n"

_HEADER_LINE = re.compile(rb"Content-Length: ([0-9]+)")

# Messages are text, but the proxy must be able to forward bytes it did not
# touch exactly as they arrived, even if they are not valid UTF-8.
_ERRORS = "surrogateescape"


def encode_message(text: str) -> bytes:
    """Frame a message body for the wire.

    Returns the exact bytes to transmit, so the caller can mirror them to a
    traffic log as well.
    """
    body = text.encode("utf-8", _ERRORS)
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


class FrameDecoder:
    """Incremental parser for ``Content-Length`` framed messages.

    Any bytes that precede the header token are returned as a message of
    their own. Some servers print bare JSON before switching to framed
    output, and that text is forwarded verbatim without a length check.

    A header line that does not read ``Content-Length: <digits>`` is treated
    the same as a short read: the buffer is kept and decoding resumes after
    the next :meth:`feed`.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet returned as a message."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()

    def feed(self, data: bytes | bytearray) -> None:
        if data:
            self._buffer.extend(data)

    def decode(self) -> str | None:
        """Extract one message, or return ``None`` if more bytes are needed."""
        buffer = self._buffer
        if not buffer:
            return None

        start = buffer.find(HEADER_TOKEN)
        if start < 0:
            return None

        if start > 0:
            text = bytes(buffer[:start]).decode("utf-8", _ERRORS)
            del buffer[:start]
            return text

        line_end = buffer.find(b"\r")
        if line_end < 0 or len(buffer) < line_end + 2:
            return None
        if buffer[line_end + 1 : line_end + 2] != b"\n":
            return None

        match = _HEADER_LINE.fullmatch(bytes(buffer[:line_end]))
        if match is None:
            logger.debug("Unparseable header line: %r", bytes(buffer[:line_end]))
            return None
        content_length = int(match.group(1))

        body_start = line_end + 2 + len(SEPARATOR)
        if buffer[line_end + 2 : body_start] != SEPARATOR:
            return None

        if len(buffer) - body_start < content_length:
            return None

        body_end = body_start + content_length
        text = bytes(buffer[body_start:body_end]).decode("utf-8", _ERRORS)
        del buffer[:body_end]
        return text

    def __iter__(self) -> Iterator[str]:
        while True:
            message = self.decode()
            if message is None:
                return
            yield message
