"""The editor-facing side of the proxy: this process's own stdio."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
import threading
from dataclasses import dataclass
from typing import BinaryIO, Protocol

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class ByteSource(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


class ByteSink(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class ConsoleSink:
    """Buffered writer for a blocking binary stream.

    Flushing happens off the event loop so a slow reader on the other end
    never stalls the other relays.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._pending = bytearray()

    def write(self, data: bytes) -> None:
        self._pending.extend(data)

    def _flush(self, data: bytes) -> None:
        self._stream.write(data)
        self._stream.flush()

    async def drain(self) -> None:
        if not self._pending:
            return
        data = bytes(self._pending)
        self._pending.clear()
        await asyncio.to_thread(self._flush, data)


def open_stdin_reader(fd: int | None = None) -> asyncio.StreamReader:
    """Read *fd* (stdin by default) on a daemon thread into a StreamReader.

    A daemon thread is used so a blocked read never holds up interpreter
    exit once the session is over.
    """
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    source_fd = sys.stdin.fileno() if fd is None else fd

    def post(callback, *args) -> None:
        # The loop may already be closed when stdin reaches EOF late.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(callback, *args)

    def pump() -> None:
        try:
            while True:
                data = os.read(source_fd, CHUNK_SIZE)
                if not data:
                    break
                post(reader.feed_data, data)
        except OSError as e:
            logger.debug("stdin read failed: %s", e)
        finally:
            post(reader.feed_eof)

    threading.Thread(target=pump, name="stdin-reader", daemon=True).start()
    return reader


@dataclass
class ClientStreams:
    """Byte streams shared with the editor."""

    reader: ByteSource
    stdout: ByteSink
    stderr: ByteSink

    @classmethod
    def from_console(cls) -> ClientStreams:
        return cls(
            reader=open_stdin_reader(),
            stdout=ConsoleSink(sys.stdout.buffer),
            stderr=ConsoleSink(sys.stderr.buffer),
        )
