"""Byte channels between the proxy and the language server.

Two endpoint kinds are supported: the child's standard streams, or a named
duplex channel that the proxy serves and the child connects to. Both give
the supervisor the same :class:`ServerStreams` pair, so the relays do not
care which one is in use.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import subprocess
import sys
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime

from roslynwrap.cancellation import Cancellation
from roslynwrap.errors import TransportError

logger = logging.getLogger(__name__)

PIPE_NAME_PREFIX = "MicrosoftCodeAnalysisLanguageServer"


@dataclass(frozen=True)
class StdioEndpoint:
    """Talk to the server over its stdin/stdout."""

    def server_args(self) -> list[str]:
        return ["--stdio"]


@dataclass(frozen=True)
class NamedDuplexEndpoint:
    """Talk to the server over a named channel the proxy creates."""

    name: str

    @classmethod
    def generate(cls) -> NamedDuplexEndpoint:
        now = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
        return cls(f"{PIPE_NAME_PREFIX}-{now}-{os.getpid()}")

    @property
    def address(self) -> str:
        if sys.platform == "win32":
            return rf"\\.\pipe\{self.name}"
        # Same location .NET uses for named pipes on Unix.
        return os.path.join(tempfile.gettempdir(), f"CoreFxPipe_{self.name}")

    def server_args(self) -> list[str]:
        return ["--pipe", self.name]


TransportEndpoint = StdioEndpoint | NamedDuplexEndpoint


@dataclass
class ServerStreams:
    """Read and write halves of the server channel."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter


class Transport(ABC):
    """Lifecycle of one server channel.

    The supervisor calls :meth:`listen` before spawning the child,
    :meth:`connect` once it is running, and :meth:`close` at teardown.
    """

    # How the child's stdin/stdout are redirected.
    child_stdin: int = subprocess.PIPE
    child_stdout: int = subprocess.PIPE

    def __init__(self, endpoint: TransportEndpoint) -> None:
        self.endpoint = endpoint

    async def listen(self) -> None:
        """Prepare the channel before the server is started."""

    @abstractmethod
    async def connect(
        self, process: asyncio.subprocess.Process, cancellation: Cancellation
    ) -> ServerStreams | None:
        """Return the server streams, or ``None`` if the session ended first."""

    async def close(self) -> None:
        """Release channel resources."""


class StdioTransport(Transport):
    def __init__(self, endpoint: StdioEndpoint | None = None) -> None:
        super().__init__(endpoint or StdioEndpoint())

    async def connect(
        self, process: asyncio.subprocess.Process, cancellation: Cancellation
    ) -> ServerStreams | None:
        if process.stdout is None or process.stdin is None:
            raise TransportError("Language server was started without stdio pipes")
        return ServerStreams(reader=process.stdout, writer=process.stdin)


class NamedDuplexTransport(Transport):
    """Serve a single-client named channel for the server to connect to."""

    child_stdin = subprocess.DEVNULL
    child_stdout = subprocess.DEVNULL

    def __init__(self, endpoint: NamedDuplexEndpoint) -> None:
        super().__init__(endpoint)
        self.endpoint: NamedDuplexEndpoint = endpoint
        self._accepted: asyncio.Future[ServerStreams] | None = None
        self._server: asyncio.AbstractServer | None = None
        self._pipe_servers: list = []

    def _on_connected(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self._accepted is None or self._accepted.done():
            logger.warning("Rejecting extra connection on %s", self.endpoint.address)
            writer.close()
            return
        logger.debug("Language server connected on %s", self.endpoint.address)
        self._accepted.set_result(ServerStreams(reader=reader, writer=writer))

    def _protocol_factory(self) -> asyncio.StreamReaderProtocol:
        return asyncio.StreamReaderProtocol(asyncio.StreamReader(), self._on_connected)

    async def listen(self) -> None:
        loop = asyncio.get_running_loop()
        self._accepted = loop.create_future()
        address = self.endpoint.address
        try:
            if sys.platform == "win32":
                # Only the proactor loop (the Windows default) serves named pipes.
                self._pipe_servers = await loop.start_serving_pipe(  # type: ignore[attr-defined]
                    self._protocol_factory, address
                )
            else:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(address)
                self._server = await asyncio.start_unix_server(self._on_connected, path=address)
        except (OSError, AttributeError) as e:
            raise TransportError(f"Could not create named channel {address}: {e}") from e
        logger.info("Listening for language server on %s", address)

    async def connect(
        self, process: asyncio.subprocess.Process, cancellation: Cancellation
    ) -> ServerStreams | None:
        if self._accepted is None:
            raise TransportError("connect() called before listen()")

        exited = asyncio.ensure_future(process.wait())
        try:
            await cancellation.race(
                asyncio.wait({self._accepted, exited}, return_when=asyncio.FIRST_COMPLETED)
            )
        finally:
            exited.cancel()

        if self._accepted.done():
            return self._accepted.result()
        if process.returncode is not None:
            logger.error(
                "Language server exited with code %s before connecting", process.returncode
            )
        return None

    async def close(self) -> None:
        if self._accepted is not None:
            if self._accepted.done() and not self._accepted.cancelled():
                writer = self._accepted.result().writer
                writer.close()
                with contextlib.suppress(ConnectionError):
                    await writer.wait_closed()
            else:
                self._accepted.cancel()

        if self._server is not None:
            self._server.close()
            self._server = None
            with contextlib.suppress(FileNotFoundError):
                os.unlink(self.endpoint.address)
        for server in self._pipe_servers:
            server.close()
        self._pipe_servers = []


def create_transport(endpoint: TransportEndpoint) -> Transport:
    if isinstance(endpoint, NamedDuplexEndpoint):
        return NamedDuplexTransport(endpoint)
    return StdioTransport(endpoint)


def endpoint_for_mode(mode: str) -> TransportEndpoint:
    """Map a configured transport mode to a fresh endpoint."""
    if mode == "stdio":
        return StdioEndpoint()
    if mode == "pipe":
        return NamedDuplexEndpoint.generate()
    raise TransportError(f"Unknown transport mode: {mode}")
