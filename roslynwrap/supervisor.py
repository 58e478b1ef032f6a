"""Language server process supervision.

One session runs three relays plus a watchdog:

- client stdin -> decoder -> interception pipeline -> server input
- server output -> client stdout (raw bytes)
- server stderr -> client stderr (raw bytes)
- parent-process monitor

All of them share a :class:`Cancellation`. The session is over once the
relays have finished and the server process has exited.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from roslynwrap.cancellation import Cancellation
from roslynwrap.config import ProxyConfig
from roslynwrap.console import ByteSink, ByteSource, ClientStreams
from roslynwrap.errors import TransportError
from roslynwrap.framing import FrameDecoder, encode_message
from roslynwrap.monitor import ParentMonitor
from roslynwrap.pipeline import InterceptionPipeline, SessionState
from roslynwrap.tracelog import NullTrafficLog, open_traffic_log
from roslynwrap.transport import Transport, TransportEndpoint, create_transport, endpoint_for_mode
from roslynwrap.workspace import Workspace, discover_workspace

logger = logging.getLogger(__name__)

READ_SIZE = 64 * 1024
TERMINATE_TIMEOUT = 5.0
OUTPUT_DRAIN_TIMEOUT = 2.0


def build_server_command(config: ProxyConfig, endpoint: TransportEndpoint) -> list[str]:
    """Command line for the wrapped language server."""
    return [
        config.lsp,
        *config.extra_args,
        "--logLevel",
        config.log_level,
        "--extensionLogDirectory",
        str(config.log_directory),
        *endpoint.server_args(),
    ]


async def relay(source: ByteSource, sink: ByteSink, cancellation: Cancellation, name: str) -> int:
    """Copy bytes from *source* to *sink* until EOF or cancellation.

    Returns the number of bytes copied.
    """
    total = 0
    try:
        while not cancellation.is_set:
            chunk = await cancellation.race(source.read(READ_SIZE))
            if not chunk:
                break
            sink.write(chunk)
            await sink.drain()
            total += len(chunk)
    except ConnectionError as e:
        logger.debug("%s relay closed: %s", name, e)
    logger.debug("%s relay finished after %d bytes", name, total)
    return total


async def pump_client_input(
    source: ByteSource,
    server: asyncio.StreamWriter,
    pipeline: InterceptionPipeline,
    cancellation: Cancellation,
    traffic_log: NullTrafficLog | None = None,
) -> None:
    """Decode client messages, run them through *pipeline* and forward them.

    Everything produced for one client message (including injected
    notifications) is written and drained before the next one is handled.
    At client EOF the server's input is half-closed.
    """
    traffic_log = traffic_log or NullTrafficLog()
    decoder = FrameDecoder()
    try:
        while not cancellation.is_set:
            chunk = await cancellation.race(source.read(READ_SIZE))
            if not chunk:
                break
            decoder.feed(chunk)
            for message in decoder:
                if cancellation.is_set:
                    return
                outbound_messages = await pipeline.process(message)
                if cancellation.is_set:
                    return
                for outbound in outbound_messages:
                    frame = encode_message(outbound)
                    server.write(frame)
                    traffic_log.write(frame)
                await server.drain()
                traffic_log.flush()
    except ConnectionError as e:
        logger.warning("Language server input closed: %s", e)
        return

    if cancellation.is_set:
        return
    if decoder.pending:
        logger.warning("Client input ended inside a message (%d bytes dropped)", decoder.pending)
    logger.info("Client input closed")
    if server.can_write_eof():
        try:
            server.write_eof()
        except OSError as e:
            logger.debug("Could not half-close server input: %s", e)


@dataclass
class ProxySession:
    """Everything one proxy run owns."""

    workspace: Workspace
    pipeline: InterceptionPipeline
    endpoint: TransportEndpoint
    cancellation: Cancellation
    process: asyncio.subprocess.Process | None = None

    @property
    def state(self) -> SessionState:
        return self.pipeline.state


def exit_code_for(returncode: int | None, parent_lost: bool) -> int:
    if parent_lost:
        return 0
    if returncode is None:
        return 1
    if returncode < 0:
        # Killed by a signal, shell convention.
        return 128 - returncode
    return returncode


class ProcessSupervisor:
    """Start the language server and proxy one editor session to it."""

    def __init__(
        self,
        config: ProxyConfig,
        workspace: Workspace | None = None,
        *,
        endpoint: TransportEndpoint | None = None,
        client: ClientStreams | None = None,
        monitor_factory: Callable[[Cancellation], ParentMonitor] | None = None,
        traffic_log: NullTrafficLog | None = None,
    ) -> None:
        self.config = config
        self.workspace = workspace if workspace is not None else discover_workspace(config.project_root)
        self.endpoint = endpoint or endpoint_for_mode(config.transport)
        self._client = client
        self._monitor_factory = monitor_factory or (
            lambda cancellation: ParentMonitor(cancellation, interval=config.poll_interval)
        )
        self.traffic_log = traffic_log or NullTrafficLog()
        self.session: ProxySession | None = None

    async def _spawn(self, transport: Transport) -> asyncio.subprocess.Process:
        command = build_server_command(self.config, self.endpoint)
        logger.info("Starting language server: %s", command)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=transport.child_stdin,
                stdout=transport.child_stdout,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError(f"Failed to start language server {self.config.lsp}: {e}") from e
        logger.info("Language server started (pid %d)", process.pid)
        return process

    async def _watch_child(
        self,
        process: asyncio.subprocess.Process,
        output_tasks: list[asyncio.Task],
        cancellation: Cancellation,
    ) -> None:
        returncode = await cancellation.race(process.wait())
        if returncode is None:
            return
        logger.info("Language server exited with code %d", returncode)
        # Let the output relays forward whatever the server wrote last.
        await cancellation.race(asyncio.wait(output_tasks, timeout=OUTPUT_DRAIN_TIMEOUT))
        cancellation.cancel(f"language server exited with code {returncode}")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        logger.info("Stopping language server (pid %d)", process.pid)
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=TERMINATE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Language server did not stop, killing it")
            process.kill()
            await process.wait()

    async def run(self) -> int:
        """Run the session to completion and return the proxy's exit code.

        Raises:
            TransportError: if the server or its channel cannot be set up.
        """
        cancellation = Cancellation()
        pipeline = InterceptionPipeline(self.workspace)
        session = ProxySession(self.workspace, pipeline, self.endpoint, cancellation)
        self.session = session
        client = self._client or ClientStreams.from_console()
        transport = create_transport(self.endpoint)

        try:
            await transport.listen()
            process = await self._spawn(transport)
        except TransportError:
            await transport.close()
            self.traffic_log.close()
            raise
        session.process = process

        monitor_task = asyncio.create_task(
            self._monitor_factory(cancellation).run(), name="parent-monitor"
        )
        tasks: list[asyncio.Task] = []
        try:
            # Read stderr from the start so the server never blocks on it
            # while it is still connecting.
            if process.stderr is not None:
                tasks.append(
                    asyncio.create_task(
                        relay(process.stderr, client.stderr, cancellation, "server-stderr")
                    )
                )
            streams = await transport.connect(process, cancellation)
            if streams is not None:
                output_tasks = [
                    *tasks,
                    asyncio.create_task(
                        relay(streams.reader, client.stdout, cancellation, "server-stdout")
                    ),
                ]
                tasks = [
                    *output_tasks,
                    asyncio.create_task(
                        pump_client_input(
                            client.reader, streams.writer, pipeline, cancellation, self.traffic_log
                        )
                    ),
                    asyncio.create_task(self._watch_child(process, output_tasks, cancellation)),
                ]
                await asyncio.gather(*tasks)
            elif tasks and process.returncode is not None:
                # The server gave up before connecting; pass on what it said.
                await cancellation.race(asyncio.wait(tasks, timeout=OUTPUT_DRAIN_TIMEOUT))
            await cancellation.race(process.wait())
        finally:
            cancellation.cancel("session ended")
            await asyncio.gather(*tasks, monitor_task, return_exceptions=True)
            if process.returncode is None:
                await self._terminate(process)
            await transport.close()
            self.traffic_log.close()

        parent_lost = (
            not monitor_task.cancelled()
            and monitor_task.exception() is None
            and monitor_task.result() is True
        )
        return exit_code_for(process.returncode, parent_lost)


async def run_proxy(config: ProxyConfig, **kwargs) -> int:
    """Discover the workspace and run one proxy session for *config*."""
    workspace = discover_workspace(config.project_root)
    supervisor = ProcessSupervisor(
        config,
        workspace,
        traffic_log=open_traffic_log(config.traffic_log),
        **kwargs,
    )
    return await supervisor.run()
