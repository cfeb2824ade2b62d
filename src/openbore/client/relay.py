"""Work connection relay between the relay server and the local service."""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum

import structlog

from openbore.client.control import open_stream
from openbore.core.bandwidth import BandwidthMonitor
from openbore.core.config import ClientConfig, ServerConfig
from openbore.core.exceptions import LocalServiceError, TransportError
from openbore.observability.metrics import record_bytes
from openbore.protocol.messages import NewWorkConn, encode_message

logger = structlog.get_logger()

LOCAL_HOST = "127.0.0.1"


class Direction(Enum):
    """Which way bytes flow through the relay."""

    INBOUND = "in"  # relay -> local, counted as rx
    OUTBOUND = "out"  # local -> relay, counted as tx


class DataRelay:
    """Raw byte pipe for one proxy: work connection <-> 127.0.0.1:local_port.

    Bytes are copied unmodified in both directions by two independent pumps.
    When either side ends, both sockets are closed and run() raises so the
    owner can reconnect. Data written to a peer that is already gone is
    dropped.
    """

    def __init__(
        self,
        server_config: ServerConfig,
        client_config: ClientConfig,
        monitor: BandwidthMonitor,
        connect_timeout: float = 30.0,
        read_chunk_size: int = 65536,
    ) -> None:
        self.server_config = server_config
        self.client_config = client_config
        self._monitor = monitor
        self._connect_timeout = connect_timeout
        self._read_chunk_size = read_chunk_size

        self._relay_writer: asyncio.StreamWriter | None = None
        self._local_writer: asyncio.StreamWriter | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._relay_writer is not None
            and self._local_writer is not None
        )

    async def run(self, proxy_id: str) -> None:
        """Open the socket pair for proxy_id and relay until one side closes.

        Raises:
            TransportError: If the work connection fails or is closed
            LocalServiceError: If the local service refuses or drops the connection
        """
        try:
            relay_reader, self._relay_writer = await open_stream(
                self.server_config.server_addr,
                self.server_config.server_port,
                self._connect_timeout,
            )
            if self._closed:
                return
            logger.info("Proxy connected", subdomain=self.client_config.subdomain)

            hello = encode_message(NewWorkConn(proxy_id=proxy_id))
            self._relay_writer.write(hello)
            await self._relay_writer.drain()
            self._monitor.record(tx_bytes=len(hello))
            record_bytes("out", len(hello))

            local_port = self.client_config.local_port
            try:
                local_reader, self._local_writer = await open_stream(
                    LOCAL_HOST, local_port, self._connect_timeout
                )
            except TransportError as e:
                raise LocalServiceError(local_port, str(e)) from e
            if self._closed:
                return
            logger.info("Local connection established", port=local_port)

            await self._bridge(relay_reader, local_reader)
        except OSError as e:
            if self._closed:
                return
            raise TransportError(f"Work connection error: {e}") from e
        except (TransportError, LocalServiceError):
            if self._closed:
                return
            raise
        finally:
            self._close_sockets()

    async def _bridge(
        self, relay_reader: asyncio.StreamReader, local_reader: asyncio.StreamReader
    ) -> None:
        assert self._relay_writer is not None and self._local_writer is not None

        inbound = asyncio.create_task(
            self._pump(relay_reader, self._local_writer, Direction.INBOUND)
        )
        outbound = asyncio.create_task(
            self._pump(local_reader, self._relay_writer, Direction.OUTBOUND)
        )
        try:
            done, _ = await asyncio.wait(
                {inbound, outbound}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (inbound, outbound):
                task.cancel()
            self._close_sockets()
            for task in (inbound, outbound):
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if self._closed:
            return
        if inbound in done:
            raise TransportError(f"Work connection closed: {inbound.result()}")
        raise LocalServiceError(self.client_config.local_port, outbound.result())

    async def _pump(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        direction: Direction,
    ) -> str:
        """Copy reader -> writer until EOF or read error. Returns why it stopped."""
        peer_alive = True
        while True:
            try:
                data = await reader.read(self._read_chunk_size)
            except OSError as e:
                return f"read error: {e}"
            if not data:
                return "closed by peer"

            if direction is Direction.INBOUND:
                self._monitor.record(rx_bytes=len(data))
            else:
                self._monitor.record(tx_bytes=len(data))
            record_bytes(direction.value, len(data))

            if not peer_alive or writer.is_closing():
                peer_alive = False
                continue
            try:
                writer.write(data)
                await writer.drain()
            except OSError:
                peer_alive = False

    def _close_sockets(self) -> None:
        for writer in (self._relay_writer, self._local_writer):
            if writer is not None:
                with contextlib.suppress(Exception):
                    writer.close()
        self._relay_writer = None
        self._local_writer = None

    def close(self) -> None:
        """Close both sockets. Safe to call repeatedly."""
        self._closed = True
        self._close_sockets()
