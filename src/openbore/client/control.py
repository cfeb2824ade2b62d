"""Control connection: login and proxy registration handshake."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from enum import Enum

import structlog

from openbore.core.bandwidth import BandwidthMonitor
from openbore.core.config import ClientConfig, ServerConfig
from openbore.core.exceptions import LoginRejectedError, ProtocolError, TransportError
from openbore.observability.metrics import record_bytes
from openbore.protocol.messages import (
    FrameDecoder,
    LoginResp,
    NewProxyResp,
    WireModel,
    create_login,
    create_new_proxy,
    encode_message,
    parse_message,
)

logger = structlog.get_logger()


class ChannelState(Enum):
    """Handshake state of a single control connection attempt."""

    INIT = "init"
    CONNECTING = "connecting"
    AWAIT_LOGIN_RESP = "await_login_resp"
    LOGGED_IN = "logged_in"
    AWAIT_PROXY_RESP = "await_proxy_resp"
    PROXY_REGISTERED = "proxy_registered"
    FAILED = "failed"
    CLOSED = "closed"


async def open_stream(
    host: str, port: int, timeout: float
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open a TCP connection, mapping failures to TransportError."""
    try:
        return await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except TimeoutError:
        raise TransportError(f"Timed out connecting to {host}:{port} after {timeout}s") from None
    except OSError as e:
        raise TransportError(f"Cannot connect to {host}:{port}: {e}") from e


class ControlChannel:
    """One attempt at the long-lived control connection.

    run() drives INIT -> CONNECTING -> AWAIT_LOGIN_RESP -> LOGGED_IN ->
    AWAIT_PROXY_RESP -> PROXY_REGISTERED and then holds the socket open.
    Any socket error, close, bad frame or rejected login moves to FAILED and
    is raised out of run(). The channel never retries by itself.
    """

    def __init__(
        self,
        server_config: ServerConfig,
        client_config: ClientConfig,
        monitor: BandwidthMonitor,
        on_logged_in: Callable[[], None] | None = None,
        on_proxy: Callable[[str], None] | None = None,
        connect_timeout: float = 30.0,
        read_chunk_size: int = 65536,
    ) -> None:
        self.server_config = server_config
        self.client_config = client_config
        self._monitor = monitor
        self._on_logged_in = on_logged_in
        self._on_proxy = on_proxy
        self._connect_timeout = connect_timeout
        self._read_chunk_size = read_chunk_size

        self._state = ChannelState.INIT
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._decoder = FrameDecoder()
        self._closed = False
        self._proxy_id: str | None = None

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def proxy_id(self) -> str | None:
        """Proxy id issued by the relay, once registered."""
        return self._proxy_id

    @property
    def address(self) -> str:
        return f"{self.server_config.server_addr}:{self.server_config.server_port}"

    def _set_state(self, state: ChannelState) -> None:
        if self._state != state:
            logger.debug("Control state changed", old=self._state.value, new=state.value)
            self._state = state

    async def run(self) -> None:
        """Connect, complete the handshake, then hold the connection.

        Returns normally only after close(). Otherwise raises TransportError
        or ProtocolError once the attempt has failed.
        """
        try:
            self._set_state(ChannelState.CONNECTING)
            self._reader, self._writer = await open_stream(
                self.server_config.server_addr,
                self.server_config.server_port,
                self._connect_timeout,
            )
            if self._closed:
                return
            logger.info("Connected to server", server=self.address)

            self._set_state(ChannelState.AWAIT_LOGIN_RESP)
            await self._send(
                create_login(self.server_config.server_addr, self.server_config.token)
            )
            await self._read_loop()
        except (TransportError, ProtocolError):
            if self._closed:
                return
            self._set_state(ChannelState.FAILED)
            raise
        except (OSError, asyncio.IncompleteReadError) as e:
            if self._closed:
                return
            self._set_state(ChannelState.FAILED)
            raise TransportError(f"Control connection error: {e}") from e
        finally:
            self._close_socket()

    async def _read_loop(self) -> None:
        assert self._reader is not None
        while not self._closed:
            data = await self._reader.read(self._read_chunk_size)
            if not data:
                if self._closed:
                    return
                raise TransportError("Control connection closed by server")

            # Wire bytes count even if the frame turns out to be garbage.
            self._monitor.record(rx_bytes=len(data))
            record_bytes("in", len(data))

            for frame in self._decoder.feed(data):
                await self._handle_frame(frame)
                if self._closed:
                    return

    async def _handle_frame(self, frame: bytes) -> None:
        if not frame.strip():
            return

        msg = parse_message(frame)
        if msg is None:
            logger.debug("Ignoring unknown control message", size=len(frame))
            return

        if isinstance(msg, LoginResp) and self._state == ChannelState.AWAIT_LOGIN_RESP:
            if not msg.ok:
                raise LoginRejectedError(msg.content.error)
            self._set_state(ChannelState.LOGGED_IN)
            logger.info("Login successful", server=self.address)
            if self._on_logged_in:
                self._on_logged_in()
            if self._closed:
                return
            await self._send(
                create_new_proxy(self.client_config.subdomain, self.server_config.server_addr)
            )
            self._set_state(ChannelState.AWAIT_PROXY_RESP)
        elif isinstance(msg, NewProxyResp) and self._state == ChannelState.AWAIT_PROXY_RESP:
            self._proxy_id = msg.content.proxy_id
            self._set_state(ChannelState.PROXY_REGISTERED)
            logger.info(
                "Proxy registered",
                subdomain=self.client_config.subdomain,
                proxy_id=self._proxy_id,
            )
            if self._on_proxy:
                self._on_proxy(self._proxy_id)
        else:
            raise ProtocolError(
                f"Unexpected {msg.type} message in state {self._state.value}"
            )

    async def _send(self, msg: WireModel) -> None:
        if self._writer is None or self._writer.is_closing():
            raise TransportError("Control connection is not open")
        data = encode_message(msg)
        self._writer.write(data)
        await self._writer.drain()
        self._monitor.record(tx_bytes=len(data))
        record_bytes("out", len(data))

    def _close_socket(self) -> None:
        writer, self._writer = self._writer, None
        self._reader = None
        if writer is not None:
            with contextlib.suppress(Exception):
                writer.close()

    def close(self) -> None:
        """Close the control socket. Safe to call repeatedly from any state."""
        if self._closed:
            return
        self._closed = True
        self._set_state(ChannelState.CLOSED)
        self._close_socket()
