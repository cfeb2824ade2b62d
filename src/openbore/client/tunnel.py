"""Tunnel client with fixed-delay auto-reconnect and throughput reporting."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from openbore.client.control import ControlChannel
from openbore.client.reconnect import ReconnectSupervisor
from openbore.client.relay import DataRelay
from openbore.core.bandwidth import BandwidthMonitor, SpeedSample
from openbore.core.config import (
    ClientConfig,
    ServerConfig,
    TunnelSettings,
    get_settings,
    load_server_config,
    resolve_server_config,
)
from openbore.core.exceptions import OpenBoreError, TransportError, format_error_for_user
from openbore.observability.metrics import CONNECTED, SESSIONS

logger = structlog.get_logger()


class TunnelState(Enum):
    """Client lifecycle state."""

    STOPPED = "stopped"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    REGISTERED = "registered"
    RECONNECTING = "reconnecting"


class TunnelObserver:
    """Receives lifecycle and telemetry events from a TunnelClient.

    Subclass and override what you need; every method defaults to a no-op.
    Callbacks run on the event loop and must not block.
    """

    def on_connected(self, client: TunnelClient) -> None:
        pass

    def on_disconnected(self) -> None:
        pass

    def on_speed(self, sample: SpeedSample) -> None:
        pass


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class TunnelClient:
    """Exposes a local TCP port through a relay server.

    Features:
    - Login and proxy registration over a control connection
    - One raw work connection per registered proxy
    - Fixed-delay reconnect after any failure, until stop()
    - Rolling throughput reported as speed events
    """

    def __init__(
        self,
        config: ClientConfig,
        server_config: ServerConfig | str | Path | None = None,
        settings: TunnelSettings | None = None,
    ) -> None:
        """Initialize tunnel client.

        Args:
            config: Subdomain and local port to expose
            server_config: Relay identity, a path to a config file, or None to
                read the environment and fall back to ./open-bore.ini
            settings: Timing settings (defaults to the cached environment settings)

        Raises:
            ConfigError: If the relay identity can't be resolved
        """
        self.config = config
        if isinstance(server_config, ServerConfig):
            self.server_config = server_config
        elif server_config is not None:
            self.server_config = load_server_config(server_config)
        else:
            self.server_config = resolve_server_config()
        self.settings = settings or get_settings()

        self._monitor = BandwidthMonitor(window_seconds=self.settings.speed_window)
        self._supervisor = ReconnectSupervisor(delay=self.settings.reconnect_delay)
        self._observers: list[TunnelObserver] = []

        # _started is the caller's intent, _running is RunningState: a login
        # session is currently established.
        self._started = False
        self._running = False
        self._state = TunnelState.STOPPED
        self._generation = 0

        self._channel: ControlChannel | None = None
        self._relay: DataRelay | None = None
        self._control_task: asyncio.Task[None] | None = None
        self._relay_task: asyncio.Task[None] | None = None
        self._speed_task: asyncio.Task[None] | None = None
        self._proxy_id: str | None = None
        self._stopped = asyncio.Event()

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def is_running(self) -> bool:
        """True while a login session is established."""
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._state in (TunnelState.CONNECTED, TunnelState.REGISTERED)

    @property
    def proxy_id(self) -> str | None:
        return self._proxy_id

    @property
    def public_url(self) -> str:
        return f"https://{self.config.subdomain}.{self.server_config.server_addr}"

    @property
    def monitor(self) -> BandwidthMonitor:
        return self._monitor

    @property
    def send_speed(self) -> float:
        """Current upload speed in bits per second."""
        return self._monitor.sample().tx

    @property
    def receive_speed(self) -> float:
        """Current download speed in bits per second."""
        return self._monitor.sample().rx

    @property
    def stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        speed = self._monitor.sample()
        return {
            "state": self._state.value,
            "proxy_id": self._proxy_id,
            "public_url": self.public_url,
            "bytes_sent": self._monitor.bytes_sent,
            "bytes_received": self._monitor.bytes_received,
            "tx_bps": speed.tx,
            "rx_bps": speed.rx,
            "reconnect_attempts": self._supervisor.attempts,
        }

    def add_observer(self, observer: TunnelObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: TunnelObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _emit(self, event: str, *args: Any) -> None:
        if not self._started:
            return
        for observer in list(self._observers):
            try:
                getattr(observer, event)(*args)
            except Exception as e:
                logger.warning("Observer error", callback=event, error=str(e))

    def _set_state(self, state: TunnelState) -> None:
        if self._state != state:
            old_state = self._state
            self._state = state
            logger.debug("State changed", old=old_state.value, new=state.value)

    def start(self) -> None:
        """Start tunneling. Must be called with a running event loop.

        Calling start() again while started does nothing.
        """
        if self._started:
            return
        asyncio.get_running_loop()

        self._started = True
        self._stopped.clear()
        self._speed_task = asyncio.create_task(self._speed_loop())
        self._connect()

    def _connect(self) -> None:
        """Begin one control session. Used by start() and by the supervisor."""
        if not self._started or self._running:
            return

        self._generation += 1
        generation = self._generation
        self._set_state(TunnelState.CONNECTING)

        channel = ControlChannel(
            self.server_config,
            self.config,
            self._monitor,
            on_logged_in=lambda: self._on_logged_in(generation),
            on_proxy=lambda proxy_id: self._on_proxy(generation, proxy_id),
            connect_timeout=self.settings.connect_timeout,
            read_chunk_size=self.settings.read_chunk_size,
        )
        self._channel = channel
        self._control_task = asyncio.create_task(
            self._guard(generation, channel.run(), "control")
        )

    async def _guard(
        self, generation: int, coro: Coroutine[Any, Any, None], name: str
    ) -> None:
        """Run a component and funnel however it ends into the failure path."""
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except OpenBoreError as e:
            self._on_failure(generation, e)
        except Exception as e:
            logger.error("Unexpected error", component=name, error=str(e))
            self._on_failure(generation, e)
        else:
            self._on_failure(generation, TransportError(f"{name} connection closed"))

    def _on_logged_in(self, generation: int) -> None:
        if generation != self._generation or not self._started:
            return
        self._running = True
        self._supervisor.reset()
        self._set_state(TunnelState.CONNECTED)
        SESSIONS.labels(result="connected").inc()
        CONNECTED.set(1)
        self._emit("on_connected", self)

    def _on_proxy(self, generation: int, proxy_id: str) -> None:
        if generation != self._generation or not self._started:
            return
        self._proxy_id = proxy_id
        relay = DataRelay(
            self.server_config,
            self.config,
            self._monitor,
            connect_timeout=self.settings.connect_timeout,
            read_chunk_size=self.settings.read_chunk_size,
        )
        self._relay = relay
        self._relay_task = asyncio.create_task(
            self._guard(generation, relay.run(proxy_id), "work")
        )
        self._set_state(TunnelState.REGISTERED)

    def _on_failure(self, generation: int, error: BaseException) -> None:
        """Tear down the session and schedule one retry.

        Failures from an older session, or after stop(), are ignored.
        """
        if generation != self._generation or not self._started:
            logger.debug("Ignoring stale failure", error=str(error))
            return

        was_running = self._running
        logger.warning(
            "Tunnel connection lost",
            error=format_error_for_user(error),
            code=getattr(error, "code", type(error).__name__),
        )
        self._teardown()
        # Invalidate callbacks still in flight for this session.
        self._generation += 1

        if was_running:
            CONNECTED.set(0)
            self._emit("on_disconnected")
        else:
            SESSIONS.labels(result="failed").inc()

        self._set_state(TunnelState.RECONNECTING)
        self._supervisor.schedule(self._connect)

    def _teardown(self) -> None:
        self._running = False
        self._proxy_id = None

        for component in (self._channel, self._relay):
            if component is not None:
                component.close()
        self._channel = None
        self._relay = None

        current = _current_task()
        for task in (self._control_task, self._relay_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
        self._control_task = None
        self._relay_task = None

    async def _speed_loop(self) -> None:
        """Publish a speed sample every speed_interval seconds."""
        interval = self.settings.speed_interval
        while self._started:
            await asyncio.sleep(interval)
            if not self._started:
                break
            self._emit("on_speed", self._monitor.sample())

    def stop(self) -> None:
        """Stop tunneling and close every socket. Safe from any state.

        No events are delivered after stop() returns.
        """
        self._started = False
        self._supervisor.cancel()
        self._teardown()
        self._generation += 1
        CONNECTED.set(0)

        if self._speed_task is not None and self._speed_task is not _current_task():
            self._speed_task.cancel()
        self._speed_task = None

        if self._state != TunnelState.STOPPED:
            logger.info("Tunnel stopped", stats=self.stats)
        self._set_state(TunnelState.STOPPED)
        self._stopped.set()

    async def wait_closed(self) -> None:
        """Wait until stop() is called."""
        await self._stopped.wait()

    async def run(self) -> None:
        """Start and keep tunneling until cancelled or stopped."""
        self.start()
        try:
            await self.wait_closed()
        finally:
            self.stop()

    async def __aenter__(self) -> TunnelClient:
        """Async context manager entry."""
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        self.stop()
