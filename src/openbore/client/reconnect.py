"""Fixed-delay reconnect scheduling."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from openbore.observability.metrics import RECONNECTS

logger = structlog.get_logger()

DEFAULT_RECONNECT_DELAY = 5.0


class ReconnectSupervisor:
    """Schedules at most one pending retry at a time.

    Retries run forever with a fixed delay, no backoff and no attempt cap,
    until cancel() is called. A burst of failure signals from several sockets
    in the same tick collapses into the single pending retry.
    """

    def __init__(self, delay: float = DEFAULT_RECONNECT_DELAY) -> None:
        self._delay = delay
        self._handle: asyncio.TimerHandle | None = None
        self._attempts = 0

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        """True while a retry is scheduled and has not fired yet."""
        return self._handle is not None

    @property
    def attempts(self) -> int:
        """Retries scheduled since the last reset()."""
        return self._attempts

    def schedule(self, callback: Callable[[], None]) -> bool:
        """Schedule callback after the fixed delay unless a retry is already pending.

        Returns:
            True if a new retry was scheduled
        """
        if self._handle is not None:
            logger.debug("Reconnect already pending")
            return False

        loop = asyncio.get_running_loop()
        self._attempts += 1
        RECONNECTS.inc()
        logger.info("Reconnecting", attempt=self._attempts, delay_sec=self._delay)
        self._handle = loop.call_later(self._delay, self._fire, callback)
        return True

    def _fire(self, callback: Callable[[], None]) -> None:
        self._handle = None
        callback()

    def cancel(self) -> None:
        """Drop the pending retry, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def reset(self) -> None:
        """Reset the attempt counter after a successful login."""
        self._attempts = 0
