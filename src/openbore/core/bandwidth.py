"""Rolling throughput accounting over a short sliding time window.

Every read and write on a tunnel socket records its byte count here. A
speed sample sums what is left in the window and divides by the time the
window actually spans, so a quiet second reads as zero instead of stale data.

Example:
    monitor = BandwidthMonitor(window_seconds=1.0)
    monitor.record(rx_bytes=1500)
    speed = monitor.sample()
    print(speed.rx)  # bits per second
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from time import monotonic


@dataclass(frozen=True, slots=True)
class SpeedSample:
    """Throughput in bits per second."""

    tx: float
    rx: float


class BandwidthMonitor:
    """Sliding window of (timestamp, rx_bytes, tx_bytes) samples.

    Timestamps come from time.monotonic(), so samples are non-decreasing and
    eviction only ever drops from the left.
    """

    __slots__ = ("_window", "_samples", "_bytes_received", "_bytes_sent")

    def __init__(self, window_seconds: float = 1.0) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._window = window_seconds
        self._samples: deque[tuple[float, int, int]] = deque()
        self._bytes_received = 0
        self._bytes_sent = 0

    @property
    def window_seconds(self) -> float:
        return self._window

    @property
    def bytes_received(self) -> int:
        """Total bytes received since creation."""
        return self._bytes_received

    @property
    def bytes_sent(self) -> int:
        """Total bytes sent since creation."""
        return self._bytes_sent

    def __len__(self) -> int:
        return len(self._samples)

    def _evict(self, now: float) -> None:
        cutoff = now - self._window
        samples = self._samples
        while samples and samples[0][0] < cutoff:
            samples.popleft()

    def record(self, rx_bytes: int = 0, tx_bytes: int = 0, now: float | None = None) -> None:
        """Append a sample and drop anything older than the window."""
        if now is None:
            now = monotonic()
        # Clamp so a caller-supplied clock can't break ordering.
        if self._samples and now < self._samples[-1][0]:
            now = self._samples[-1][0]

        self._samples.append((now, rx_bytes, tx_bytes))
        self._bytes_received += rx_bytes
        self._bytes_sent += tx_bytes
        self._evict(now)

    def sample(self, now: float | None = None) -> SpeedSample:
        """Compute tx/rx bits per second over the retained window.

        Falls back to a one second duration when the window is empty or spans
        no time at all.
        """
        if now is None:
            now = monotonic()

        self._evict(now)
        if not self._samples:
            return SpeedSample(tx=0.0, rx=0.0)

        duration = now - self._samples[0][0]
        if duration <= 0:
            duration = 1.0

        rx_total = 0
        tx_total = 0
        for _, rx, tx in self._samples:
            rx_total += rx
            tx_total += tx

        return SpeedSample(tx=tx_total * 8 / duration, rx=rx_total * 8 / duration)

    def reset(self) -> None:
        """Forget the window. Totals are kept."""
        self._samples.clear()
