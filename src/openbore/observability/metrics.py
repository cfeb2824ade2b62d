from prometheus_client import Counter, Gauge

BYTES_TRANSFERRED = Counter(
    "openbore_bytes_total",
    "Bytes moved over relay sockets",
    ["direction"],  # direction: in/out
)

RECONNECTS = Counter(
    "openbore_reconnects_total",
    "Reconnect attempts scheduled",
)

SESSIONS = Counter(
    "openbore_sessions_total",
    "Control sessions by outcome",
    ["result"],  # result: connected/failed
)

CONNECTED = Gauge(
    "openbore_connected",
    "1 while a login session is established",
)


def record_bytes(direction: str, count: int) -> None:
    if count:
        BYTES_TRANSFERRED.labels(direction=direction).inc(count)
