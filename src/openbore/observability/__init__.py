from openbore.observability.metrics import (
    BYTES_TRANSFERRED,
    CONNECTED,
    RECONNECTS,
    SESSIONS,
    record_bytes,
)

__all__ = [
    "BYTES_TRANSFERRED",
    "CONNECTED",
    "RECONNECTS",
    "SESSIONS",
    "record_bytes",
]
