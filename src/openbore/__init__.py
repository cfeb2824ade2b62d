"""open-bore: expose a local TCP service through a relay server."""

from openbore.client.tunnel import TunnelClient, TunnelObserver, TunnelState
from openbore.core.bandwidth import SpeedSample
from openbore.core.config import ClientConfig, ServerConfig

__version__ = "0.1.0"

__all__ = [
    "ClientConfig",
    "ServerConfig",
    "SpeedSample",
    "TunnelClient",
    "TunnelObserver",
    "TunnelState",
    "__version__",
]
