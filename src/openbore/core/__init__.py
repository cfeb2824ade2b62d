"""Core."""

from .bandwidth import BandwidthMonitor, SpeedSample
from .config import (
    ClientConfig,
    ServerConfig,
    ServerSettings,
    TunnelSettings,
    clear_settings,
    get_settings,
    load_config_from_file,
    load_server_config,
    resolve_server_config,
)
from .exceptions import (
    ConfigError,
    LocalServiceError,
    LoginRejectedError,
    OpenBoreError,
    ProtocolError,
    TransportError,
    format_error_for_user,
)

__all__ = [
    # Bandwidth
    "BandwidthMonitor",
    "SpeedSample",
    # Config
    "ClientConfig",
    "ServerConfig",
    "ServerSettings",
    "TunnelSettings",
    "clear_settings",
    "get_settings",
    "load_config_from_file",
    "load_server_config",
    "resolve_server_config",
    # Errors
    "OpenBoreError",
    "ConfigError",
    "TransportError",
    "ProtocolError",
    "LoginRejectedError",
    "LocalServiceError",
    "format_error_for_user",
]
