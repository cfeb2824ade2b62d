"""Tunnel client."""

from .control import ChannelState, ControlChannel
from .reconnect import ReconnectSupervisor
from .relay import DataRelay
from .tunnel import TunnelClient, TunnelObserver, TunnelState

__all__ = [
    "ChannelState",
    "ControlChannel",
    "DataRelay",
    "ReconnectSupervisor",
    "TunnelClient",
    "TunnelObserver",
    "TunnelState",
]
