"""Signaling module."""

from roomrelay.signaling.registry import SessionRegistry
from roomrelay.signaling.server import Connection, ConnectionState, RelayServer
from roomrelay.signaling.client import RelayClient

__all__ = [
    "SessionRegistry",
    "Connection",
    "ConnectionState",
    "RelayServer",
    "RelayClient",
]
