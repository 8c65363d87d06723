# runtimebridge/__init__.py
from __future__ import annotations

from .core.errors import (
    BridgeError, CallTimeoutError, ConnectFailedError, DecodeError, DisconnectedError,
    ListenerError, NotConnectedError, RemoteError, ResponseShapeError, SessionClosedError,
)
from .facade import AckListener, RuntimeSystem, deliverTo
from .rpc import ConnectionState, RuntimeSession, webSocketFactory

__version__ = "0.1.0"

__all__ = [
    "BridgeError",
    "CallTimeoutError",
    "ConnectFailedError",
    "DecodeError",
    "DisconnectedError",
    "ListenerError",
    "NotConnectedError",
    "RemoteError",
    "ResponseShapeError",
    "SessionClosedError",
    "AckListener",
    "RuntimeSystem",
    "deliverTo",
    "ConnectionState",
    "RuntimeSession",
    "webSocketFactory",
]
