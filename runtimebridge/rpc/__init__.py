# runtimebridge/rpc/__init__.py
from __future__ import annotations

from .codec import decodeFrame, encodeRequest
from .correlation import CorrelationTable, PendingCall
from .models import EventFrame, Frame, MessageId, RequestEnvelope, ResponseFrame
from .router import EventListener, EventRouter, Subscription
from .session import ConnectionState, RuntimeSession
from .transport import InProcessTransport, Transport, TransportClosed, WebSocketTransport, webSocketFactory

__all__ = [
    "decodeFrame",
    "encodeRequest",
    "CorrelationTable",
    "PendingCall",
    "EventFrame",
    "Frame",
    "MessageId",
    "RequestEnvelope",
    "ResponseFrame",
    "EventListener",
    "EventRouter",
    "Subscription",
    "ConnectionState",
    "RuntimeSession",
    "InProcessTransport",
    "Transport",
    "TransportClosed",
    "WebSocketTransport",
    "webSocketFactory",
]
