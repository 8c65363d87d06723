# runtimebridge/rpc/transport.py
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any
from collections.abc import Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from runtimebridge.config import config
from runtimebridge.core.time import msToSeconds

logger = logging.getLogger(__name__)

__all__ = [
    "TransportClosed", "Transport", "TransportFactory",
    "WebSocketTransport", "InProcessTransport", "webSocketFactory", "runtimeUrl",
]



class TransportClosed(ConnectionError):
    """The channel is gone: raised by receive() at end of stream and by send() after close."""



class Transport(ABC):
    """
    Ordered, reliable, message-framed duplex channel to the runtime.

    receive() returning a frame is the "message" signal, TransportClosed is
    the "close" signal, and any other exception is the "error" signal.
    """

    @abstractmethod
    async def send(self, data: str | bytes) -> None: ...

    @abstractmethod
    async def receive(self) -> str | bytes: ...

    @abstractmethod
    async def close(self) -> None: ...

    @property
    @abstractmethod
    def closed(self) -> bool: ...


TransportFactory = Callable[[], Awaitable[Transport]]



# ----------------------------------------------
#                  WebSocket
# ----------------------------------------------

class WebSocketTransport(Transport):
    """Transport over a client WebSocket connection (websockets library)."""

    def __init__(self, websocket: Any, *, url: str = "") -> None:
        self._ws = websocket
        self.url = url
        self._closed = False

    @classmethod
    async def connect(cls, url: str, *, openTimeoutMs: int | None = None) -> "WebSocketTransport":
        if openTimeoutMs is None:
            openTimeoutMs = int(config("rpc.handshakeTimeoutMs", 10_000))
        websocket = await websockets.connect(url, open_timeout=msToSeconds(openTimeoutMs), max_size=None)
        logger.debug("WebSocket connected to %s", url)
        return cls(websocket, url=url)

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, data: str | bytes) -> None:
        if self._closed:
            raise TransportClosed(f"WebSocket to {self.url or '?'} is closed")
        try:
            await self._ws.send(data)
        except ConnectionClosed as err:
            self._closed = True
            raise TransportClosed(str(err)) from err

    async def receive(self) -> str | bytes:
        try:
            return await self._ws.recv()
        except ConnectionClosed as err:
            self._closed = True
            raise TransportClosed(str(err)) from err

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._ws.close()



def runtimeUrl(host: str | None = None, port: int | None = None, path: str | None = None) -> str:
    host = host or str(config("connection.host", "127.0.0.1"))
    port = int(port or config("connection.port", 9696))
    path = path if path is not None else str(config("connection.path", ""))
    if path and not path.startswith("/"):
        path = "/" + path
    return f"ws://{host}:{port}{path}"



def webSocketFactory(url: str | None = None, *, openTimeoutMs: int | None = None) -> TransportFactory:
    """Returns a factory opening a fresh WebSocketTransport on every (re)connect."""
    target = url or runtimeUrl()

    async def _factory() -> Transport:
        return await WebSocketTransport.connect(target, openTimeoutMs=openTimeoutMs)

    return _factory



# ----------------------------------------------
#                 In-process
# ----------------------------------------------

_CLOSE = object()



class InProcessTransport(Transport):
    """One end of an in-process duplex channel built on asyncio queues."""

    def __init__(self, inbox: asyncio.Queue[Any], outbox: asyncio.Queue[Any], *, name: str = "") -> None:
        self._inbox = inbox
        self._outbox = outbox
        self._closed = False
        self.name = name

    @classmethod
    def pair(cls) -> tuple["InProcessTransport", "InProcessTransport"]:
        """Returns two connected ends: what one sends, the other receives."""
        left: asyncio.Queue[Any] = asyncio.Queue()
        right: asyncio.Queue[Any] = asyncio.Queue()
        return cls(left, right, name="client"), cls(right, left, name="runtime")

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, data: str | bytes) -> None:
        if self._closed:
            raise TransportClosed(f"In-process transport '{self.name}' is closed")
        await self._outbox.put(data)

    async def receive(self) -> str | bytes:
        if self._closed and self._inbox.empty():
            raise TransportClosed(f"In-process transport '{self.name}' is closed")
        item = await self._inbox.get()
        if item is _CLOSE:
            self._closed = True
            raise TransportClosed(f"In-process transport '{self.name}' closed")
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake our own reader and tell the peer
        self._inbox.put_nowait(_CLOSE)
        self._outbox.put_nowait(_CLOSE)
