# runtimebridge/rpc/session.py
from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
import random
from enum import Enum
from typing import Any
from collections.abc import Callable

from runtimebridge.config import config, configBool
from runtimebridge.core.errors import (
    BridgeError, ConnectFailedError, DecodeError, DisconnectedError,
    NotConnectedError, RemoteError, SessionClosedError,
)
from runtimebridge.core.ids import MessageIdCounter, uuidv7
from runtimebridge.core.logging import logContext
from runtimebridge.rpc.codec import decodeFrame, encodeRequest
from runtimebridge.rpc.correlation import CorrelationTable
from runtimebridge.rpc.logging import decideAndLog
from runtimebridge.rpc.models import EventFrame, ResponseFrame
from runtimebridge.rpc.router import EventListener, EventRouter
from runtimebridge.rpc.transport import Transport, TransportClosed, TransportFactory

logger = logging.getLogger(__name__)

__all__ = [
    "ConnectionState", "StateListener", "RuntimeSession",
    "HANDSHAKE_ACTION", "SUBSCRIBE_ACTION", "UNSUBSCRIBE_ACTION",
]


HANDSHAKE_ACTION = "request-authorization"
SUBSCRIBE_ACTION = "subscribe-to-desktop-event"
UNSUBSCRIBE_ACTION = "unsubscribe-to-desktop-event"



class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


# (oldState, newState)
StateListener = Callable[[ConnectionState, ConnectionState], Any]



class RuntimeSession:
    """
    One logical connection to the runtime.

    Owns the transport and its single reader task, hands out request ids,
    correlates responses through a CorrelationTable and fans events out
    through an EventRouter.

    States: DISCONNECTED → CONNECTING → OPEN ⇄ RECONNECTING → CLOSED (terminal).
      - A failed open() goes back to DISCONNECTED and raises ConnectFailedError.
      - An unexpected drop while OPEN drains pending calls immediately, then
        reconnects with backoff, re-authorizes with the same callerUuid and
        re-subscribes every topic that still has listeners before going OPEN.
      - close() or exhausted retries drain pending calls, clear subscriptions
        and end in CLOSED.

    submitThreadsafe(), subscribe() and unsubscribe() may be called from any
    thread. Everything else must be called from the event loop
    the session was opened on.
    """

    def __init__(
        self,
        transportFactory: TransportFactory,
        *,
        callerUuid: str | None = None,
        defaultTimeoutMs: int | None = None,
        handshakeTimeoutMs: int | None = None,
        handshakePayload: dict[str, Any] | None = None,
        reconnect: bool | None = None,
        maxRetries: int | None = None,
        backoffBaseMs: int | None = None,
        backoffMaxMs: int | None = None,
    ) -> None:
        self._transportFactory = transportFactory
        self.callerUuid = callerUuid or uuidv7()
        self.defaultTimeoutMs = int(defaultTimeoutMs if defaultTimeoutMs is not None else config("rpc.defaultTimeoutMs", 5000))
        self.handshakeTimeoutMs = int(handshakeTimeoutMs if handshakeTimeoutMs is not None else config("rpc.handshakeTimeoutMs", 10_000))
        self.handshakePayload = dict(handshakePayload or {})
        self.reconnect = reconnect if reconnect is not None else configBool("reconnect.enabled", True)
        self.maxRetries = int(maxRetries if maxRetries is not None else config("reconnect.maxRetries", 5))
        self.backoffBaseMs = int(backoffBaseMs if backoffBaseMs is not None else config("reconnect.backoffBaseMs", 250))
        self.backoffMaxMs = int(backoffMaxMs if backoffMaxMs is not None else config("reconnect.backoffMaxMs", 5000))
        self._maxFrameChars = int(config("rpc.maxFrameChars", 1_000_000))

        self.correlation = CorrelationTable()
        self.router = EventRouter()
        self._ids = MessageIdCounter()
        self._state = ConnectionState.DISCONNECTED
        self._stateListeners: list[StateListener] = []
        self._transport: Transport | None = None
        self._readerTask: asyncio.Task[None] | None = None
        self._reconnectTask: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._identityConfirmed = False
        self.connectCount = 0

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def isOpen(self) -> bool:
        return self._state is ConnectionState.OPEN

    def onStateChange(self, listener: StateListener) -> Callable[[], None]:
        """Registers a state-change listener; returns a callable that removes it."""
        self._stateListeners.append(listener)
        def _unsub() -> None:
            try:
                self._stateListeners.remove(listener)
            except ValueError:
                pass
        return _unsub

    def _setState(self, newState: ConnectionState) -> None:
        oldState = self._state
        if oldState is newState:
            return
        self._state = newState
        logger.info("Session %s: %s → %s", self.callerUuid, oldState.value, newState.value)
        for fn in list(self._stateListeners):
            try:
                result = fn(oldState, newState)
                if inspect.isawaitable(result):
                    self._spawn(result, name="state-listener")
            except Exception:
                logger.warning("State listener failed on %s → %s", oldState.value, newState.value, exc_info=True)

    # ------------------------------------------------------------------ #
    # Open / close
    # ------------------------------------------------------------------ #

    async def open(self) -> None:
        if self._state is ConnectionState.OPEN:
            return
        if self._state is ConnectionState.CLOSED:
            raise SessionClosedError("Session is closed; create a new RuntimeSession")
        if self._state is not ConnectionState.DISCONNECTED:
            raise BridgeError(f"open() called while session is {self._state.value}", code="INVALID_STATE")

        self._loop = asyncio.get_running_loop()
        self._setState(ConnectionState.CONNECTING)
        try:
            await self._establish()
        except asyncio.CancelledError:
            if self._state is ConnectionState.CONNECTING:
                self._setState(ConnectionState.DISCONNECTED)
            raise
        except Exception as err:
            if self._state is ConnectionState.CLOSED:
                raise SessionClosedError("Session was closed while connecting") from err
            self._setState(ConnectionState.DISCONNECTED)
            raise ConnectFailedError(f"Could not connect to runtime: {err}", extra={"callerUuid": self.callerUuid}) from err

        if self._state is not ConnectionState.CONNECTING:
            # Closed while connecting
            if self._transport is not None:
                await self._detach(self._transport)
            raise SessionClosedError("Session was closed while connecting")
        self._setState(ConnectionState.OPEN)

    async def close(self) -> None:
        if self._state is ConnectionState.CLOSED:
            return
        await self._shutdown("closed")

    async def __aenter__(self) -> "RuntimeSession":
        await self.open()
        return self

    async def __aexit__(self, excType, exc, tb) -> None:
        await self.close()

    async def _establish(self) -> None:
        """Connect a fresh transport, authorize and replay subscriptions. Tears the transport down on failure."""
        transport = await self._transportFactory()
        self._attach(transport)
        try:
            await self._handshake()
            await self._replaySubscriptions()
        except BaseException:
            await self._detach(transport)
            raise
        self.connectCount += 1

    async def _handshake(self) -> None:
        payload = {"uuid": self.callerUuid, "type": "external-connection", **self.handshakePayload}
        data = await self._submit(HANDSHAKE_ACTION, payload, timeoutMs=self.handshakeTimeoutMs)
        if not self._identityConfirmed:
            # The runtime may assign the identity on first contact; it is reused from then on
            assigned = data.get("uuid") if isinstance(data, dict) else None
            if isinstance(assigned, str) and assigned and assigned != self.callerUuid:
                logger.info("Runtime assigned caller identity %s (requested %s)", assigned, self.callerUuid)
                self.callerUuid = assigned
            self._identityConfirmed = True

    async def _replaySubscriptions(self) -> None:
        # Listeners may come and go while the replay awaits; repeat until the topic set settles
        replayed: set[str] = set()
        while True:
            current = self.router.topics()
            toAdd = [topic for topic in current if topic not in replayed]
            toDrop = sorted(replayed.difference(current))
            if not toAdd and not toDrop:
                return
            for topic in toAdd:
                replayed.add(topic)
                try:
                    await self._submit(SUBSCRIBE_ACTION, self._topicPayload(topic))
                except RemoteError as err:
                    logger.warning("Runtime refused re-subscription to '%s': %s", topic, err.reason)
            for topic in toDrop:
                replayed.discard(topic)
                try:
                    await self._submit(UNSUBSCRIBE_ACTION, self._topicPayload(topic))
                except RemoteError as err:
                    logger.warning("Runtime refused unsubscription from '%s': %s", topic, err.reason)

    async def _shutdown(self, reason: str) -> None:
        transport = self._transport
        reconnectTask = self._reconnectTask
        self._reconnectTask = None
        if reconnectTask is not None and reconnectTask is not asyncio.current_task() and not reconnectTask.done():
            reconnectTask.cancel()

        self.correlation.drainAll(reason)
        self.router.clear()
        self._setState(ConnectionState.CLOSED)
        if transport is not None:
            await self._detach(transport)

        for task in list(self._background):
            if task is not asyncio.current_task() and not task.done():
                task.cancel()

    # ------------------------------------------------------------------ #
    # Transport plumbing
    # ------------------------------------------------------------------ #

    def _attach(self, transport: Transport) -> None:
        self._transport = transport
        self._readerTask = asyncio.create_task(self._readLoop(transport), name=f"rpc-reader:{self.callerUuid}")

    async def _detach(self, transport: Transport) -> None:
        if self._transport is transport:
            self._transport = None
            readerTask = self._readerTask
            self._readerTask = None
            if readerTask is not None and readerTask is not asyncio.current_task() and not readerTask.done():
                readerTask.cancel()
                try:
                    await readerTask
                except asyncio.CancelledError:
                    pass
        try:
            await transport.close()
        except Exception:
            logger.debug("Transport close failed", exc_info=True)

    async def _readLoop(self, transport: Transport) -> None:
        while True:
            try:
                raw = await transport.receive()
            except asyncio.CancelledError:
                raise
            except TransportClosed as err:
                self._onTransportLost(transport, err)
                return
            except Exception as err:
                logger.warning("Transport error: %s", err, exc_info=True)
                self._onTransportLost(transport, err)
                return

            try:
                self._handleFrame(raw)
            except Exception:
                # Never let one frame take the reader down
                logger.exception("Unexpected failure while handling inbound frame")

    def _handleFrame(self, raw: str | bytes) -> None:
        if len(raw) > self._maxFrameChars:
            logger.warning("Dropping inbound frame of %d chars (limit %d)", len(raw), self._maxFrameChars)
            return

        try:
            frame = decodeFrame(raw)
        except DecodeError as err:
            decideAndLog("incoming", text=raw if isinstance(raw, str) else None, bytesLen=None if isinstance(raw, str) else len(raw))
            logger.warning("Dropping undecodable frame: %s", err.message)
            return

        if isinstance(frame, ResponseFrame):
            with logContext(callerUuid=self.callerUuid, messageId=frame.messageId):
                decideAndLog("incoming", text=raw if isinstance(raw, str) else None)
                self.correlation.resolve(frame.messageId, frame)
        elif isinstance(frame, EventFrame):
            with logContext(callerUuid=self.callerUuid, topic=frame.topic):
                decideAndLog("incoming", action=frame.topic, text=raw if isinstance(raw, str) else None)
                self.router.dispatch(frame)

    def _onTransportLost(self, transport: Transport, err: BaseException | None) -> None:
        if transport is not self._transport:
            return # Stale reader of a transport we already replaced
        self._transport = None
        self._readerTask = None

        if self._state is ConnectionState.OPEN:
            logger.warning("Connection to runtime lost: %s", err)
            self.correlation.drainAll("disconnected")
            if self.reconnect:
                self._setState(ConnectionState.RECONNECTING)
                self._reconnectTask = asyncio.create_task(self._reconnectLoop(), name=f"rpc-reconnect:{self.callerUuid}")
            else:
                self.router.clear()
                self._setState(ConnectionState.CLOSED)
            self._spawn(transport.close(), name="transport-close")
            return

        # Lost during CONNECTING/RECONNECTING: fail the in-flight handshake fast
        self.correlation.drainAll("disconnected")
        self._spawn(transport.close(), name="transport-close")

    def _backoffSeconds(self, attempt: int) -> float:
        base = min(self.backoffMaxMs, self.backoffBaseMs * (2 ** attempt))
        jitter = base * 0.25
        delayMs = max(0.0, base + random.uniform(-jitter, jitter))
        return delayMs / 1000.0

    async def _reconnectLoop(self) -> None:
        attempt = 0
        while self._state is ConnectionState.RECONNECTING and attempt < self.maxRetries:
            await asyncio.sleep(self._backoffSeconds(attempt))
            attempt += 1
            if self._state is not ConnectionState.RECONNECTING:
                return
            try:
                await self._establish()
            except asyncio.CancelledError:
                raise
            except Exception as err:
                logger.warning("Reconnect attempt %d/%d failed: %s", attempt, self.maxRetries, err)
                continue
            if self._state is ConnectionState.RECONNECTING:
                self._reconnectTask = None
                self._setState(ConnectionState.OPEN)
                logger.info("Reconnected after %d attempt(s); %d topic(s) re-subscribed", attempt, len(self.router.topics()))
            return

        if self._state is ConnectionState.RECONNECTING:
            logger.error("Giving up on runtime after %d reconnect attempt(s)", attempt)
            await self._shutdown("closed")

    def _spawn(self, awaitable: Any, *, name: str) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)

        def _done(done: asyncio.Task[Any]) -> None:
            self._background.discard(done)
            if done.cancelled():
                return
            err = done.exception()
            if err is not None:
                logger.warning("Background task '%s' failed: %s", name, err, exc_info=err)

        task.add_done_callback(_done)
        return task

    # ------------------------------------------------------------------ #
    # Calls
    # ------------------------------------------------------------------ #

    def send(self, action: str, payload: dict[str, Any] | None = None, *, timeoutMs: int | None = None) -> asyncio.Future[Any]:
        """
        Submits one call and returns its future right away.

        The future resolves to the response data, or raises RemoteError,
        CallTimeoutError or DisconnectedError. Cancelling it withdraws the call.
        Raises NotConnectedError immediately unless the session is OPEN.
        """
        if self._state is not ConnectionState.OPEN:
            raise NotConnectedError(
                f"Cannot send '{action}' while session is {self._state.value}",
                extra={"action": action, "state": self._state.value},
            )
        return self._submit(action, payload, timeoutMs=timeoutMs)

    async def request(self, action: str, payload: dict[str, Any] | None = None, *, timeoutMs: int | None = None) -> Any:
        return await self.send(action, payload, timeoutMs=timeoutMs)

    def submitThreadsafe(self, action: str, payload: dict[str, Any] | None = None, *, timeoutMs: int | None = None) -> concurrent.futures.Future[Any]:
        """send() for callers living on other threads."""
        if self._loop is None:
            raise NotConnectedError("Session was never opened")
        return asyncio.run_coroutine_threadsafe(self.request(action, payload, timeoutMs=timeoutMs), self._loop)

    def _submit(self, action: str, payload: dict[str, Any] | None, *, timeoutMs: int | None = None) -> asyncio.Future[Any]:
        transport = self._transport
        if transport is None:
            raise NotConnectedError(f"No transport for '{action}'", extra={"action": action})

        requestId = self._ids.next()
        text = encodeRequest(action, payload, requestId)
        future = self.correlation.register(
            requestId,
            action=action,
            timeoutMs=timeoutMs if timeoutMs is not None else self.defaultTimeoutMs,
        )
        with logContext(callerUuid=self.callerUuid, action=action, messageId=requestId):
            decideAndLog("outgoing", action=action, text=text)
        self._spawn(self._write(transport, requestId, action, text), name=f"write:{action}")
        return future

    async def _write(self, transport: Transport, requestId: int, action: str, text: str) -> None:
        try:
            await transport.send(text)
        except asyncio.CancelledError:
            self.correlation.fail(requestId, DisconnectedError(f"Write of '{action}' was interrupted"))
            raise
        except Exception as err:
            self.correlation.fail(requestId, DisconnectedError(
                f"Could not write '{action}' to the runtime: {err}",
                extra={"requestId": requestId, "action": action},
            ))

    # ------------------------------------------------------------------ #
    # Subscriptions
    # ------------------------------------------------------------------ #

    def _topicPayload(self, topic: str) -> dict[str, Any]:
        return {"topic": topic, "uuid": self.callerUuid}

    def subscribe(self, topic: str, listener: EventListener) -> str:
        """
        Registers `listener` for `topic` in any state and returns its token.
        The first listener of a topic also subscribes remotely once OPEN;
        remote failures are logged. Safe to call from other threads: the
        remote subscribe is then sent from the session's loop.
        """
        first = self.router.listenerCount(topic) == 0
        token = self.router.subscribe(topic, listener)
        if first:
            self._scheduleToggle(SUBSCRIBE_ACTION, topic)
        return token

    def unsubscribe(self, topic: str, listenerOrToken: EventListener | str) -> bool:
        removed = self.router.unsubscribe(topic, listenerOrToken)
        if removed and self.router.listenerCount(topic) == 0:
            self._scheduleToggle(UNSUBSCRIBE_ACTION, topic)
        return removed

    def _onLoopThread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _scheduleToggle(self, action: str, topic: str) -> None:
        """Sends the remote (un)subscribe from the session's loop, whichever thread asked for it."""
        if self._loop is None:
            return # Never opened; the first open() replays every topic
        if self._onLoopThread():
            self._spawnToggle(action, topic)
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._spawnToggle, action, topic)

    def _spawnToggle(self, action: str, topic: str) -> None:
        # Runs on the loop; state and listener count are re-read here
        if not self.isOpen:
            return
        hasListeners = self.router.listenerCount(topic) > 0
        if (action == SUBSCRIBE_ACTION) != hasListeners:
            return
        self._spawn(self._remoteToggle(action, topic), name=f"{action}:{topic}")

    async def subscribeAndConfirm(self, topic: str, listener: EventListener, *, timeoutMs: int | None = None) -> str:
        """
        Like subscribe(), but waits for the runtime to acknowledge a new remote
        subscription. If the runtime refuses, the local registration is rolled back.
        """
        first = self.router.listenerCount(topic) == 0
        token = self.router.subscribe(topic, listener)
        if first and self.isOpen:
            try:
                await self.request(SUBSCRIBE_ACTION, self._topicPayload(topic), timeoutMs=timeoutMs)
            except BaseException:
                self.router.unsubscribe(topic, token)
                raise
        return token

    async def unsubscribeAndConfirm(self, topic: str, listenerOrToken: EventListener | str, *, timeoutMs: int | None = None) -> bool:
        removed = self.router.unsubscribe(topic, listenerOrToken)
        if removed and self.router.listenerCount(topic) == 0 and self.isOpen:
            await self.request(UNSUBSCRIBE_ACTION, self._topicPayload(topic), timeoutMs=timeoutMs)
        return removed

    async def _remoteToggle(self, action: str, topic: str) -> None:
        try:
            await self.request(action, self._topicPayload(topic))
        except BridgeError as err:
            logger.warning("'%s' for topic '%s' failed: %s", action, topic, err.message)
