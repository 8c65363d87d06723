# tests/runtimebridge/rpc/test_session.py
from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

import pytest
import pytest_asyncio

from runtimebridge.config import getGlobalConfig
from runtimebridge.core.errors import (
    BridgeError, CallTimeoutError, ConnectFailedError, DisconnectedError,
    NotConnectedError, RemoteError, SessionClosedError,
)
from runtimebridge.rpc import session as session_module
from runtimebridge.rpc.models import EventFrame
from runtimebridge.rpc.session import (
    HANDSHAKE_ACTION, SUBSCRIBE_ACTION, UNSUBSCRIBE_ACTION, ConnectionState, RuntimeSession,
)
from runtimebridge.testing import FakeRuntime, Refusal


async def waitFor(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout)


def makeSession(fake: FakeRuntime, **kwargs) -> RuntimeSession:
    options = {"backoffBaseMs": 1, "backoffMaxMs": 5, "maxRetries": 3, "defaultTimeoutMs": 2000}
    options.update(kwargs)
    return RuntimeSession(fake.connect, **options)


@pytest_asyncio.fixture
async def fake():
    runtime = FakeRuntime()
    yield runtime
    await runtime.stop()


@pytest_asyncio.fixture
async def session(fake: FakeRuntime):
    sess = makeSession(fake)
    yield sess
    await sess.close()


def recordStates(sess: RuntimeSession) -> list[tuple[ConnectionState, ConnectionState]]:
    seen: list[tuple[ConnectionState, ConnectionState]] = []
    sess.onStateChange(lambda old, new: seen.append((old, new)))
    return seen


# ----------------------------
# Open / handshake
# ----------------------------

@pytest.mark.asyncio
async def test_open_authorizesWithCallerUuid(fake: FakeRuntime, session: RuntimeSession) -> None:
    states = recordStates(session)
    await session.open()

    assert session.state is ConnectionState.OPEN
    assert session.isOpen
    assert states == [
        (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
        (ConnectionState.CONNECTING, ConnectionState.OPEN),
    ]
    handshake = fake.requests[0]
    assert handshake.action == HANDSHAKE_ACTION
    assert handshake.payload == {"uuid": session.callerUuid, "type": "external-connection"}
    assert session.connectCount == 1


@pytest.mark.asyncio
async def test_open_isIdempotentWhenOpen(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    await session.open()
    assert fake.connectCount == 1


@pytest.mark.asyncio
async def test_open_adoptsRuntimeAssignedUuid() -> None:
    fake = FakeRuntime(assignUuid="granted-uuid")
    sess = makeSession(fake, callerUuid="requested-uuid")
    try:
        await sess.open()
        assert sess.callerUuid == "granted-uuid"
    finally:
        await sess.close()
        await fake.stop()


@pytest.mark.asyncio
async def test_open_connectFailure_returnsToDisconnected(fake: FakeRuntime, session: RuntimeSession) -> None:
    fake.failConnects = 1
    with pytest.raises(ConnectFailedError) as excInfo:
        await session.open()
    assert isinstance(excInfo.value.__cause__, ConnectionRefusedError)
    assert session.state is ConnectionState.DISCONNECTED

    await session.open()
    assert session.isOpen


@pytest.mark.asyncio
async def test_open_refusedHandshake_raisesConnectFailed(fake: FakeRuntime, session: RuntimeSession) -> None:
    def refuse(payload: dict) -> None:
        raise Refusal("Connection not authorized")

    fake.on(HANDSHAKE_ACTION, refuse)
    with pytest.raises(ConnectFailedError) as excInfo:
        await session.open()
    assert isinstance(excInfo.value.__cause__, RemoteError)
    assert session.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_open_handshakeTimeout(fake: FakeRuntime) -> None:
    fake.mute(HANDSHAKE_ACTION)
    sess = makeSession(fake, handshakeTimeoutMs=30)
    with pytest.raises(ConnectFailedError) as excInfo:
        await sess.open()
    assert isinstance(excInfo.value.__cause__, CallTimeoutError)
    await sess.close()


@pytest.mark.asyncio
async def test_asyncContextManager_opensAndCloses(fake: FakeRuntime) -> None:
    async with makeSession(fake) as sess:
        assert sess.isOpen
        assert await sess.request("get-version") == fake.version
    assert sess.state is ConnectionState.CLOSED


# ----------------------------
# Calls
# ----------------------------

@pytest.mark.asyncio
async def test_send_beforeOpen_raisesNotConnected(session: RuntimeSession) -> None:
    with pytest.raises(NotConnectedError):
        session.send("get-version")


@pytest.mark.asyncio
async def test_request_roundTrip(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    assert await session.request("get-machine-id") == fake.machineId
    last = fake.requests[-1]
    assert last.action == "get-machine-id"
    assert isinstance(last.messageId, int)


@pytest.mark.asyncio
async def test_requestIds_areUniqueAcrossCalls(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    results = await asyncio.gather(*(session.request("get-version") for _ in range(20)))
    assert results == [fake.version] * 20
    ids = [req.messageId for req in fake.requests]
    assert len(ids) == len(set(ids))


@pytest.mark.asyncio
async def test_remoteFailure_surfacesReasonVerbatim(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    with pytest.raises(RemoteError) as excInfo:
        await session.request("get-log", {"name": "missing.log"})
    assert excInfo.value.reason == "Log file not found: missing.log"


@pytest.mark.asyncio
async def test_remoteFailure_nonStringReasonStillSettlesCall(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    fake.mute("get-log-list")
    pending = session.send("get-log-list", timeoutMs=2000)
    await waitFor(lambda: fake.actions()[-1:] == ["get-log-list"])

    await fake.sendRaw(json.dumps({"messageId": fake.requests[-1].messageId, "success": False, "reason": {"code": 13}}))
    with pytest.raises(RemoteError) as excInfo:
        await asyncio.wait_for(pending, 1)
    assert excInfo.value.reason == '{"code":13}'


@pytest.mark.asyncio
async def test_unknownAction_isRemoteError(session: RuntimeSession) -> None:
    await session.open()
    with pytest.raises(RemoteError):
        await session.request("no-such-action")


@pytest.mark.asyncio
async def test_timeout_thenLateResponseIsIgnored(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    fake.mute("get-log-list")

    with pytest.raises(CallTimeoutError):
        await session.request("get-log-list", timeoutMs=30)
    lateId = fake.requests[-1].messageId
    assert len(session.correlation) == 0

    await fake.reply(lateId, data=["late"])
    fake.unmute("get-log-list")
    data = await session.request("get-log-list")
    assert data[0]["name"] == "debug.log"
    assert session.isOpen


@pytest.mark.asyncio
async def test_cancelledCall_isWithdrawn(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    fake.mute("get-config")
    future = session.send("get-config")
    await waitFor(lambda: fake.actions()[-1:] == ["get-config"])

    future.cancel()
    await asyncio.sleep(0)
    assert len(session.correlation) == 0
    await fake.reply(fake.requests[-1].messageId, data={})
    assert session.isOpen


@pytest.mark.asyncio
async def test_submitThreadsafe_fromWorkerThread(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    result = await asyncio.to_thread(lambda: session.submitThreadsafe("get-version").result(timeout=2))
    assert result == fake.version


@pytest.mark.asyncio
async def test_subscribe_fromWorkerThread_reachesRuntime(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    received: list[EventFrame] = []

    token = await asyncio.to_thread(session.subscribe, "idle-state-changed", received.append)
    await waitFor(lambda: "idle-state-changed" in fake.subscribedTopics)
    await fake.emit("idle-state-changed", {"isIdle": True})
    await waitFor(lambda: len(received) == 1)

    assert await asyncio.to_thread(session.unsubscribe, "idle-state-changed", token) is True
    await waitFor(lambda: "idle-state-changed" not in fake.subscribedTopics)
    assert fake.actions()[-1] == UNSUBSCRIBE_ACTION
    assert session.router.listenerCount("idle-state-changed") == 0


@pytest.mark.asyncio
async def test_subscribe_fromWorkerThreadBeforeOpen_isReplayed(fake: FakeRuntime, session: RuntimeSession) -> None:
    await asyncio.to_thread(session.subscribe, "session-changed", lambda frame: None)
    assert fake.requests == []
    await session.open()
    assert fake.subscribedTopics == {"session-changed"}


def test_submitThreadsafe_beforeOpen_raises() -> None:
    sess = RuntimeSession(FakeRuntime().connect)
    with pytest.raises(NotConnectedError):
        sess.submitThreadsafe("get-version")


# ----------------------------
# Inbound frame handling
# ----------------------------

@pytest.mark.asyncio
async def test_malformedFrame_isDroppedAndSessionSurvives(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    await fake.sendRaw("definitely not json")
    await fake.sendRaw('{"messageId":1.5,"success":true}')
    await fake.sendRaw("[]")
    assert await session.request("get-version") == fake.version
    assert session.isOpen


@pytest.mark.asyncio
async def test_oversizedFrame_isDropped(fake: FakeRuntime) -> None:
    getGlobalConfig().set("rpc.maxFrameChars", 300)
    sess = makeSession(fake)
    received: list[EventFrame] = []
    sess.subscribe("session-changed", received.append)
    try:
        await sess.open()
        await fake.emit("session-changed", {"blob": "x" * 1000})
        await fake.emit("session-changed", {"reason": "lock"})
        await waitFor(lambda: len(received) == 1)
        assert received[0].data == {"reason": "lock"}
    finally:
        await sess.close()


# ----------------------------
# Events and subscriptions
# ----------------------------

@pytest.mark.asyncio
async def test_subscribe_whileDisconnected_takesEffectOnOpen(fake: FakeRuntime, session: RuntimeSession) -> None:
    received: list[EventFrame] = []
    session.subscribe("monitor-info-changed", received.append)
    assert fake.requests == []

    await session.open()
    assert "monitor-info-changed" in fake.subscribedTopics
    assert fake.actions() == [HANDSHAKE_ACTION, SUBSCRIBE_ACTION]

    await fake.emit("monitor-info-changed", {"deviceScaleFactor": 2})
    await waitFor(lambda: len(received) == 1)
    assert received[0].data == {"deviceScaleFactor": 2}


@pytest.mark.asyncio
async def test_subscribe_duringReplay_isSentBeforeOpen(fake: FakeRuntime, session: RuntimeSession) -> None:
    entered = asyncio.Event()
    release = asyncio.Event()

    async def slowSubscribe(payload: dict) -> None:
        if payload["topic"] == "desktop-icon-clicked":
            entered.set()
            await release.wait()
        fake.subscribedTopics.add(payload["topic"])

    fake.on(SUBSCRIBE_ACTION, slowSubscribe)
    session.subscribe("desktop-icon-clicked", lambda frame: None)
    opening = asyncio.create_task(session.open())
    await asyncio.wait_for(entered.wait(), 2)

    received: list[EventFrame] = []
    session.subscribe("session-changed", received.append)
    assert session.state is ConnectionState.CONNECTING
    release.set()
    await opening

    assert session.isOpen
    assert fake.subscribedTopics == {"desktop-icon-clicked", "session-changed"}
    await fake.emit("session-changed", {"reason": "lock"})
    await waitFor(lambda: len(received) == 1)


@pytest.mark.asyncio
async def test_unsubscribe_duringReplay_isSentBeforeOpen(fake: FakeRuntime, session: RuntimeSession) -> None:
    entered = asyncio.Event()
    release = asyncio.Event()

    async def slowSubscribe(payload: dict) -> None:
        if payload["topic"] == "session-changed":
            entered.set()
            await release.wait()
        fake.subscribedTopics.add(payload["topic"])

    fake.on(SUBSCRIBE_ACTION, slowSubscribe)
    token = session.subscribe("idle-state-changed", lambda frame: None)
    session.subscribe("session-changed", lambda frame: None)
    opening = asyncio.create_task(session.open())
    await asyncio.wait_for(entered.wait(), 2)

    assert session.unsubscribe("idle-state-changed", token) is True
    release.set()
    await opening

    assert session.isOpen
    assert fake.subscribedTopics == {"session-changed"}
    assert fake.actions() == [HANDSHAKE_ACTION, SUBSCRIBE_ACTION, SUBSCRIBE_ACTION, UNSUBSCRIBE_ACTION]


@pytest.mark.asyncio
async def test_subscribe_whileOpen_sendsRemoteSubscribeOnceForTopic(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    session.subscribe("idle-state-changed", lambda frame: None)
    session.subscribe("idle-state-changed", lambda frame: None)
    await waitFor(lambda: "idle-state-changed" in fake.subscribedTopics)
    await asyncio.sleep(0.02)
    assert fake.actions().count(SUBSCRIBE_ACTION) == 1
    assert fake.requests[-1].payload == {"topic": "idle-state-changed", "uuid": session.callerUuid}


@pytest.mark.asyncio
async def test_unsubscribeLastListener_sendsRemoteUnsubscribe(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()

    def listener(frame: EventFrame) -> None:
        pass

    await session.subscribeAndConfirm("session-changed", listener)
    assert "session-changed" in fake.subscribedTopics

    assert await session.unsubscribeAndConfirm("session-changed", listener) is True
    assert "session-changed" not in fake.subscribedTopics
    assert fake.actions()[-1] == UNSUBSCRIBE_ACTION

    # Second removal is a harmless no-op that sends nothing
    assert await session.unsubscribeAndConfirm("session-changed", listener) is False
    assert session.unsubscribe("session-changed", listener) is False
    assert fake.actions().count(UNSUBSCRIBE_ACTION) == 1


@pytest.mark.asyncio
async def test_subscribeAndConfirm_refused_rollsBackLocalRegistration(fake: FakeRuntime, session: RuntimeSession) -> None:
    def refuse(payload: dict) -> None:
        raise Refusal(f"Unknown event type: {payload['topic']}")

    await session.open()
    fake.on(SUBSCRIBE_ACTION, refuse)
    with pytest.raises(RemoteError) as excInfo:
        await session.subscribeAndConfirm("bogus-event", lambda frame: None)
    assert excInfo.value.reason == "Unknown event type: bogus-event"
    assert session.router.listenerCount("bogus-event") == 0


@pytest.mark.asyncio
async def test_failingListener_doesNotBreakSession(fake: FakeRuntime, session: RuntimeSession) -> None:
    received: list[dict] = []

    def broken(frame: EventFrame) -> None:
        raise RuntimeError("listener bug")

    session.subscribe("session-changed", broken)
    session.subscribe("session-changed", lambda frame: received.append(frame.data))
    await session.open()

    await fake.emit("session-changed", {"reason": "lock"})
    await waitFor(lambda: received == [{"reason": "lock"}])
    assert await session.request("get-version") == fake.version


# ----------------------------
# Disconnect / reconnect
# ----------------------------

@pytest.mark.asyncio
async def test_drop_drainsPendingCallsWithDisconnected(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    fake.mute("get-log")
    pending = [session.send("get-log", {"name": "debug.log"}) for _ in range(3)]
    await waitFor(lambda: fake.actions().count("get-log") == 3)

    await fake.drop()
    for future in pending:
        with pytest.raises(DisconnectedError):
            await future
    assert len(session.correlation) == 0


@pytest.mark.asyncio
async def test_reconnect_preservesUuidAndReplaysSubscriptions(fake: FakeRuntime, session: RuntimeSession) -> None:
    states = recordStates(session)
    received: list[EventFrame] = []
    session.subscribe("desktop-icon-clicked", received.append)
    await session.open()
    firstUuid = session.callerUuid

    await fake.drop()
    await waitFor(lambda: session.isOpen and fake.connectCount == 2)

    assert (ConnectionState.OPEN, ConnectionState.RECONNECTING) in states
    assert states[-1] == (ConnectionState.RECONNECTING, ConnectionState.OPEN)
    assert session.callerUuid == firstUuid
    assert fake.authorizedUuids == [firstUuid, firstUuid]
    # The runtime forgot the subscription with the old connection; the session re-established it
    assert "desktop-icon-clicked" in fake.subscribedTopics

    await fake.emit("desktop-icon-clicked", {"mouse": {"left": 1, "top": 2}})
    await waitFor(lambda: len(received) == 1)
    assert session.connectCount == 2


@pytest.mark.asyncio
async def test_reconnect_afterAdoptedUuid_reusesIt() -> None:
    fake = FakeRuntime(assignUuid="granted-uuid")
    sess = makeSession(fake)
    try:
        await sess.open()
        await fake.drop()
        await waitFor(lambda: sess.isOpen and fake.connectCount == 2)
        assert fake.requests[-1].action == HANDSHAKE_ACTION
        assert fake.requests[-1].payload["uuid"] == "granted-uuid"
    finally:
        await sess.close()
        await fake.stop()


@pytest.mark.asyncio
async def test_send_whileReconnecting_raisesNotConnected(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    fake.failConnects = 1
    await fake.drop()
    await waitFor(lambda: session.state is ConnectionState.RECONNECTING)
    with pytest.raises(NotConnectedError):
        session.send("get-version")
    await waitFor(lambda: session.isOpen)


@pytest.mark.asyncio
async def test_reconnect_survivesTransientFailures(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    fake.failConnects = 2
    await fake.drop()
    await waitFor(lambda: session.isOpen and fake.connectCount == 2)
    assert await session.request("get-version") == fake.version


@pytest.mark.asyncio
async def test_reconnect_exhausted_endsClosedAndNotifies(fake: FakeRuntime) -> None:
    sess = makeSession(fake, maxRetries=2)
    states = recordStates(sess)
    sess.subscribe("session-changed", lambda frame: None)
    await sess.open()

    fake.failConnects = 10
    await fake.drop()
    await waitFor(lambda: sess.state is ConnectionState.CLOSED)

    assert states[-1] == (ConnectionState.RECONNECTING, ConnectionState.CLOSED)
    assert fake.failConnects == 8
    assert sess.router.topics() == []
    with pytest.raises(NotConnectedError):
        sess.send("get-version")
    with pytest.raises(SessionClosedError):
        await sess.open()


@pytest.mark.asyncio
async def test_reconnectDisabled_dropEndsClosed(fake: FakeRuntime) -> None:
    sess = makeSession(fake, reconnect=False)
    states = recordStates(sess)
    await sess.open()
    await fake.drop()
    await waitFor(lambda: sess.state is ConnectionState.CLOSED)
    assert states[-1] == (ConnectionState.OPEN, ConnectionState.CLOSED)
    assert fake.connectCount == 1


# ----------------------------
# Close
# ----------------------------

@pytest.mark.asyncio
async def test_close_drainsPendingAndIsTerminal(fake: FakeRuntime, session: RuntimeSession) -> None:
    await session.open()
    fake.mute("get-all-windows")
    future = session.send("get-all-windows")

    await session.close()
    with pytest.raises(DisconnectedError):
        await future
    assert session.state is ConnectionState.CLOSED
    await session.close()

    with pytest.raises(SessionClosedError):
        await session.open()
    assert isinstance(SessionClosedError("x"), BridgeError)


@pytest.mark.asyncio
async def test_close_whileReconnecting_stopsReconnectLoop(fake: FakeRuntime) -> None:
    sess = makeSession(fake, backoffBaseMs=200, backoffMaxMs=200)
    await sess.open()
    await fake.drop()
    await waitFor(lambda: sess.state is ConnectionState.RECONNECTING)

    await sess.close()
    await asyncio.sleep(0.3)
    assert sess.state is ConnectionState.CLOSED
    assert fake.connectCount == 1


@pytest.mark.asyncio
async def test_stateListener_canUnsubscribe(fake: FakeRuntime, session: RuntimeSession) -> None:
    seen: list[ConnectionState] = []
    unsub = session.onStateChange(lambda old, new: seen.append(new))
    unsub()
    unsub()
    await session.open()
    assert seen == []


def test_backoff_isExponentialAndCapped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(session_module.random, "uniform", lambda _min, _max: 0)
    sess = RuntimeSession(FakeRuntime().connect, backoffBaseMs=100, backoffMaxMs=500)
    assert [sess._backoffSeconds(n) for n in range(5)] == [
        pytest.approx(0.1), pytest.approx(0.2), pytest.approx(0.4), pytest.approx(0.5), pytest.approx(0.5),
    ]


def test_backoff_jitterStaysWithinQuarter(monkeypatch: pytest.MonkeyPatch) -> None:
    bounds: list[tuple[float, float]] = []

    def fakeUniform(low: float, high: float) -> float:
        bounds.append((low, high))
        return high

    monkeypatch.setattr(session_module.random, "uniform", fakeUniform)
    sess = RuntimeSession(FakeRuntime().connect, backoffBaseMs=200, backoffMaxMs=5000)
    assert sess._backoffSeconds(0) == pytest.approx(0.25)
    assert bounds == [(-50.0, 50.0)]


def test_sessionDefaults_comeFromConfig() -> None:
    getGlobalConfig().set("rpc.defaultTimeoutMs", 1234)
    getGlobalConfig().set("reconnect.enabled", False)
    sess = RuntimeSession(FakeRuntime().connect)
    assert sess.defaultTimeoutMs == 1234
    assert sess.reconnect is False
    assert sess.maxRetries == 5
    assert sess.state is ConnectionState.DISCONNECTED
