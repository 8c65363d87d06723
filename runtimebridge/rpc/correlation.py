# runtimebridge/rpc/correlation.py
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from functools import partial
from typing import Any

from runtimebridge.core.errors import (
    CallTimeoutError, DisconnectedError, DuplicateRequestError, RemoteError,
)
from runtimebridge.core.time import nowMonotonicMs
from runtimebridge.rpc.models import MessageId, ResponseFrame

logger = logging.getLogger(__name__)

__all__ = ["PendingCall", "CorrelationTable"]



@dataclass(slots=True)
class PendingCall:
    requestId: MessageId
    action: str
    future: asyncio.Future[Any]
    createdAtMs: int
    deadlineMs: int | None = None
    timer: asyncio.TimerHandle | None = None



class CorrelationTable:
    """
    Pending calls of one connection, keyed by request id.

    Every PendingCall is settled exactly once, by whichever of resolve(),
    expire(), cancel(), fail() or drainAll() removes it from the table first.
    The loser finds nothing and returns False.
    """
    def __init__(self) -> None:
        self._pending: dict[MessageId, PendingCall] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, requestId: object) -> bool:
        return requestId in self._pending

    def pendingIds(self) -> list[MessageId]:
        with self._lock:
            return list(self._pending.keys())

    # ----- Registration -----

    def register(self, requestId: MessageId, *, action: str = "", timeoutMs: int | None = None) -> asyncio.Future[Any]:
        """
        Creates the completion future for `requestId` and arms its timeout.
        Must be called from the event loop that will await the future.
        """
        loop = asyncio.get_running_loop()
        createdAtMs = nowMonotonicMs()
        with self._lock:
            if requestId in self._pending:
                raise DuplicateRequestError(
                    f"Request id {requestId!r} is already awaiting a response",
                    extra={"requestId": requestId, "action": action},
                )
            future: asyncio.Future[Any] = loop.create_future()
            entry = PendingCall(requestId=requestId, action=action, future=future, createdAtMs=createdAtMs)
            if timeoutMs is not None and timeoutMs > 0:
                entry.deadlineMs = createdAtMs + int(timeoutMs)
                entry.timer = loop.call_later(timeoutMs / 1000.0, self.expire, requestId)
            self._pending[requestId] = entry

        # Caller-side cancellation removes the entry like an expiry would
        future.add_done_callback(partial(self._onFutureDone, requestId))
        return future

    def _pop(self, requestId: MessageId) -> PendingCall | None:
        with self._lock:
            entry = self._pending.pop(requestId, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def _onFutureDone(self, requestId: MessageId, future: asyncio.Future[Any]) -> None:
        if not future.cancelled():
            return
        with self._lock:
            entry = self._pending.get(requestId)
            if entry is None or entry.future is not future:
                return
            del self._pending[requestId]
        if entry.timer is not None:
            entry.timer.cancel()
        logger.debug("Call '%s' (messageId=%r) cancelled by caller", entry.action, requestId)

    # ----- Terminal outcomes -----

    def resolve(self, requestId: MessageId, frame: ResponseFrame) -> bool:
        """
        Fulfils the call matching `requestId` with the frame's data, or with a
        RemoteError carrying the frame's reason verbatim. Unknown ids (late,
        duplicate or foreign replies) are dropped.
        """
        entry = self._pop(requestId)
        if entry is None:
            logger.debug("Dropping response for unknown messageId=%r (late, duplicate or foreign)", requestId)
            return False
        if entry.future.done():
            return False

        if frame.success:
            entry.future.set_result(frame.data)
        else:
            reason = frame.reason if frame.reason is not None else ""
            entry.future.set_exception(RemoteError(reason, extra={"requestId": requestId, "action": entry.action}))
        return True

    def expire(self, requestId: MessageId) -> bool:
        entry = self._pop(requestId)
        if entry is None:
            return False
        elapsedMs = nowMonotonicMs() - entry.createdAtMs
        logger.warning("Call '%s' (messageId=%r) timed out after %d ms", entry.action, requestId, elapsedMs)
        return self._settleError(entry, CallTimeoutError(
            f"No response to '{entry.action}' within {elapsedMs} ms",
            extra={"requestId": requestId, "action": entry.action, "elapsedMs": elapsedMs},
        ))

    def cancel(self, requestId: MessageId) -> bool:
        """Removes a still-pending call without delivering anything. No-op once settled."""
        entry = self._pop(requestId)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.cancel()
        return True

    def fail(self, requestId: MessageId, error: BaseException) -> bool:
        entry = self._pop(requestId)
        if entry is None:
            return False
        return self._settleError(entry, error)

    def drainAll(self, reason: str) -> int:
        """
        Fails every pending call with DisconnectedError and empties the table
        before returning. Returns how many calls were drained.
        """
        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()

        for entry in entries:
            if entry.timer is not None:
                entry.timer.cancel()
            self._settleError(entry, DisconnectedError(
                f"Connection {reason} while '{entry.action}' was waiting for a response",
                extra={"requestId": entry.requestId, "action": entry.action, "reason": reason},
            ))
        if entries:
            logger.info("Drained %d pending call(s): %s", len(entries), reason)
        return len(entries)

    def _settleError(self, entry: PendingCall, error: BaseException) -> bool:
        if entry.future.done():
            return False
        entry.future.set_exception(error)
        return True
