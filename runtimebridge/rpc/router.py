# runtimebridge/rpc/router.py
from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass
from typing import Any
from collections.abc import Callable

from runtimebridge.core.errors import ListenerError
from runtimebridge.core.ids import uuid_12
from runtimebridge.rpc.models import EventFrame

logger = logging.getLogger(__name__)

__all__ = ["EventListener", "Subscription", "EventRouter"]


# Plain callables or coroutine functions; coroutines run as tasks
EventListener = Callable[[EventFrame], Any]



@dataclass(frozen=True, slots=True)
class Subscription:
    topic: str
    listener: EventListener
    token: str



class EventRouter:
    """
    Topic → ordered listeners.

    Registering the same listener twice for a topic keeps both registrations,
    so the listener is called twice per event. Unsubscribing by listener drops
    every registration of it on that topic; unsubscribing by token drops exactly one.

    Subscriptions are plain state kept here, independent of any transport, so
    they outlive reconnects. Only clear() removes them wholesale.
    """
    def __init__(self, *, onListenerError: Callable[[ListenerError], None] | None = None) -> None:
        self._subs: dict[str, list[Subscription]] = {}
        self._lock = threading.Lock()
        self._onListenerError = onListenerError
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, topic: str, listener: EventListener) -> str:
        if not isinstance(topic, str) or not topic:
            raise ValueError("topic must be a non-empty string")
        if not callable(listener):
            raise TypeError("listener must be callable")
        sub = Subscription(topic=topic, listener=listener, token=uuid_12("sub_"))
        with self._lock:
            self._subs.setdefault(topic, []).append(sub)
        logger.debug("Subscribed %s to '%s' (%s)", getattr(listener, "__qualname__", repr(listener)), topic, sub.token)
        return sub.token

    def unsubscribe(self, topic: str, listenerOrToken: EventListener | str) -> bool:
        """Returns True when something was removed. Repeating the call is a harmless no-op."""
        with self._lock:
            subs = self._subs.get(topic)
            if not subs:
                return False
            if isinstance(listenerOrToken, str):
                kept = [sub for sub in subs if sub.token != listenerOrToken]
            else:
                kept = [sub for sub in subs if sub.listener != listenerOrToken]
            removed = len(subs) - len(kept)
            if kept:
                self._subs[topic] = kept
            else:
                del self._subs[topic]
        if removed:
            logger.debug("Unsubscribed %d listener(s) from '%s'", removed, topic)
        return removed > 0

    def topics(self) -> list[str]:
        with self._lock:
            return list(self._subs.keys())

    def listenerCount(self, topic: str) -> int:
        with self._lock:
            return len(self._subs.get(topic, ()))

    def clear(self) -> None:
        with self._lock:
            self._subs.clear()

    def dispatch(self, frame: EventFrame) -> int:
        """
        Calls every listener registered for frame.topic, in registration order.
        A failing listener is logged and skipped. Returns the number of listeners called.
        """
        with self._lock:
            snapshot = list(self._subs.get(frame.topic, ()))

        for sub in snapshot:
            try:
                result = sub.listener(frame)
                if inspect.isawaitable(result):
                    self._track(sub, result)
            except Exception as err:
                self._reportFailure(sub, err)
        return len(snapshot)

    def _track(self, sub: Subscription, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(done: asyncio.Task[Any]) -> None:
            self._tasks.discard(done)
            if done.cancelled():
                return
            err = done.exception()
            if err is not None:
                self._reportFailure(sub, err)

        task.add_done_callback(_done)

    def _reportFailure(self, sub: Subscription, err: BaseException) -> None:
        listenerErr = ListenerError(
            f"Listener for '{sub.topic}' raised {type(err).__name__}: {err}",
            extra={"topic": sub.topic, "token": sub.token},
        )
        listenerErr.__cause__ = err
        logger.warning("%s", listenerErr.message, exc_info=err)
        if self._onListenerError is not None:
            try:
                self._onListenerError(listenerErr)
            except Exception:
                logger.exception("onListenerError hook failed")
