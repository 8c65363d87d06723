# runtimebridge/core/ids.py
from __future__ import annotations

import itertools
import threading
import uuid

import uuid6

__all__ = ["uuidv7", "uuidv4", "uuid_12", "MessageIdCounter"]



def uuidv7(*, prefix: str = "") -> str:
    """Returns a UUIDv7 string (time-ordered), optionally prefixed."""
    return prefix + str(uuid6.uuid7())



def uuidv4(*, prefix: str = "") -> str:
    """Returns a pure random UUIDv4 string, optionally prefixed."""
    return prefix + str(uuid.uuid4())



def uuid_12(prefix = "") -> str:
    """Returns a short ID with 12 chars from a UUIDv4, optionally prefixed."""
    if not isinstance(prefix, str):
        raise TypeError("prefix must be a str")
    return f"{prefix}{uuid.uuid4().hex[:12]}"



class MessageIdCounter:
    """
    Per-connection request ids. Strictly increasing, never reused while the
    counter lives, safe to call from any thread.
    """
    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)
