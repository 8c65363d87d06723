# runtimebridge/core/time.py
from __future__ import annotations
import time

__all__ = ["nowMonotonicMs", "nowMs", "msToSeconds"]



def nowMonotonicMs() -> int:
    """Returns the current monotonic time in milliseconds."""
    return int(time.monotonic() * 1000)



def nowMs() -> int:
    return int(time.time() * 1000)



def msToSeconds(ms: int | float | None) -> float | None:
    if ms is None:
        return None
    return max(0.0, float(ms) / 1000.0)
