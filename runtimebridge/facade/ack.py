# runtimebridge/facade/ack.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable
from collections.abc import Awaitable

from pydantic import BaseModel

from runtimebridge.core.errors import BridgeError
from runtimebridge.core.jsonutils import serializeError
from runtimebridge.facade.models import Ack

logger = logging.getLogger(__name__)

__all__ = ["AckListener", "deliverTo", "ackFromResult", "ackFromError"]



@runtime_checkable
class AckListener(Protocol):
    def onSuccess(self, ack: Ack) -> Any: ...
    def onError(self, ack: Ack) -> Any: ...



def ackFromResult(result: Any) -> Ack:
    if isinstance(result, BaseModel):
        data = result.model_dump(by_alias=True)
    elif isinstance(result, list):
        data = [item.model_dump(by_alias=True) if isinstance(item, BaseModel) else item for item in result]
    else:
        data = result
    return Ack(success=True, data=data)



def ackFromError(err: BaseException) -> Ack:
    """Failed Ack: `reason` is the readable text, `data` the JSON-safe error payload."""
    if isinstance(err, BridgeError):
        reason = getattr(err, "reason", None) or err.message
        data = err.toPayload()
    else:
        reason = f"{type(err).__name__}: {err}"
        data = {"code": "UNEXPECTED_ERROR", "message": str(err), "retryable": False, "err": serializeError(err), "extra": {}}
    return Ack(success=False, data=data, reason=reason, error=err)



async def deliverTo(call: Awaitable[Any], listener: AckListener) -> Ack:
    """
    Awaits `call` and reports its outcome to `listener`: onSuccess on a result,
    onError on any failure. Exactly one of the two runs, exactly once.
    Cancellation of the caller propagates without notifying the listener.

    Returns the Ack that was delivered.
    """
    try:
        result = await call
    except asyncio.CancelledError:
        raise
    except Exception as err:
        ack = ackFromError(err)
        _notify(listener.onError, ack)
        return ack

    ack = ackFromResult(result)
    _notify(listener.onSuccess, ack)
    return ack



def _notify(callback: Any, ack: Ack) -> None:
    # A broken listener must not turn a delivered outcome into a second one
    try:
        callback(ack)
    except Exception:
        logger.exception("AckListener callback %s raised", getattr(callback, "__qualname__", callback))
