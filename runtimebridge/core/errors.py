# runtimebridge/core/errors.py
from __future__ import annotations
from typing import Any

__all__ = [
    "BridgeError", "DecodeError", "NotConnectedError", "CallTimeoutError",
    "DisconnectedError", "RemoteError", "ListenerError", "ConnectFailedError",
    "DuplicateRequestError", "SessionClosedError", "ResponseShapeError",
]



class BridgeError(Exception):
    """
    Base for every error surfaced by the runtime bridge.

    Carries the same fields the runtime uses in its error payloads:
      - code: readable error code ("REQUEST_TIMEOUT", "REMOTE_ERROR", ...)
      - message: human readable text
      - retryable: whether issuing the same call again may succeed
      - extra: free-form details (request id, action, ...)
    """
    code: str = "BRIDGE_ERROR"
    retryable: bool = False

    def __init__(self, message: str = "", *, code: str | None = None, retryable: bool | None = None, extra: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.extra = extra or {}

    def toPayload(self) -> dict[str, Any]:
        from runtimebridge.core.jsonutils import serializeError, tryJSONify
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "err": serializeError(self),
            "extra": tryJSONify(dict(self.extra)),
        }



class DecodeError(BridgeError):
    """Inbound frame could not be decoded. Logged and dropped by the session."""
    code = "DECODE_ERROR"



class NotConnectedError(BridgeError):
    code = "NOT_CONNECTED"



class CallTimeoutError(BridgeError):
    code = "REQUEST_TIMEOUT"
    retryable = True



class DisconnectedError(BridgeError):
    """Connection went away while the call was still waiting for its response."""
    code = "DISCONNECTED"
    retryable = True



class RemoteError(BridgeError):
    """The runtime answered with success=false. `reason` is kept verbatim."""
    code = "REMOTE_ERROR"

    def __init__(self, reason: str, *, extra: dict[str, Any] | None = None) -> None:
        super().__init__(reason, extra=extra)
        self.reason = reason



class ListenerError(BridgeError):
    """A subscriber callback raised. Only ever logged, never propagated."""
    code = "LISTENER_ERROR"



class ConnectFailedError(BridgeError):
    code = "CONNECT_FAILED"
    retryable = True



class DuplicateRequestError(BridgeError):
    code = "DUPLICATE_REQUEST"



class SessionClosedError(BridgeError):
    code = "SESSION_CLOSED"



class ResponseShapeError(BridgeError):
    """The runtime answered successfully, but the data does not look like what the call returns."""
    code = "RESPONSE_SHAPE"
