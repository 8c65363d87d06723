# runtimebridge/rpc/codec.py
from __future__ import annotations
from typing import Any

from pydantic import ValidationError

from runtimebridge.core.errors import DecodeError
from runtimebridge.core.jsonutils import safeJsonDumps, safeJsonLoads
from runtimebridge.rpc.models import EventFrame, Frame, MessageId, RequestEnvelope, ResponseFrame

__all__ = [
    "MESSAGE_ID_FIELD", "encodeRequest", "encodeBytes", "decodeFrame",
    "decodeRequest", "encodeResponse", "encodeEvent",
]

# Presence of this field is what makes a frame a response
MESSAGE_ID_FIELD = "messageId"



def encodeRequest(action: str, payload: dict[str, Any] | None, requestId: MessageId) -> str:
    """Serializes one call to compact JSON text: {"action":..,"messageId":..,"payload":{..}}."""
    envelope = RequestEnvelope(action=action, messageId=requestId, payload=payload or {})
    return safeJsonDumps(envelope.model_dump(mode="json"))



def encodeBytes(action: str, payload: dict[str, Any] | None, requestId: MessageId) -> bytes:
    return encodeRequest(action, payload, requestId).encode("utf-8")



def _loadObject(raw: str | bytes | bytearray) -> dict[str, Any]:
    try:
        obj = safeJsonLoads(raw)
    except (ValueError, RecursionError) as err:
        raise DecodeError(f"Frame is not valid JSON: {err}") from err
    except TypeError as err:
        raise DecodeError(f"Frame must be text or bytes, not {type(raw).__name__}") from err
    if not isinstance(obj, dict):
        raise DecodeError(f"Frame must be a JSON object, not {type(obj).__name__}")
    return obj



def decodeFrame(raw: str | bytes | bytearray) -> Frame:
    """
    Decodes one inbound frame into a ResponseFrame or an EventFrame.

    Discrimination is structural:
      • has "messageId"  → response {messageId, success, data | reason}
      • otherwise        → event {action, payload}; an explicit "topic" names the topic instead of "action"

    Raises DecodeError on anything malformed.
    """
    obj = _loadObject(raw)

    if MESSAGE_ID_FIELD in obj:
        try:
            return ResponseFrame.model_validate(obj)
        except ValidationError as err:
            raise DecodeError(f"Malformed response frame: {err.error_count()} validation error(s)", extra={"errors": err.errors(include_url=False)}) from err

    topic = obj.get("topic", obj.get("action"))
    if not isinstance(topic, str) or not topic:
        raise DecodeError("Event frame has no topic/action")
    payload = obj.get("payload", {})
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise DecodeError(f"Event payload must be an object, not {type(payload).__name__}")
    return EventFrame(topic=topic, data=payload)



# ----------------------------------------------
#     Runtime side (used by the in-process runtime double)
# ----------------------------------------------

def decodeRequest(raw: str | bytes | bytearray) -> RequestEnvelope:
    obj = _loadObject(raw)
    try:
        return RequestEnvelope.model_validate(obj)
    except ValidationError as err:
        raise DecodeError(f"Malformed request frame: {err.error_count()} validation error(s)") from err



def encodeResponse(requestId: MessageId, *, success: bool = True, data: Any = None, reason: str | None = None) -> str:
    frame: dict[str, Any] = {MESSAGE_ID_FIELD: requestId, "success": bool(success)}
    if success:
        frame["data"] = data
    else:
        frame["reason"] = reason or ""
    return safeJsonDumps(frame)



def encodeEvent(topic: str, payload: dict[str, Any] | None = None) -> str:
    return safeJsonDumps({"action": topic, "payload": payload or {}})
