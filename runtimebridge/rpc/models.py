# runtimebridge/rpc/models.py
from __future__ import annotations
from typing import Any, ClassVar
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, model_validator

from runtimebridge.core.jsonutils import safeJsonDumps
from runtimebridge.core.time import nowMonotonicMs

__all__ = ["MessageId", "RequestEnvelope", "ResponseFrame", "EventFrame", "Frame"]


MessageId = StrictInt | StrictStr



class RequestEnvelope(BaseModel):
    """Outgoing call as it goes on the wire: {action, messageId, payload}."""
    model_config = ConfigDict(extra="forbid")

    action: str = Field(min_length=1)   # Remote operation name, e.g. "get-machine-id"
    messageId: MessageId                # Unique among the connection's pending calls
    payload: dict[str, Any] = Field(default_factory=dict)
    createdAt: int = Field(default_factory=nowMonotonicMs, exclude=True) # Local only, never sent



class ResponseFrame(BaseModel):
    """Reply to exactly one RequestEnvelope, matched by messageId."""
    model_config = ConfigDict(extra="allow")

    kind: ClassVar[str] = "response"
    messageId: MessageId
    success: StrictBool
    data: Any = None
    reason: str | None = None

    # --------------
    #   Validators
    # --------------
    @model_validator(mode="before")
    @classmethod
    def textifyReason(cls, values: Any) -> Any:
        # Non-string reasons are kept as their JSON text
        if isinstance(values, dict):
            reason = values.get("reason")
            if reason is not None and not isinstance(reason, str):
                values = {**values, "reason": safeJsonDumps(reason)}
        return values



class EventFrame(BaseModel):
    """Server-initiated push. Carries no messageId and fans out by topic."""
    model_config = ConfigDict(extra="forbid")

    kind: ClassVar[str] = "event"
    topic: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)



Frame = ResponseFrame | EventFrame
