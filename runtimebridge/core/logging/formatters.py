# runtimebridge/core/logging/formatters.py
from __future__ import annotations

import logging
from typing import Any

from runtimebridge.core.errors import BridgeError
from runtimebridge.core.jsonutils import safeJsonDumps, serializeError
from runtimebridge.core.redaction import redactText
from .context import getLogContext

__all__ = ["CORRELATION_KEYS", "RedactingFormatter", "JsonFormatter", "DevFormatter", "contextTag"]


# Log-context keys that identify one call or event across records
CORRELATION_KEYS = ("callerUuid", "messageId", "action", "topic")



class RedactingFormatter(logging.Formatter):
    """Formats through `inner`, then scrubs secrets from the rendered line."""
    def __init__(self, inner: logging.Formatter):
        super().__init__()
        self._inner = inner

    def format(self, record: logging.LogRecord) -> str:
        rendered = self._inner.format(record)
        try:
            return redactText(rendered)
        except Exception:
            # Never crash logging due to redaction failure
            return rendered



class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, for the rotating log file.

    Correlation keys from the log context sit at the top level so one call
    can be followed with a plain grep; any other context goes under "ctx".
    A BridgeError attached to the record is written as its error payload.
    """
    def format(self, record: logging.LogRecord) -> str:
        ctx = dict(getLogContext() or {})
        entry: dict[str, Any] = {
            "ts": int(record.created * 1000),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CORRELATION_KEYS:
            value = ctx.pop(key, None)
            if value is not None:
                entry[key] = value
        if ctx:
            entry["ctx"] = ctx
        entry["thread"] = record.threadName

        if record.exc_info and record.exc_info[1] is not None:
            entry["exc"] = self._describeException(record)

        return safeJsonDumps(entry)

    def _describeException(self, record: logging.LogRecord) -> dict[str, Any]:
        err = record.exc_info[1]
        try:
            stack = self.formatException(record.exc_info)
        except Exception:
            stack = None
        if isinstance(err, BridgeError):
            payload = err.toPayload()
            return {
                "type": type(err).__name__,
                "code": payload["code"],
                "message": payload["message"],
                "retryable": payload["retryable"],
                "extra": payload["extra"],
                "stack": stack,
            }
        described = serializeError(err)
        described["stack"] = stack
        return described



class DevFormatter(logging.Formatter):
    """
    Console formatter:

        12:00:01.250 WARNING  runtimebridge.rpc.session: Dropping undecodable frame  (3f2a9c1e #12 get-log)
    """
    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record, '%H:%M:%S')}.{int(record.msecs):03d} {record.levelname:<8} {record.name}: {record.getMessage()}"
        tag = contextTag(getLogContext() or {})
        if tag:
            line += f"  ({tag})"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        if record.stack_info:
            line += "\n" + self.formatStack(record.stack_info)
        return line



def contextTag(ctx: dict[str, Any]) -> str:
    """Short `uuid8 #messageId action @topic` tag; missing keys are left out."""
    parts: list[str] = []
    callerUuid = ctx.get("callerUuid")
    if callerUuid:
        parts.append(str(callerUuid)[:8])
    if ctx.get("messageId") is not None:
        parts.append(f"#{ctx['messageId']}")
    if ctx.get("action"):
        parts.append(str(ctx["action"]))
    if ctx.get("topic"):
        parts.append(f"@{ctx['topic']}")
    return " ".join(parts)
