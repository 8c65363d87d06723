# runtimebridge/config/schema.py
from __future__ import annotations
from typing import Any
from collections.abc import Callable

import fastjsonschema

from .types import ConfigValidationError

__all__ = ["DEFAULT_CONFIG", "CONFIG_SCHEMA", "compileValidator"]



DEFAULT_CONFIG: dict[str, Any] = {
    "connection": {
        "host": "127.0.0.1",
        "port": 9696,
        "path": "",
    },
    "rpc": {
        "defaultTimeoutMs": 5000,
        "handshakeTimeoutMs": 10000,
        "maxFrameChars": 1_000_000,
    },
    "reconnect": {
        "enabled": True,
        "maxRetries": 5,
        "backoffBaseMs": 250,
        "backoffMaxMs": 5000,
    },
    "debug": {
        "devModeEnabled": True,
        "logFile": None,
        "rpc": {
            "incomingFrames": {"log": False, "ignoreActions": []},
            "outgoingFrames": {"log": False, "ignoreActions": []},
            "maxPreviewChars": 4096,
        },
        "suppressRecurringMessages": {
            "enabled": False,
            "windowSeconds": 60,
            "maxPerWindow": 5,
            "summaryLevel": "INFO",
        },
    },
}



_POSITIVE_INT = {"type": "integer", "minimum": 1}
_NON_NEGATIVE_INT = {"type": "integer", "minimum": 0}
_FRAME_LOG = {
    "type": "object",
    "properties": {
        "log": {"type": "boolean"},
        "ignoreActions": {"type": "array", "items": {"type": "string"}},
    },
}

CONFIG_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "connection": {
            "type": "object",
            "properties": {
                "host": {"type": "string", "minLength": 1},
                "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                "path": {"type": "string"},
            },
        },
        "rpc": {
            "type": "object",
            "properties": {
                "defaultTimeoutMs": _POSITIVE_INT,
                "handshakeTimeoutMs": _POSITIVE_INT,
                "maxFrameChars": _POSITIVE_INT,
            },
        },
        "reconnect": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "maxRetries": _NON_NEGATIVE_INT,
                "backoffBaseMs": _NON_NEGATIVE_INT,
                "backoffMaxMs": _NON_NEGATIVE_INT,
            },
        },
        "debug": {
            "type": "object",
            "properties": {
                "devModeEnabled": {"type": "boolean"},
                "logFile": {"type": ["string", "null"]},
                "rpc": {
                    "type": "object",
                    "properties": {
                        "incomingFrames": _FRAME_LOG,
                        "outgoingFrames": _FRAME_LOG,
                        "maxPreviewChars": _POSITIVE_INT,
                    },
                },
                "suppressRecurringMessages": {
                    "type": "object",
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "windowSeconds": _POSITIVE_INT,
                        "maxPerWindow": _POSITIVE_INT,
                        "summaryLevel": {"type": "string"},
                    },
                },
            },
        },
    },
}



def compileValidator(schema: dict[str, Any] | None = None) -> Callable[[Any], None]:
    """
    Compiles the config schema with fastjsonschema and wraps it so callers
    only ever see ConfigValidationError.
    """
    compiled = fastjsonschema.compile(schema if schema is not None else CONFIG_SCHEMA)

    def _validate(doc: Any) -> None:
        try:
            compiled(doc)
        except fastjsonschema.JsonSchemaException as err:
            raise ConfigValidationError(f"Invalid configuration: {err.message}") from err

    return _validate
