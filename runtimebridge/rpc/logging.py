# runtimebridge/rpc/logging.py
from __future__ import annotations
import logging
from typing import Any, Literal
from collections.abc import Mapping

from runtimebridge.config import config
from runtimebridge.core.redaction import redactText

logger = logging.getLogger(__name__)

__all__ = ["shouldLogFrame", "decideAndLog"]



def _shorten(text: str, *, maxLen: int) -> str:
    text = redactText(text)
    return (text[:maxLen] + "…") if (maxLen and len(text) > maxLen) else text



def _frameLogCfg(direction: Literal["incoming", "outgoing"]) -> Mapping[str, Any]:
    side = config("debug.rpc", {})
    if not isinstance(side, dict):
        return {"log": False}
    cfg = side.get("incomingFrames") if direction == "incoming" else side.get("outgoingFrames")
    return cfg if isinstance(cfg, dict) else {"log": False}



def shouldLogFrame(action: str | None, cfg: Mapping[str, Any]) -> bool:
    if not (isinstance(cfg, Mapping) and cfg.get("log", False)):
        return False
    ignoreActions = cfg.get("ignoreActions")
    if isinstance(ignoreActions, list) and action and action in ignoreActions:
        return False
    return True



def decideAndLog(
    direction: Literal["incoming", "outgoing"],
    *,
    action: str | None = None,
    text: str | None = None,
    bytesLen: int | None = None,
) -> None:
    """Debug-level trace of one wire frame, gated by debug.rpc.<direction>Frames."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    cfg = _frameLogCfg(direction)
    if not shouldLogFrame(action, cfg):
        return

    maxChars = int(config("rpc.maxFrameChars", 1_000_000))
    if text is not None and len(text) > maxChars:
        logger.debug("[RPC] %s: <%d chars, suppressed>", direction, len(text))
        return
    if bytesLen is not None:
        logger.debug("[RPC] %s: <%d bytes>", direction, bytesLen)
        return
    if text is not None:
        preview = int(config("debug.rpc.maxPreviewChars", 4096))
        logger.debug("[RPC] %s: %s", direction, _shorten(text, maxLen=preview))
