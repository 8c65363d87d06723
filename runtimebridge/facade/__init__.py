# runtimebridge/facade/__init__.py
from __future__ import annotations

from .ack import AckListener, deliverTo
from .models import (
    Ack, ApplicationInfo, ExternalProcessInfo, ExternalProcessResult, LogInfo,
    MonitorInfo, MousePosition, ProcessInfo, RuntimeInfo, RvmInfo, WindowInfo,
)
from .system import SYSTEM_EVENT_TYPES, RuntimeSystem

__all__ = [
    "AckListener",
    "deliverTo",
    "Ack",
    "ApplicationInfo",
    "ExternalProcessInfo",
    "ExternalProcessResult",
    "LogInfo",
    "MonitorInfo",
    "MousePosition",
    "ProcessInfo",
    "RuntimeInfo",
    "RvmInfo",
    "WindowInfo",
    "SYSTEM_EVENT_TYPES",
    "RuntimeSystem",
]
