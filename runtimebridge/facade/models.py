# runtimebridge/facade/models.py
from __future__ import annotations
from typing import Any
from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "RuntimeModel",
    "Ack",
    "ProcessInfo",
    "LogInfo",
    "MonitorInfo",
    "WindowInfo",
    "ApplicationInfo",
    "MousePosition",
    "ExternalProcessInfo",
    "ExternalProcessResult",
    "RuntimeInfo",
    "RvmInfo",
]


class RuntimeModel(BaseModel):
    """
    Base for results returned by the runtime.
    Only the fields callers rely on are declared; everything else the
    runtime sends is kept as extra attributes.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)



class Ack(BaseModel):
    """Outcome of one call as handed to an AckListener."""
    success: bool
    data: Any = None
    reason: str | None = None
    error: Any = Field(default=None, exclude=True)  # The BridgeError behind a failed Ack

    def isSuccessful(self) -> bool:
        return self.success



class ProcessInfo(RuntimeModel):
    processId: int
    name: str



class LogInfo(RuntimeModel):
    date: str
    name: str
    size: int



class MonitorInfo(RuntimeModel):
    deviceScaleFactor: float
    primaryMonitor: dict[str, Any]



class WindowInfo(RuntimeModel):
    uuid: str
    mainWindow: dict[str, Any]
    childWindows: list[dict[str, Any]] = Field(default_factory=list)



class ApplicationInfo(RuntimeModel):
    uuid: str
    isRunning: bool



class MousePosition(RuntimeModel):
    left: int
    top: int



class ExternalProcessInfo(RuntimeModel):
    processUuid: str



class ExternalProcessResult(RuntimeModel):
    processUuid: str
    result: int | None = None  # Exit code, when the runtime reports one



class RuntimeInfo(RuntimeModel):
    manifestUrl: str
    port: int
    version: str
    architecture: str | None = None



class RvmInfo(RuntimeModel):
    action: str
    path: str
    startTime: str = Field(alias="start-time")
    version: str | None = None
    workingDir: str | None = Field(default=None, alias="working-dir")
