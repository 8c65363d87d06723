# runtimebridge/facade/system.py
from __future__ import annotations

import logging
from typing import Any, TypeVar
from collections.abc import Sequence

from pydantic import TypeAdapter, ValidationError

from runtimebridge.core.errors import ResponseShapeError
from runtimebridge.facade.models import (
    ApplicationInfo, ExternalProcessInfo, ExternalProcessResult, LogInfo,
    MonitorInfo, MousePosition, ProcessInfo, RuntimeInfo, RvmInfo, WindowInfo,
)
from runtimebridge.rpc.router import EventListener
from runtimebridge.rpc.session import RuntimeSession

logger = logging.getLogger(__name__)

__all__ = ["RuntimeSystem", "SYSTEM_EVENT_TYPES"]


SYSTEM_EVENT_TYPES = ("desktop-icon-clicked", "idle-state-changed", "monitor-info-changed", "session-changed")

M = TypeVar("M")

_adapters: dict[Any, TypeAdapter[Any]] = {}



def _adapter(tp: Any) -> TypeAdapter[Any]:
    adapter = _adapters.get(tp)
    if adapter is None:
        adapter = _adapters[tp] = TypeAdapter(tp)
    return adapter



class RuntimeSystem:
    """
    Typed calls on the runtime itself: machine, processes, logs, monitors,
    windows, applications, config, caches, external processes, events.

    Each method is a stateless adapter: build the payload, await the session,
    validate what came back. Call-level failures (RemoteError, CallTimeoutError,
    DisconnectedError, NotConnectedError) propagate unchanged; data that does not
    match the expected shape raises ResponseShapeError.
    """
    def __init__(self, session: RuntimeSession) -> None:
        self.session = session

    async def _call(self, action: str, payload: dict[str, Any] | None = None, *, timeoutMs: int | None = None) -> Any:
        return await self.session.request(action, payload, timeoutMs=timeoutMs)

    def _shape(self, action: str, data: Any, tp: type[M] | Any) -> M:
        try:
            return _adapter(tp).validate_python(data)
        except ValidationError as err:
            logger.warning("'%s' returned data of unexpected shape: %s", action, err.errors(include_url=False))
            raise ResponseShapeError(
                f"Response to '{action}' does not match the expected shape: {err.error_count()} validation error(s)",
                extra={"action": action, "errors": err.errors(include_url=False)},
            ) from err

    # ----- Identity / version -----

    async def getMachineId(self) -> str:
        data = await self._call("get-machine-id")
        return self._shape("get-machine-id", data, str)

    async def getVersion(self) -> str:
        data = await self._call("get-version")
        return self._shape("get-version", data, str)

    async def getRuntimeInfo(self) -> RuntimeInfo:
        data = await self._call("get-runtime-info")
        return self._shape("get-runtime-info", data, RuntimeInfo)

    async def getRvmInfo(self) -> RvmInfo:
        data = await self._call("get-rvm-info")
        return self._shape("get-rvm-info", data, RvmInfo)

    # ----- Enumerations -----

    async def getProcessList(self) -> list[ProcessInfo]:
        data = await self._call("process-snapshot")
        return self._shape("process-snapshot", data, list[ProcessInfo])

    async def getAllWindows(self) -> list[WindowInfo]:
        data = await self._call("get-all-windows")
        return self._shape("get-all-windows", data, list[WindowInfo])

    async def getAllApplications(self) -> list[ApplicationInfo]:
        data = await self._call("get-all-applications")
        return self._shape("get-all-applications", data, list[ApplicationInfo])

    # ----- Logs -----

    async def getLogList(self) -> list[LogInfo]:
        data = await self._call("get-log-list")
        return self._shape("get-log-list", data, list[LogInfo])

    async def log(self, level: str, text: str) -> None:
        """Appends `text` to the runtime's debug.log at `level` ("info", "warning", "error", ...)."""
        if not isinstance(level, str) or not level:
            raise ValueError("level must be a non-empty string")
        await self._call("write-log", {"level": level, "text": str(text)})

    async def getLog(self, name: str, *, timeoutMs: int | None = None) -> str:
        # debug.log can be large, so callers may want a longer bound here
        data = await self._call("get-log", {"name": name}, timeoutMs=timeoutMs)
        return self._shape("get-log", data, str)

    # ----- Display / input -----

    async def getMonitorInfo(self) -> MonitorInfo:
        data = await self._call("get-monitor-info")
        return self._shape("get-monitor-info", data, MonitorInfo)

    async def getMousePosition(self) -> MousePosition:
        data = await self._call("get-mouse-position")
        return self._shape("get-mouse-position", data, MousePosition)

    # ----- Config / tools -----

    async def getConfig(self, section: str | None = None) -> dict[str, Any]:
        data = await self._call("get-config", {"section": section} if section is not None else {})
        return self._shape("get-config", data, dict[str, Any])

    async def showDeveloperTools(self, uuid: str, name: str) -> None:
        await self._call("show-developer-tools", {"uuid": uuid, "name": name})

    # ----- Events -----

    async def addEventListener(self, eventType: str, listener: EventListener, *, timeoutMs: int | None = None) -> str:
        """
        Registers `listener` for runtime-level `eventType`. When the session is
        open, waits until the runtime acknowledges the subscription.
        Returns the registration token.
        """
        if eventType not in SYSTEM_EVENT_TYPES:
            logger.debug("Subscribing to non-standard system event '%s'", eventType)
        return await self.session.subscribeAndConfirm(eventType, listener, timeoutMs=timeoutMs)

    async def removeEventListener(self, eventType: str, listenerOrToken: EventListener | str, *, timeoutMs: int | None = None) -> bool:
        return await self.session.unsubscribeAndConfirm(eventType, listenerOrToken, timeoutMs=timeoutMs)

    # ----- External processes -----

    async def launchExternalProcess(self, path: str, arguments: str = "", *, timeoutMs: int | None = None) -> ExternalProcessInfo:
        data = await self._call("launch-external-process", {"path": path, "arguments": arguments}, timeoutMs=timeoutMs)
        return self._shape("launch-external-process", data, ExternalProcessInfo)

    async def terminateExternalProcess(self, processUuid: str, timeoutMs: int = 2000, killTree: bool = False) -> ExternalProcessResult:
        """
        Asks the runtime to stop the process, waiting up to `timeoutMs` for it to
        exit on its own. The call itself is bounded by timeoutMs plus the session default.
        """
        payload = {"uuid": processUuid, "timeout": int(timeoutMs), "child": bool(killTree)}
        data = await self._call("terminate-external-process", payload, timeoutMs=int(timeoutMs) + self.session.defaultTimeoutMs)
        return self._shape("terminate-external-process", data, ExternalProcessResult)

    # ----- Environment / caches -----

    async def getEnvironmentVariables(self, names: Sequence[str]) -> dict[str, str | None]:
        if isinstance(names, str):
            names = [names]
        names = list(names)
        data = await self._call("get-environment-variable", {"environmentVariables": names})
        result = self._shape("get-environment-variable", data, dict[str, str | None])
        missing = [name for name in names if name not in result]
        if missing:
            raise ResponseShapeError(
                f"Runtime did not report environment variable(s): {', '.join(missing)}",
                extra={"action": "get-environment-variable", "missing": missing},
            )
        return result

    async def deleteCacheOnRestart(self) -> None:
        await self._call("delete-cache-request")

    async def clearCache(self, cache: bool = True, cookies: bool = True, localStorage: bool = True, appcache: bool = True, userData: bool = True) -> None:
        await self._call("clear-cache", {
            "cache": bool(cache),
            "cookies": bool(cookies),
            "localStorage": bool(localStorage),
            "appcache": bool(appcache),
            "userData": bool(userData),
        })

