# runtimebridge/core/logging/setup.py
from __future__ import annotations
import logging
import logging.handlers

from runtimebridge.config import config, configBool
from .formatters import DevFormatter, JsonFormatter, RedactingFormatter
from .filters import RecurringSuppressFilter

__all__ = ["NO_PROPAGATE", "configureLogging"]



# Chatty third-party loggers
NO_PROPAGATE = ["websockets", "websockets.client", "asyncio"]



def configureLogging(*, devMode: bool | None = None, logFile: str | None = None) -> None:
    """
    Initiate the logging configuration for a host process using the bridge.

    Dev:
      - Console pretty logs (DEBUG)
      - JSON file log (DEBUG) when a log file is configured

    Prod:
      - Console INFO
      - JSON file logs INFO with rotation
      - Secret scrubbing always active
      - Optional recurring suppression (toggle)

    Arguments override the `debug.devModeEnabled` / `debug.logFile` config keys.
    """
    if devMode is None:
        devMode = configBool("debug.devModeEnabled", True)
    if logFile is None:
        logFile = config("debug.logFile", None)
    rootLevel = logging.DEBUG if devMode else logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(rootLevel)

    for name in NO_PROPAGATE:
        logging.getLogger(name).propagate = False

    handlers: list[logging.Handler] = []

    consoleHandler = logging.StreamHandler()
    consoleHandler.setLevel(rootLevel)
    consoleHandler.setFormatter(RedactingFormatter(DevFormatter()))
    handlers.append(consoleHandler)

    if logFile:
        fileHandler = logging.handlers.RotatingFileHandler(
            logFile,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8"
        )
        fileHandler.setLevel(rootLevel)
        fileHandler.setFormatter(RedactingFormatter(JsonFormatter()))
        handlers.append(fileHandler)

    if configBool("debug.suppressRecurringMessages.enabled", False):
        levelName = str(config("debug.suppressRecurringMessages.summaryLevel", "INFO")).upper()
        summaryLevel = getattr(logging, levelName, logging.INFO)
        suppressFilter = RecurringSuppressFilter(
            windowSeconds=int(config("debug.suppressRecurringMessages.windowSeconds", 60)),
            maxPerWindow=int(config("debug.suppressRecurringMessages.maxPerWindow", 5)),
            summaryLevel=summaryLevel,
        )
        for handler in handlers:
            handler.addFilter(suppressFilter)

    for handler in handlers:
        root.addHandler(handler)

    logging.getLogger("websockets").setLevel(logging.WARNING)
