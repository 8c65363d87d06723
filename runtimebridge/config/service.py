# runtimebridge/config/service.py
from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Any

from runtimebridge.core.dictpath import getByPath
from .providers import DefaultsProvider, FileProvider, OverrideProvider
from .schema import DEFAULT_CONFIG, compileValidator
from .store import ConfigStore

logger = logging.getLogger(__name__)

__all__ = [
    "CONFIG_PATH_ENV", "initConfig", "resetConfig", "getGlobalConfig",
    "config", "configBool",
]

# Points at a JSON5 user config file layered over the shipped defaults
CONFIG_PATH_ENV = "RUNTIMEBRIDGE_CONFIG"

# ------------------------------------------------------------------ #
# Module singleton
# ------------------------------------------------------------------ #

_GLOBAL_STORE: ConfigStore | None = None



def initConfig(path: str | Path | None = None) -> ConfigStore:
    """
    Initialize the global config store (idempotent).

    Layers, bottom to top: shipped defaults, user file (explicit `path`, or
    $RUNTIMEBRIDGE_CONFIG when set), runtime overrides.
    """
    global _GLOBAL_STORE
    if _GLOBAL_STORE is not None:
        return _GLOBAL_STORE

    providers = [DefaultsProvider(data=DEFAULT_CONFIG)]
    userPath = path if path is not None else os.environ.get(CONFIG_PATH_ENV)
    if userPath:
        providers.append(FileProvider(userPath))
    providers.append(OverrideProvider())

    store = ConfigStore(namespace="config:runtimebridge", validator=compileValidator(), providers=providers)
    store.validate()
    _GLOBAL_STORE = store
    logger.debug("Config initialized (layers: %s)", ", ".join(store.snapshot()["layers"]))
    return store



def resetConfig() -> None:
    """Drop the global store; the next access bootstraps a fresh one."""
    global _GLOBAL_STORE
    _GLOBAL_STORE = None



def getGlobalConfig() -> ConfigStore:
    if _GLOBAL_STORE is None:
        return initConfig()
    return _GLOBAL_STORE



def config(path: str, default: Any = None) -> Any:
    """
    Read a dotted path from the merged global configuration.

    Example:
      value = config("rpc.defaultTimeoutMs")      # returns 5000
      value = config("non.existing.path", 300)    # returns 300
    """
    val = getByPath(getGlobalConfig().snapshot()["values"], path)
    return default if val is None else val



def configBool(path: str, default: bool = False) -> bool:
    val = config(path, None)
    if isinstance(val, bool):
        return val
    if val is None:
        return default
    return bool(val)
