from __future__ import annotations

from .service import initConfig, resetConfig, getGlobalConfig, config, configBool
from .store import ConfigStore
from .types import ConfigValidationError

__all__ = [
    "initConfig",
    "resetConfig",
    "getGlobalConfig",
    "config",
    "configBool",
    "ConfigStore",
    "ConfigValidationError",
]
