# runtimebridge/config/types.py
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any
from collections.abc import Callable, Mapping

__all__ = ["ConfigProvider", "ChangeListener", "ConfigValidationError"]


# (key, oldValue, newValue, context)
ChangeListener = Callable[[str, Any, Any, dict[str, Any]], None]



class ConfigValidationError(ValueError):
    """Effective configuration does not satisfy the bridge config schema."""



class ConfigProvider(ABC):
    """One layer of a ConfigStore."""

    @abstractmethod
    def get(self, key: str) -> Any | None: ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def to_dict(self) -> Mapping[str, Any]: ...

    def save(self) -> None:
        return
