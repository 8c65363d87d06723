# runtimebridge/config/store.py
from __future__ import annotations
import copy
import logging
from typing import Any, Literal
from collections.abc import Callable, Mapping

from .types import ConfigProvider, ChangeListener

logger = logging.getLogger(__name__)

__all__ = ["ConfigStore", "deepMerge"]



def deepMerge(left: Mapping[str, Any], right: Mapping[str, Any]) -> dict[str, Any]:
    """Dicts merge recursively, everything else on the right replaces the left."""
    out: dict[str, Any] = dict(left)
    for key, rightValue in right.items():
        leftValue = out.get(key)
        if isinstance(leftValue, Mapping) and isinstance(rightValue, Mapping):
            out[key] = deepMerge(leftValue, rightValue)
        else:
            out[key] = copy.deepcopy(rightValue)
    return out



class ConfigStore:
    """
    Layered config store:
      - read: first hit from the topmost provider down
      - write: dispatch to a target provider ("runtime" override or "save" file)
      - validate: on set(), validate the *effective* merged document and roll back on failure
    """

    def __init__(self, *, namespace: str, validator: Callable[[Any], None] | None, providers: list[ConfigProvider]):
        self.namespace = namespace
        self._validator = validator
        self._providers = providers
        self._listeners: list[ChangeListener] = []

        # Index providers by role
        self._roleIdx: dict[str, int] = {}
        for idx, provider in enumerate(self._providers):
            name = provider.__class__.__name__.lower()
            if "override" in name:
                self._roleIdx.setdefault("runtime", idx)
            if "file" in name:
                self._roleIdx.setdefault("save", idx)

    def _resolveTargetIdx(self, target: Literal["runtime", "save"]) -> int:
        if target not in self._roleIdx:
            raise KeyError(f"No provider mapped for target '{target}' in {self.namespace}")
        return self._roleIdx[target]

    def _merged(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        # Bottom to top
        for provider in self._providers:
            merged = deepMerge(merged, provider.to_dict())
        return merged

    def validate(self) -> None:
        if self._validator is not None:
            self._validator(self._merged())

    def get(self, key: str) -> Any | None:
        for provider in reversed(self._providers):
            value = provider.get(key)
            if value is not None:
                return value
        return None

    def set(
        self,
        key: str,
        value: Any,
        *,
        target: Literal["runtime", "save"] = "runtime",
        actor: str = "system",
    ) -> None:
        idx = self._resolveTargetIdx(target)
        provider = self._providers[idx]
        oldValue = self.get(key)
        oldLayerValue = provider.get(key)
        provider.set(key, value)

        if self._validator is not None:
            try:
                self._validator(self._merged())
            except Exception:
                provider.set(key, oldLayerValue)
                raise

        newValue = self.get(key)
        if oldValue != newValue:
            context = {"namespace": self.namespace, "actor": actor, "target": target}
            for fn in list(self._listeners):
                try:
                    fn(key, oldValue, newValue, context)
                except Exception:
                    logger.warning("Config listener failed for key '%s'", key, exc_info=True)

    def subscribe(self, fn: ChangeListener) -> Callable[[], None]:
        self._listeners.append(fn)
        def _unsub() -> None:
            try:
                self._listeners.remove(fn)
            except ValueError:
                pass
        return _unsub

    def snapshot(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "values": self._merged(),
            "layers": [provider.__class__.__name__ for provider in self._providers],
        }

    def saveAll(self) -> None:
        for provider in self._providers:
            try:
                provider.save()
            except Exception:
                logger.exception("Failed to save config layer %s", provider.__class__.__name__)
