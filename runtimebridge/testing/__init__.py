# runtimebridge/testing/__init__.py
from __future__ import annotations

from .fake_runtime import FakeRuntime, Refusal

__all__ = ["FakeRuntime", "Refusal"]
