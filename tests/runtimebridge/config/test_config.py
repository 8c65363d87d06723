# tests/runtimebridge/config/test_config.py
from __future__ import annotations

from pathlib import Path
from typing import Any

import json5
import pytest

from runtimebridge.config import (
    ConfigStore, ConfigValidationError, config, configBool, getGlobalConfig, initConfig, resetConfig,
)
from runtimebridge.config.providers import DefaultsProvider, FileProvider, OverrideProvider
from runtimebridge.config.schema import DEFAULT_CONFIG, compileValidator
from runtimebridge.config.store import deepMerge


# ----------------------------
# OverrideProvider
# ----------------------------

def test_overrideProvider_setAndGet_pathCreatesNested() -> None:
    provider = OverrideProvider()
    provider.set("reconnect.enabled", False)
    provider.set("reconnect.maxRetries", 2)

    assert provider.get("reconnect.enabled") is False
    assert provider.get("reconnect.maxRetries") == 2
    assert provider.get("rpc.defaultTimeoutMs") is None
    assert provider.to_dict() == {"reconnect": {"enabled": False, "maxRetries": 2}}


def test_overrideProvider_setNone_deletesAndPrunes() -> None:
    provider = OverrideProvider()
    provider.set("a.b.c", 123)
    provider.set("a.x", "keep")
    provider.set("a.b.c", None)
    assert provider.to_dict() == {"a": {"x": "keep"}}


def test_overrideProvider_toDict_isCopy() -> None:
    provider = OverrideProvider()
    provider.set("a.b", [1])
    snapshot = provider.to_dict()
    snapshot["a"]["b"].append(2)
    assert provider.get("a.b") == [1]


# ----------------------------
# DefaultsProvider
# ----------------------------

def test_defaultsProvider_fromData_isReadOnly() -> None:
    provider = DefaultsProvider(data={"connection": {"port": 9696}})
    assert provider.get("connection.port") == 9696
    with pytest.raises(RuntimeError):
        provider.set("connection.port", 1)


def test_defaultsProvider_fromJson5File(tmp_path: Path) -> None:
    path = tmp_path / "defaults.json5"
    path.write_text("{ // comment\n connection: { port: 9000, }, }", "utf-8")
    provider = DefaultsProvider(path=path)
    assert provider.get("connection.port") == 9000


def test_defaultsProvider_missingFile(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        DefaultsProvider(path=tmp_path / "nope.json5")
    assert DefaultsProvider(path=tmp_path / "nope.json5", strict=False).to_dict() == {}


def test_defaultsProvider_requiresExactlyOneSource(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        DefaultsProvider()
    with pytest.raises(ValueError):
        DefaultsProvider(data={}, path=tmp_path / "x.json")


# ----------------------------
# FileProvider
# ----------------------------

def test_fileProvider_missingFile_startsEmpty_thenSaves(tmp_path: Path) -> None:
    path = tmp_path / "sub" / "user.json5"
    provider = FileProvider(path)
    assert provider.to_dict() == {}

    provider.set("connection.port", 9797)
    provider.save()

    assert json5.loads(path.read_text("utf-8")) == {"connection": {"port": 9797}}
    assert FileProvider(path).get("connection.port") == 9797


def test_fileProvider_parseError_startsEmpty(tmp_path: Path) -> None:
    path = tmp_path / "broken.json5"
    path.write_text("{ not json", "utf-8")
    assert FileProvider(path).to_dict() == {}


def test_fileProvider_nonObject_raises(tmp_path: Path) -> None:
    path = tmp_path / "list.json"
    path.write_text("[1, 2]", "utf-8")
    with pytest.raises(TypeError):
        FileProvider(path)


def test_fileProvider_readOnly(tmp_path: Path) -> None:
    provider = FileProvider(tmp_path / "ro.json5", readOnly=True)
    with pytest.raises(RuntimeError):
        provider.set("a", 1)
    with pytest.raises(RuntimeError):
        provider.save()


# ----------------------------
# ConfigStore
# ----------------------------

def _store(*extra) -> ConfigStore:
    return ConfigStore(
        namespace="config:test",
        validator=compileValidator(),
        providers=[DefaultsProvider(data=DEFAULT_CONFIG), *extra, OverrideProvider()],
    )


def test_deepMerge_nestedAndReplacing() -> None:
    left = {"a": {"x": 1, "y": 2}, "l": [1]}
    right = {"a": {"y": 5}, "l": [2]}
    assert deepMerge(left, right) == {"a": {"x": 1, "y": 5}, "l": [2]}
    assert left == {"a": {"x": 1, "y": 2}, "l": [1]}


def test_store_topmostLayerWins(tmp_path: Path) -> None:
    path = tmp_path / "user.json5"
    path.write_text('{ rpc: { defaultTimeoutMs: 1500 } }', "utf-8")
    store = _store(FileProvider(path))

    assert store.get("rpc.defaultTimeoutMs") == 1500
    assert store.get("rpc.handshakeTimeoutMs") == 10000
    store.set("rpc.defaultTimeoutMs", 300)
    assert store.get("rpc.defaultTimeoutMs") == 300
    assert store.snapshot()["values"]["rpc"]["defaultTimeoutMs"] == 300


def test_store_invalidValue_rollsBack() -> None:
    store = _store()
    with pytest.raises(ConfigValidationError):
        store.set("connection.port", 70000)
    assert store.get("connection.port") == 9696


def test_store_listenersSeeChangesOnly() -> None:
    store = _store()
    seen: list[tuple[str, Any, Any, str]] = []
    unsub = store.subscribe(lambda key, old, new, ctx: seen.append((key, old, new, ctx["actor"])))

    store.set("reconnect.maxRetries", 2, actor="test")
    store.set("reconnect.maxRetries", 2)
    unsub()
    store.set("reconnect.maxRetries", 3)

    assert seen == [("reconnect.maxRetries", 5, 2, "test")]


def test_store_saveTarget_writesFile(tmp_path: Path) -> None:
    path = tmp_path / "user.json5"
    store = _store(FileProvider(path))
    store.set("connection.host", "10.0.0.5", target="save")
    store.saveAll()
    assert json5.loads(path.read_text("utf-8")) == {"connection": {"host": "10.0.0.5"}}


def test_store_unknownTarget_raisesKeyError() -> None:
    store = ConfigStore(namespace="n", validator=None, providers=[OverrideProvider()])
    with pytest.raises(KeyError):
        store.set("a", 1, target="save")


# ----------------------------
# Global service
# ----------------------------

def test_config_readsShippedDefaults() -> None:
    assert config("rpc.defaultTimeoutMs") == 5000
    assert config("connection.port") == 9696
    assert config("non.existing.path", 300) == 300
    assert configBool("reconnect.enabled") is True


def test_initConfig_isIdempotent() -> None:
    assert initConfig() is getGlobalConfig()


def test_initConfig_userFileFromEnv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "bridge.json5"
    path.write_text("{ reconnect: { enabled: false } }", "utf-8")
    monkeypatch.setenv("RUNTIMEBRIDGE_CONFIG", str(path))
    resetConfig()

    assert configBool("reconnect.enabled", True) is False
    assert "FileProvider" in getGlobalConfig().snapshot()["layers"]


def test_initConfig_invalidUserFile_raises(tmp_path: Path) -> None:
    path = tmp_path / "bad.json5"
    path.write_text("{ connection: { port: 'http' } }", "utf-8")
    with pytest.raises(ConfigValidationError):
        initConfig(path)
