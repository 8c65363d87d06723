# tests/runtimebridge/core/test_dictpath.py
from __future__ import annotations
from typing import Any

import pytest

from runtimebridge.core.dictpath import splitPath, getByPath, setByPath, hasPath, deleteByPath


# ----------------------------------------
# splitPath
# ----------------------------------------

def test_splitPath_dotsAndSlashes() -> None:
    assert splitPath("rpc.defaultTimeoutMs") == ["rpc", "defaultTimeoutMs"]
    assert splitPath("debug/rpc.incomingFrames") == ["debug", "rpc", "incomingFrames"]


def test_splitPath_escapes() -> None:
    assert splitPath("env.LOCAL\\.APPDATA") == ["env", "LOCAL.APPDATA"]
    assert splitPath("a\\/b") == ["a/b"]


@pytest.mark.parametrize("path", ["", "a..b", ".a", "a.", "a\\"])
def test_splitPath_invalid_raisesValueError(path: str) -> None:
    with pytest.raises(ValueError):
        splitPath(path)


# ----------------------------------------
# getByPath / hasPath
# ----------------------------------------

def test_getByPath_simpleNestedDict() -> None:
    data = {"a": {"b": {"c": 123}}}
    assert getByPath(data, "a.b.c") == 123
    assert getByPath(data, "a.b") == {"c": 123}
    assert getByPath(data, "a.missing", "default") == "default"
    assert hasPath(data, "a.b.c") is True
    assert hasPath(data, "a.b.doesNotExist") is False


def test_getByPath_escapedDot() -> None:
    data = {"root": {"a.b": {"c/d": 42}}}
    assert getByPath(data, "root.a\\.b.c\\/d") == 42
    assert getByPath(data, "root.a.b.c/d") is None


def test_getByPath_invalidPath_returnsDefault() -> None:
    data = {"a": 1}
    assert getByPath(data, "a\\", "sentinel") == "sentinel"
    assert hasPath(data, "a\\") is False


def test_getByPath_doesNotDescendIntoScalars() -> None:
    assert getByPath({"a": 5}, "a.b", "nope") == "nope"


def test_hasPath_noneValueStillCounts() -> None:
    assert hasPath({"debug": {"logFile": None}}, "debug.logFile") is True


# ----------------------------------------
# setByPath
# ----------------------------------------

def test_setByPath_missingParent_raisesKeyError() -> None:
    data: dict[str, Any] = {}
    with pytest.raises(KeyError):
        setByPath(data, "a.b", 1)


def test_setByPath_createIfMissing_buildsNestedDicts() -> None:
    data: dict[str, Any] = {}
    setByPath(data, "a.b.c", 123, createIfMissing=True)
    assert data == {"a": {"b": {"c": 123}}}


def test_setByPath_throughScalar_raisesTypeError() -> None:
    data: dict[str, Any] = {"a": 1}
    with pytest.raises(TypeError):
        setByPath(data, "a.b", 2, createIfMissing=True)


# ----------------------------------------
# deleteByPath
# ----------------------------------------

def test_deleteByPath_prunesEmptyParents() -> None:
    data: dict[str, Any] = {"a": {"b": {"c": 1}}, "keep": True}
    assert deleteByPath(data, "a.b.c") is True
    assert data == {"keep": True}


def test_deleteByPath_keepsNonEmptyParents() -> None:
    data: dict[str, Any] = {"a": {"b": {"c": 1}, "x": 2}}
    assert deleteByPath(data, "a.b.c") is True
    assert data == {"a": {"x": 2}}


def test_deleteByPath_noPrune() -> None:
    data: dict[str, Any] = {"a": {"b": {"c": 1}}}
    assert deleteByPath(data, "a.b.c", pruneEmptyParents=False) is True
    assert data == {"a": {"b": {}}}


def test_deleteByPath_missing_returnsFalse() -> None:
    data: dict[str, Any] = {"a": {"b": 1}}
    assert deleteByPath(data, "a.x") is False
    assert deleteByPath(data, "z.y.x") is False
    assert data == {"a": {"b": 1}}
