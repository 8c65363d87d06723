import sys
import pytest

from runtimebridge.config import resetConfig



def pytest_configure(config: pytest.Config) -> None:
    if sys.flags.optimize:
        raise RuntimeError("Assertions are disabled (optimize > 0)")



@pytest.fixture(autouse=True)
def _freshConfig(monkeypatch: pytest.MonkeyPatch):
    # Every test starts from shipped defaults, never from a user file
    monkeypatch.delenv("RUNTIMEBRIDGE_CONFIG", raising=False)
    resetConfig()
    yield
    resetConfig()
