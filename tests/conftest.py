from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "brickwall" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
TESTS = ROOT / "tests"

for p in (str(SRC), str(TESTS)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Tests run in dev mode with fresh metrics and no inherited BRICKWALL_* overrides.
    from brickwall.runtime import metrics

    monkeypatch.setenv("BRICKWALL_MODE", "dev")
    monkeypatch.delenv("BRICKWALL_METRICS_ENABLED", raising=False)
    metrics.reset()


@pytest.fixture
def store(tmp_path: Path):
    from brickwall.runtime.sqlite_db import SqliteDB
    from brickwall.storage.brick_store import BrickStore

    s = BrickStore(SqliteDB(path=str(tmp_path / "wall.db")))
    s.init()
    return s


@pytest.fixture
def index():
    from wall_fakes import FakeIndex

    return FakeIndex()


@pytest.fixture
def ledger():
    from wall_fakes import FakeLedger

    return FakeLedger()
