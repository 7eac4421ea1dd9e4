from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

import studycore.db as dbmod
from studycore.logs import configure_logging
from studycore.session import CounterStore, SessionStore


configure_logging("DEBUG")


@pytest_asyncio.fixture
async def db_file(tmp_path, monkeypatch) -> Path:
    """Point every store call at a fresh SQLite file with the schema applied."""
    path: Path = tmp_path / "test.db"
    monkeypatch.setattr(dbmod, "DB_PATH", path, raising=False)
    await dbmod.init_db()
    return path


@pytest.fixture
def sessions() -> SessionStore:
    return SessionStore()


@pytest.fixture
def source_counters() -> CounterStore:
    return CounterStore()
