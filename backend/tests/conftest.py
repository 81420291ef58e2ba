import sys
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import create_async_engine


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rehearsal.db import init_db, session_factory_for  # noqa: E402
from rehearsal.interviews import InterviewStore  # noqa: E402
from rehearsal.storage import MemoryStore, SqlStore  # noqa: E402


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("NVIDIA_API_KEY", raising=False)
    from rehearsal import generation

    monkeypatch.setattr(generation, "NVIDIA_API_KEY", None)


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return session_factory_for(db_engine)


@pytest.fixture
def interview_store(session_factory) -> InterviewStore:
    return InterviewStore(session_factory)


@pytest.fixture
def sql_store(session_factory) -> SqlStore:
    return SqlStore(session_factory)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
async def unmigrated_factory(tmp_path):
    """Session factory bound to a database whose tables were never created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    yield session_factory_for(engine)
    await engine.dispose()
