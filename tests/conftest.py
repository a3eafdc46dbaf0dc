import os
import tempfile

# Must be set before any newsbrief imports that read settings
os.environ["DATA_DIR"] = tempfile.mkdtemp()
os.environ["GEMINI_API_KEY"] = ""
os.environ["GOOGLE_CLOUD_TTS_API_KEY"] = ""
os.environ["USE_DATABASE"] = "false"
os.environ["SESSION_SECRET"] = "test-session-secret-0123456789abcdef"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from newsbrief.database import Base
from newsbrief.storage.audio import AudioStorage
from newsbrief.storage.state_store import StateStore
from newsbrief.usage.ledger import UsageLedger


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory SQLite document store for each test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factory
    await engine.dispose()


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path)


@pytest.fixture
def store(data_dir):
    return StateStore(data_dir)


@pytest.fixture
def audio(data_dir):
    return AudioStorage(data_dir)


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float):
        self.now += int(seconds * 1000)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(store, clock):
    return UsageLedger(store, window_seconds=60, clock=clock)


@pytest.fixture
def sleeps():
    """Records requested pauses instead of sleeping."""
    calls = []

    async def fake_sleep(seconds):
        calls.append(seconds)

    fake_sleep.calls = calls
    return fake_sleep
