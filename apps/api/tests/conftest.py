import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from models.user import User
from services.generation import PostGenerationPipeline
from services.retry import RetryPolicy
from routers import rate_limit


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "ledger.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def create_account(db_session):
    """Insert an account with a raw balance and no ledger history."""

    async def _create(account_id="acct_1", credits=10):
        db_session.add(User(id=account_id, email=f"{account_id}@example.com", credits=credits))
        await db_session.commit()
        return account_id

    return _create


class ScriptedClient:
    """Fake chat client replaying one script per call.

    Script items are model events, exceptions to raise, or ("sleep", seconds).
    ``closed`` counts streams that were finalized, however they ended.
    """

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.calls = []
        self.closed = 0

    async def stream(self, prompt, *, tools=None):
        self.calls.append({"prompt": prompt, "tools": tools})
        script = self.scripts.pop(0)
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, tuple) and item[0] == "sleep":
                    await asyncio.sleep(item[1])
                    continue
                yield item
        finally:
            self.closed += 1


@pytest.fixture
def make_pipeline():
    """Build a pipeline over a ScriptedClient; the client is ``pipeline.client``."""

    def _make(*scripts, retry_policy=None, timeout_seconds=5):
        return PostGenerationPipeline(
            ScriptedClient(*scripts),
            retry_policy=retry_policy or RetryPolicy(max_attempts=3, base_delay=0, rate_limit_base_delay=0),
            timeout_seconds=timeout_seconds,
        )

    return _make
