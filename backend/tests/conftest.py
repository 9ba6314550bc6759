import pytest
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from kelly.agents.factory import ContentGenerator
from kelly.database import create_tables
from kelly.models.api import Insight


T0 = datetime(2025, 3, 10, 12, 0, 0)


class FakeClock:
    """Settable replacement for ``utcnow``"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeGenerator(ContentGenerator):
    """Content generator answering from a script instead of calling the model.

    Each call consumes the next answer; the last one is repeated. An
    exception in the script is raised instead of returned.
    """

    def __init__(self, *answers):
        super().__init__(model_name="test-model")
        self.answers = list(answers)
        self.prompts = []

    async def complete(self, prompt, system_prompt=None):
        self.prompts.append(prompt)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


def make_insight(id, title, status="active", cache_key="default", type="seasonal", **kwargs) -> Insight:
    return Insight(
        id=id,
        title=title,
        status=status,
        cache_key=cache_key,
        type=type,
        created_at=T0,
        expires_at=T0 + timedelta(minutes=30),
        last_refresh_at=T0,
        **kwargs
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def session_maker(tmp_path):
    """Session factory over a fresh SQLite file"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'kelly_test.db'}")
    await create_tables(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def add_rows(session_maker):
    """Persist ORM rows and return them"""
    async def _add(*rows):
        async with session_maker() as db:
            db.add_all(rows)
            await db.commit()
        return rows if len(rows) != 1 else rows[0]
    return _add
