import asyncio
import json
import random
import sys
import time
import uuid
from pathlib import Path

import pytest

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from portal.db.base import Base
from portal.db import session as session_module

# Import models so that they are registered in Base.metadata before create_all.
from portal.models.user import User, UserBadge  # noqa: F401
from portal.models.result import TestResult  # noqa: F401


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def ping(self):
        return True

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))

    def flushall(self):
        self._data.clear()


# Configure test DB (SQLite in-memory) at import time so every
# portal.db.session.SessionLocal lookup gets the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)


# Stub Redis at import time (usage counters + readiness probe).
_mem_redis = _MemoryRedis()
import portal.core.redis_client as redis_client_module

redis_client_module.get_redis = lambda: _mem_redis

import portal.services.usage as usage_module

usage_module.get_redis = lambda: _mem_redis


from portal.core.errors import PersistenceError  # noqa: E402
from portal.models.result import ExamMode  # noqa: E402
from portal.services.question_bank import QuestionBank  # noqa: E402
from portal.services.question_source import QuestionSourceProvider  # noqa: E402
from portal.services.result_persistence import ResultPersistenceAdapter  # noqa: E402
from portal.services.session_controller import SessionController  # noqa: E402
from portal.services.timer import CountdownTimer  # noqa: E402


class FakeTextService:
    """Stands in for the chat-completions client."""

    def __init__(self, reply: str | None = None, *, delay: float = 0.0, error: Exception | None = None, available: bool = True):
        self.reply = reply
        self.delay = delay
        self.error = error
        self._available = available
        self.prompts: list[str] = []

    @property
    def available(self) -> bool:
        return self._available

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply or ""


class RecordingUsage:
    def __init__(self):
        self.calls = 0

    def record_synthesis(self) -> None:
        self.calls += 1


class RecordingPersistence:
    def __init__(self, controller_ref=None):
        self.outcomes = []
        self.stages_seen = []
        self.controller = controller_ref

    async def persist(self, outcome):
        if self.controller is not None:
            self.stages_seen.append(self.controller.stage)
        self.outcomes.append(outcome)
        return None


class FailingPersistence(ResultPersistenceAdapter):
    def __init__(self):
        super().__init__()
        self.seen = []

    def _write(self, outcome):
        self.seen.append(outcome)
        raise PersistenceError("store unavailable")


def synthesized_reply(count: int, *, correct: int = 0, wrap: bool = False) -> str:
    items = [
        {
            "text": f"Synthesized question {i + 1}?",
            "options": ["alpha", "beta", "gamma", "delta"],
            "correctAnswer": correct,
        }
        for i in range(count)
    ]
    body = json.dumps(items)
    if wrap:
        return f"Here are your questions:\n```json\n{body}\n```\nGood luck!"
    return body


def manual_timer(on_expire, on_tick=None):
    return CountdownTimer(on_expire, on_tick, autorun=False)


@pytest.fixture(autouse=True)
def _reset_redis():
    _mem_redis.flushall()
    yield


@pytest.fixture()
def mem_redis():
    return _mem_redis


@pytest.fixture()
def db():
    with session_module.SessionLocal() as session:
        yield session


@pytest.fixture()
def user_id(db) -> str:
    u = User(name=f"student_{uuid.uuid4().hex[:8]}", level=200)
    db.add(u)
    db.commit()
    return str(u.id)


@pytest.fixture(scope="session")
def bank() -> QuestionBank:
    return QuestionBank.from_file()


@pytest.fixture()
def make_provider(bank):
    def _make(text_service=None, *, usage=None, timeout_seconds=8.0, seed=7):
        return QuestionSourceProvider(
            text_service=text_service or FakeTextService(available=False),
            bank=bank,
            usage=usage,
            timeout_seconds=timeout_seconds,
            rng=random.Random(seed),
        )

    return _make


@pytest.fixture()
def make_controller(make_provider):
    def _make(*, user_id: str = "student-1", provider=None, persistence=None, **kwargs):
        return SessionController(
            user_id=user_id,
            provider=provider or make_provider(),
            persistence=persistence or RecordingPersistence(),
            timer_factory=manual_timer,
            **kwargs,
        )

    return _make


async def start_session(ctl: SessionController, mode: ExamMode, level: int = 200, topic: str | None = None):
    ctl.select_mode(mode)
    ctl.configure(level=level, topic=topic)
    return await ctl.start_exam()
