import sys
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db import session as session_module
from app.main import create_app

# Import models so that they are registered in Base.metadata before create_all.
import app.models  # noqa: F401
from app.core.security import create_access_token, hash_password
from app.models.module import Chapter, Content, ContentType, Module
from app.models.quiz import Quiz
from app.models.user import User, UserRole
from app.services.quizzes import parse_questions


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def ping(self):
        return True

    def flushall(self):
        self._data.clear()
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

    def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        if nx and self._get_entry(key) is not None:
            return None
        exp = (self._now() + int(ex)) if ex else None
        self._data[key] = (value, exp)
        return True

    def delete(self, key: str):
        self._data.pop(key, None)
        return 1

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


class _RecordingQueue:
    """Stands in for an rq Queue; jobs are recorded, never executed."""

    def __init__(self, name: str, jobs: list):
        self.name = name
        self._jobs = jobs

    def enqueue(self, func, *args, **kwargs):
        self._jobs.append({"queue": self.name, "func": func.__name__, "args": args, "kwargs": kwargs})
        return None


# Configure test DB (SQLite in-memory) at import time so all tests importing
# app.db.session.SessionLocal will get the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)


# Stub Redis at import time (rate limiting + readiness check).
_mem_redis = _MemoryRedis()
import app.core.redis_client as redis_client_module

redis_client_module.get_redis = lambda: _mem_redis

import app.core.rate_limit as rate_limit_module
rate_limit_module.get_redis = lambda: _mem_redis

import app.routers.health as health_router_module
health_router_module.get_redis = lambda: _mem_redis

# Background jobs are captured instead of going to Redis.
_jobs: list[dict] = []
import app.core.queue as queue_module
queue_module.get_queue = lambda name=None: _RecordingQueue(name or "default", _jobs)

PASSWORD = "testpass123"
_PASSWORD_HASH = hash_password(PASSWORD)

DEFAULT_QUESTIONS = [
    {"question": "First option is right", "type": "multiple_choice", "options": ["a", "b", "c", "d"], "correct_answer": 0},
    {"question": "Second option is right", "type": "multiple_choice", "options": ["a", "b", "c", "d"], "correct_answer": 1},
    {"question": "This statement is true", "type": "true_false", "correct_answer": True},
    {"question": "Third option is right", "type": "multiple_choice", "options": ["a", "b", "c", "d"], "correct_answer": 2},
]
# q1..q4 in DEFAULT_QUESTIONS order
ALL_CORRECT = {"q1": 0, "q2": 1, "q3": True, "q4": 2}


@pytest.fixture(autouse=True)
def _fresh_state():
    # Unlock rules depend on the whole catalog, so every test starts from an empty schema.
    Base.metadata.drop_all(bind=_engine)
    Base.metadata.create_all(bind=_engine)
    _mem_redis.flushall()
    _jobs.clear()
    yield


@pytest.fixture(scope="session")
def client():
    app = create_app()

    # Ensure app dependencies use our session factory.
    def _get_db_override():
        db = session_module.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[session_module.get_db] = _get_db_override
    return TestClient(app)


@pytest.fixture()
def db():
    with session_module.SessionLocal() as session:
        yield session


@pytest.fixture()
def enqueued():
    return _jobs


@pytest.fixture()
def make_user(db):
    def _make(*, verified: bool = True, role: UserRole = UserRole.user, email: str | None = None) -> User:
        u = User(
            email=email or f"u_{uuid.uuid4().hex[:10]}@example.com",
            first_name="Test",
            last_name="Learner",
            role=role,
            password_hash=_PASSWORD_HASH,
            email_verified_at=datetime.now(timezone.utc) if verified else None,
        )
        db.add(u)
        db.commit()
        db.refresh(u)
        return u

    return _make


def headers_for(user: User) -> dict[str, str]:
    token = create_access_token(user_id=str(user.id), role=user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def learner(make_user) -> User:
    return make_user()


@pytest.fixture()
def auth_headers(learner):
    return headers_for(learner)


@pytest.fixture()
def admin_headers(make_user):
    return headers_for(make_user(role=UserRole.admin))


@pytest.fixture()
def make_catalog(db):
    """Build modules from a list of chapter layouts.

    `layout` holds one entry per module: a list of booleans, one per chapter,
    telling whether that chapter gets a quiz. Every chapter gets a single
    600 second video. Returns a list of {"module": id, "chapters": [...]}
    where each chapter is {"chapter": id, "content": id, "quiz": id | None}.
    """

    def _make(layout: list[list[bool]], *, inactive_modules: frozenset[int] = frozenset()) -> list[dict]:
        out = []
        base_order = len(db.query(Module).all())
        for mi, chapters in enumerate(layout):
            m = Module(
                title=f"Module {base_order + mi + 1}",
                description=None,
                order=base_order + mi + 1,
                is_active=mi not in inactive_modules,
            )
            db.add(m)
            db.flush()

            items = []
            for ci, with_quiz in enumerate(chapters, start=1):
                ch = Chapter(module_id=m.id, title=f"Chapter {ci}", order=ci, is_active=True)
                db.add(ch)
                db.flush()
                ct = Content(
                    chapter_id=ch.id,
                    title=f"Video {ci}",
                    type=ContentType.video,
                    url="https://cdn.example.com/v.mp4",
                    duration=600,
                    order=1,
                    is_active=True,
                )
                db.add(ct)
                quiz_id = None
                if with_quiz:
                    q = Quiz(chapter_id=ch.id, title=f"Quiz {ci}", passing_score=70, questions=parse_questions(DEFAULT_QUESTIONS))
                    db.add(q)
                    db.flush()
                    quiz_id = q.id
                db.flush()
                items.append({"chapter": ch.id, "content": ct.id, "quiz": quiz_id})
            out.append({"module": m.id, "chapters": items})
        db.commit()
        return out

    return _make


@pytest.fixture()
def headers():
    return headers_for


@pytest.fixture()
def all_correct():
    return dict(ALL_CORRECT)
