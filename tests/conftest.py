"""
Shared fixtures: in-memory database, settings, fake collaborators.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from common.config import Settings
from common.db import create_session_factory, init_db
from common.models import Base, Challenge, Submission, Transaction, User, UserRole
from modules.evaluation_client import GradingResult, ScoreBreakdown
from modules.submission_lifecycle import SubmissionLifecycle

STATIC_TOKEN = "test-static-token"
ADMIN_TOKEN = "test-admin-token"

VALID_CODE = "def add(a, b):\n    return a + b\n"
VALID_EXPLANATION = (
    "The function adds both arguments and returns the sum, which is "
    "constant time and handles negative numbers too."
)


class FakeClock:
    """Controllable replacement for the lifecycle's UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 10, 17, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingQueue:
    """Grading queue that remembers what it was asked to enqueue."""

    def __init__(self, fail: bool = False):
        self.enqueued: list[str] = []
        self.fail = fail

    def enqueue(self, submission_id: str) -> None:
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.enqueued.append(submission_id)


class StubEvaluator:
    """Evaluator returning a fixed result and counting calls."""

    def __init__(self, result: Optional[GradingResult] = None):
        self.result = result or grading_result(90, 80, 70, 100)
        self.calls: list[dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def evaluate(self, code, problem_statement, evaluation_instructions,
                 test_cases) -> GradingResult:
        self.calls.append({
            "code": code,
            "problem_statement": problem_statement,
            "evaluation_instructions": evaluation_instructions,
            "test_cases": test_cases,
        })
        if self.error is not None:
            raise self.error
        return self.result


def grading_result(
    correctness: int,
    code_quality: int,
    efficiency: int,
    style: int
) -> GradingResult:
    score = (
        5 * correctness + 2 * code_quality + 2 * efficiency + style + 5
    ) // 10
    return GradingResult(
        score=score,
        passed=score >= 70,
        feedback="Solid solution.",
        analysis=ScoreBreakdown(
            correctness=correctness,
            code_quality=code_quality,
            efficiency=efficiency,
            style=style
        ),
        suggestions=["Add type hints"],
    )


def model_reply(
    correctness: Any = 90,
    code_quality: Any = 80,
    efficiency: Any = 70,
    style: Any = 100,
    **extra: Any
) -> str:
    body = {
        "correctness": correctness,
        "codeQuality": code_quality,
        "efficiency": efficiency,
        "style": style,
        "overallScore": 12,
        "feedback": "Well done.",
        "suggestions": ["Use a docstring"],
        "testResults": [{"passed": True, "explanation": "matches"}],
    }
    body.update(extra)
    return json.dumps(body)


def backend_transport(
    reply: str,
    status_code: int = 200,
    requests: Optional[list[httpx.Request]] = None
) -> httpx.MockTransport:
    """Mock evaluation backend answering every call with ``reply``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, json={"response": reply})

    return httpx.MockTransport(handler)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        static_token=STATIC_TOKEN,
        admin_token=ADMIN_TOKEN,
        database_url="sqlite://",
        bypass_weekend_check=True,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def student(db: Session) -> User:
    user = User(id="user-1", display_name="Ada", xp=0, level=1, coins=0)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db: Session) -> User:
    user = User(
        id="admin-1",
        display_name="Grace",
        role=UserRole.ADMIN,
        xp=0,
        level=1,
        coins=0
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def make_challenge(db: Session) -> Callable[..., Challenge]:
    def factory(**overrides: Any) -> Challenge:
        values = {
            "id": "ch-1",
            "title": "Add Two Numbers",
            "description": "Warm-up",
            "problem_statement": "Return the sum of a and b.",
            "evaluation_prompt": "Check negative numbers.",
            "test_cases": [
                {"input": "1, 2", "expected_output": "3"},
                {"input": "-1, 1", "expected_output": "0"},
            ],
            "difficulty": 2,
            "base_xp_reward": 100,
            "bonus_coins": 10,
            "week_number": 42,
            "year": 2026,
            "is_active": True,
        }
        values.update(overrides)
        challenge = Challenge(**values)
        db.add(challenge)
        db.commit()
        return challenge

    return factory


@pytest.fixture
def challenge(make_challenge) -> Challenge:
    return make_challenge()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def evaluator() -> StubEvaluator:
    return StubEvaluator()


@pytest.fixture
def lifecycle(settings, session_factory, evaluator, queue, clock):
    return SubmissionLifecycle(
        settings,
        session_factory,
        evaluator,
        queue=queue,
        clock=clock
    )


@pytest.fixture
def reload(session_factory):
    """Read a fresh copy of a row, bypassing any cached session state."""

    def loader(model, ident):
        with session_factory() as session:
            return session.get(model, ident)

    return loader


@pytest.fixture
def ledger_entries(session_factory):
    def loader(user_id: str) -> list[Transaction]:
        with session_factory() as session:
            return list(
                session.scalars(
                    select(Transaction)
                    .where(Transaction.user_id == user_id)
                    .order_by(Transaction.id)
                )
            )

    return loader


@pytest.fixture
def submission_count(session_factory):
    def counter() -> int:
        with session_factory() as session:
            return len(list(session.scalars(select(Submission))))

    return counter
