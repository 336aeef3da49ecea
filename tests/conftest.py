"""
Pytest configuration and fixtures for the kaiwa tests.
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from kaiwa.models import (
    Base,
    Character,
    EvaluationResult,
    JLPTLevel,
    LearnerCreate,
    TaskCreate,
    TaskDefinition,
)
from kaiwa.services.learner_service import create_learner
from kaiwa.services.task_service import create_task
from kaiwa.settings import clear_settings_cache
from kaiwa.utils.clock import FixedClock

# In-memory SQLite shared across the session's connections
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keep the developer's KAIWA_* environment out of the tests."""
    monkeypatch.setenv("KAIWA_ENV", "local")
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    factory = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

    async with factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 1, 1, 9, 0, tzinfo=UTC))


@pytest.fixture
def task_definition() -> TaskDefinition:
    """An in-memory task with three objectives (no database)."""
    return TaskDefinition(
        id="task-station",
        title="At the station",
        description="Buy a train ticket",
        category="travel",
        difficulty=JLPTLevel.N5,
        scenario="You are at Tokyo station and need a ticket to Kyoto.",
        learning_objectives=["Greet the clerk", "Ask for a ticket", "Pay and say thanks"],
        estimated_duration=10,
    )


@pytest.fixture
def character() -> Character:
    return Character(
        id="char-tanaka",
        name="田中さん",
        description="A friendly station clerk",
        speaking_style="Polite and patient",
        relationship_type="clerk",
    )


@pytest_asyncio.fixture
async def learner(async_session):
    return await create_learner(
        async_session,
        LearnerCreate(name="Aiko", proficiency=JLPTLevel.N5, preferred_categories=["travel"]),
    )


@pytest_asyncio.fixture
async def task(async_session):
    """A persisted task with two objectives and a 10 minute estimate."""
    return await create_task(
        async_session,
        TaskCreate(
            title="Order at a cafe",
            category="restaurant",
            difficulty=JLPTLevel.N5,
            scenario="A small cafe in Shibuya.",
            learning_objectives=["Order a drink", "Ask for the bill"],
            estimated_duration=10,
        ),
    )


@pytest.fixture
def evaluation() -> EvaluationResult:
    return EvaluationResult(
        task_achievement=80, fluency=70, vocabulary_grammar_accuracy=60, politeness=50
    )


@pytest.fixture
def evaluator(evaluation):
    """A ConversationEvaluator double."""
    mock = AsyncMock()
    mock.generate_reply.return_value = "いらっしゃいませ！"
    mock.generate_hints.return_value = "「コーヒーをください」と言ってみましょう。"
    mock.generate_assessment.return_value = evaluation
    mock.estimate_proficiency_level.return_value = JLPTLevel.N5
    return mock
