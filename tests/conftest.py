"""
Pytest configuration and fixtures for QuizPost tests.
"""
import sys
import os
from unittest.mock import AsyncMock

import pytest

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEVICE_ID_PEPPER", "test-device-pepper")
os.environ.setdefault("EMAIL_PEPPER", "test-email-pepper")
os.environ.setdefault("ADMIN_EMAILS", "admin@example.com")
os.environ.setdefault("ENV", "development")

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.pool import StaticPool

from db.session import create_engine, create_sessionmaker
from models.base import Base
from models import attempt, quiz, reward, score, user  # noqa: F401
from models.quiz import QuizPost, Question, Choice, STATUS_PUBLISHED
from services.ledger_client import CentralAccountClient
from services.reward_service import RewardDispatcher

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


@pytest.fixture
async def engine():
    """Fresh in-memory database per test; every session shares one connection."""
    engine = create_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def ledger():
    """Central account client double; every call succeeds unless a test says otherwise."""
    client = AsyncMock(spec=CentralAccountClient)
    client.record_activity.return_value = None
    client.find_account.return_value = None
    return client


@pytest.fixture
def dispatcher(session_factory, ledger):
    return RewardDispatcher(session_factory, ledger)


def build_quiz(title="World Capitals", questions=None, published=True, slug=None):
    """
    Build an unsaved quiz. `questions` is a list of (text, [choice texts], correct index).
    """
    if questions is None:
        questions = [
            ("Capital of France?", ["Paris", "London", "Berlin"], 0),
            ("Capital of England?", ["Madrid", "London", "Rome"], 1),
            ("Capital of Germany?", ["Vienna", "Prague", "Berlin"], 2),
        ]
    quiz = QuizPost(title=title, theme={}, is_active=True)
    for q_index, (text, choices, correct) in enumerate(questions):
        question = Question(text=text, order=q_index, points=1)
        for c_index, choice_text in enumerate(choices):
            question.choices.append(Choice(text=choice_text, order=c_index, is_correct=c_index == correct))
        quiz.questions.append(question)
    if published:
        quiz.status = STATUS_PUBLISHED
        quiz.slug = slug or "world-capitals"
    return quiz


@pytest.fixture
async def capitals_quiz(db):
    quiz = build_quiz()
    db.add(quiz)
    await db.commit()
    return quiz


def choice_id(quiz, q_index, text):
    question = quiz.questions[q_index]
    return next(c.id for c in question.choices if c.text == text)
