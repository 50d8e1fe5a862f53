import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("BOT_TOKEN", None)
os.environ.pop("GROQ_API_KEY", None)

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lp_tracker import models  # noqa: F401
from lp_tracker.db import Base
from lp_tracker.sessions import SessionStore
from lp_tracker.telegram_bot import ADAPTER_KEY, SESSIONS_KEY


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    with session_factory() as db:
        yield db


@pytest.fixture
def bot_db(monkeypatch, session_factory):
    from lp_tracker import telegram_bot

    monkeypatch.setattr(telegram_bot, "SessionLocal", session_factory)
    return session_factory


@pytest.fixture
def completion():
    def _make(content):
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    return _make


@pytest.fixture
def make_update():
    def _make(text=None, chat_id=100, user_id=42):
        message = MagicMock()
        message.text = text
        message.caption = None
        message.reply_text = AsyncMock(return_value=MagicMock(delete=AsyncMock()))
        update = MagicMock()
        update.message = message
        update.effective_message = message
        update.effective_chat.id = chat_id
        update.effective_user.id = user_id
        return update

    return _make


@pytest.fixture
def make_callback():
    def _make(data, chat_id=100, user_id=42):
        query = MagicMock()
        query.data = data
        query.answer = AsyncMock()
        query.edit_message_text = AsyncMock()
        query.from_user.id = user_id
        update = MagicMock()
        update.callback_query = query
        update.effective_chat.id = chat_id
        update.effective_user.id = user_id
        return update

    return _make


@pytest.fixture
def make_context():
    def _make(adapter=None):
        context = MagicMock()
        context.bot_data = {SESSIONS_KEY: SessionStore(3600), ADAPTER_KEY: adapter}
        context.bot.send_chat_action = AsyncMock()
        return context

    return _make
