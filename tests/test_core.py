"""
Tests for config helpers, JSON logging and the unit-of-work session scope.
"""

import json
import logging
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from bonus_core.core.config import make_async_db_url
from bonus_core.core.logging import JsonFormatter, setup_logging
from bonus_core.core.time import ensure_aware_utc
from bonus_core.db import session as db_session
from bonus_core.db.base import Base
from bonus_core.db.locks import lock_recipient
from bonus_core.db.models import User


class TestMakeAsyncDbUrl:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("sqlite:///bonus.db", "sqlite+aiosqlite:///bonus.db"),
            ("sqlite+aiosqlite://", "sqlite+aiosqlite://"),
        ],
    )
    def test_conversions(self, raw, expected):
        assert make_async_db_url(raw) == expected

    def test_unsupported(self):
        with pytest.raises(RuntimeError):
            make_async_db_url("mysql://u:p@h/db")


class TestEnsureAwareUtc:
    def test_naive_is_utc(self):
        assert ensure_aware_utc(datetime(2026, 1, 1)) == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_none(self):
        assert ensure_aware_utc(None) is None


class TestJsonFormatter:
    def test_context_fields(self):
        record = logging.LogRecord("bonus_core.test", logging.INFO, __file__, 1, "bonus_created", None, None)
        record.bonus_id = 7
        record.deal = "contract:3"

        payload = json.loads(JsonFormatter().format(record))

        assert payload["msg"] == "bonus_created"
        assert payload["level"] == "INFO"
        assert payload["bonus_id"] == 7
        assert payload["deal"] == "contract:3"
        assert "request_id" not in payload


class TestSessionScope:
    @pytest.fixture
    async def db(self, tmp_path):
        db_session.init_engine(f"sqlite:///{tmp_path / 'bonus.db'}")
        async with db_session.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield
        await db_session.dispose_engine()

    async def _count_users(self):
        async with db_session.get_sessionmaker()() as session:
            return await session.scalar(select(func.count(User.id)))

    async def test_commits_on_success(self, db):
        async with db_session.session_scope() as session:
            session.add(User(name="a", referral_key="A"))

        assert await self._count_users() == 1

    async def test_rolls_back_on_error(self, db):
        with pytest.raises(ValueError):
            async with db_session.session_scope() as session:
                session.add(User(name="a", referral_key="A"))
                await session.flush()
                raise ValueError("boom")

        assert await self._count_users() == 0

    async def test_recipient_lock_is_a_noop_on_sqlite(self, db):
        async with db_session.session_scope() as session:
            await lock_recipient(session, 1)

    async def test_not_initialised(self):
        with pytest.raises(RuntimeError):
            db_session.get_sessionmaker()


class TestSetupLogging:
    def test_installs_json_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging("debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
