from __future__ import annotations

import itertools
from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bonus_core.core.time import utcnow
from bonus_core.db.base import Base
from bonus_core.db.models import Project, ProjectUser, User
from bonus_core.db.models.project import ROLE_AGENT, ROLE_CURATOR
from bonus_core.repo import create_contract, create_order

_seq = itertools.count(1)


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    sm = async_sessionmaker(engine, expire_on_commit=False)
    async with sm() as session:
        yield session


@pytest.fixture
def make_user(session):
    async def _make(
        *,
        name: str | None = None,
        referral_key: str | None = None,
        referred_by_key: str | None = None,
        created_at: datetime | None = None,
    ) -> User:
        n = next(_seq)
        user = User(
            name=name or f"user-{n}",
            email=f"user-{n}@example.com",
            referral_key=referral_key or f"ref-{n}",
            referred_by_key=referred_by_key,
            created_at=created_at or utcnow(),
        )
        session.add(user)
        await session.flush()
        return user

    return _make


@pytest.fixture
def make_project(session):
    async def _make(*, agent: User | None = None, curator: User | None = None) -> Project:
        project = Project(name=f"project-{next(_seq)}")
        session.add(project)
        await session.flush()
        if agent is not None:
            session.add(ProjectUser(project_id=project.id, user_id=agent.id, role=ROLE_AGENT))
        if curator is not None:
            session.add(ProjectUser(project_id=project.id, user_id=curator.id, role=ROLE_CURATOR))
        await session.flush()
        return project

    return _make


@pytest.fixture
def make_contract(session):
    async def _make(project: Project, amount="100000", **kwargs):
        return await create_contract(session, project_id=project.id, amount=amount, **kwargs)

    return _make


@pytest.fixture
def make_order(session):
    async def _make(project: Project, amount="10000", **kwargs):
        return await create_order(session, project_id=project.id, amount=amount, **kwargs)

    return _make


@pytest.fixture
async def agent(make_user):
    return await make_user(name="agent")


@pytest.fixture
async def curator(make_user):
    return await make_user(name="curator")


@pytest.fixture
async def project(make_project, agent, curator):
    return await make_project(agent=agent, curator=curator)
