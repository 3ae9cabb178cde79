from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_core.core.config import settings
from bonus_core.core.time import utcnow
from bonus_core.db.models import Bonus, Contract, Order, Project, ProjectUser, User
from bonus_core.db.models.deal import (CONTRACT_STATUS_IN_PROGRESS, ORDER_STATUS_NEW,
                                       PARTNER_PAYMENT_PENDING)
from bonus_core.db.models.project import ROLE_AGENT, ROLE_CURATOR

log = logging.getLogger(__name__)

Deal = Contract | Order


# ---- Project / agent resolution ----------------------------------------------
async def get_agent_id_for_project(session: AsyncSession, project_id: int) -> int | None:
    """Agent assigned to the project; falls back to the legacy projects.agent_id."""
    agent_id = await session.scalar(
        select(ProjectUser.user_id)
        .where(ProjectUser.project_id == project_id, ProjectUser.role == ROLE_AGENT)
        .order_by(ProjectUser.id.asc())
        .limit(1)
    )
    if agent_id:
        return int(agent_id)

    project = await session.get(Project, project_id)
    if project and project.agent_id:
        return int(project.agent_id)
    return None


async def get_curator_id_for_project(session: AsyncSession, project_id: int) -> int | None:
    curator_id = await session.scalar(
        select(ProjectUser.user_id)
        .where(ProjectUser.project_id == project_id, ProjectUser.role == ROLE_CURATOR)
        .order_by(ProjectUser.id.asc())
        .limit(1)
    )
    return int(curator_id) if curator_id else None


async def list_curator_assignments(session: AsyncSession) -> list[ProjectUser]:
    q = select(ProjectUser).where(ProjectUser.role == ROLE_CURATOR).order_by(ProjectUser.id.asc())
    return list((await session.scalars(q)).all())


# ---- Referral keys ----------------------------------------------------------------
async def get_user_by_referral_key(session: AsyncSession, key: str) -> User | None:
    if not key:
        return None
    return await session.scalar(select(User).where(User.referral_key == key).limit(1))


async def list_referred_users(session: AsyncSession, referrer: User) -> list[User]:
    if not referrer.referral_key:
        return []
    q = (
        select(User)
        .where(User.referred_by_key == referrer.referral_key, User.id != referrer.id)
        .order_by(User.id.asc())
    )
    return list((await session.scalars(q)).all())


# ---- Deals ------------------------------------------------------------------------
async def get_deal_for_bonus(session: AsyncSession, bonus: Bonus) -> Deal | None:
    """Deal the bonus was generated by (the session's copy, pending changes included)."""
    if bonus.contract_id is not None:
        return await session.get(Contract, bonus.contract_id)
    if bonus.order_id is not None:
        return await session.get(Order, bonus.order_id)
    return None


async def list_deal_bonuses(session: AsyncSession, deal: Deal) -> list[Bonus]:
    column = Bonus.contract_id if isinstance(deal, Contract) else Bonus.order_id
    q = select(Bonus).where(column == deal.id).order_by(Bonus.id.asc())
    return list((await session.scalars(q)).all())


async def create_contract(
    session: AsyncSession,
    *,
    project_id: int,
    amount: Decimal | int | float | str | None,
    agent_percentage: Decimal | None = None,
    curator_percentage: Decimal | None = None,
    is_active: bool = True,
    status: str = CONTRACT_STATUS_IN_PROGRESS,
    partner_payment_status: str = PARTNER_PAYMENT_PENDING,
    number: str | None = None,
) -> Contract:
    """Insert a contract with the house default percentages (3% agent, 2% curator)."""
    contract = Contract(
        project_id=project_id,
        number=number,
        amount=_to_decimal(amount),
        agent_percentage=_pct(agent_percentage, settings.contract_agent_percentage, zero_means_default=False),
        curator_percentage=_pct(curator_percentage, settings.contract_curator_percentage, zero_means_default=False),
        is_active=is_active,
        status=status,
        partner_payment_status=partner_payment_status,
        created_at=utcnow(),
    )
    session.add(contract)
    await session.flush()
    return contract


async def create_order(
    session: AsyncSession,
    *,
    project_id: int,
    amount: Decimal | int | float | str | None,
    agent_percentage: Decimal | None = None,
    curator_percentage: Decimal | None = None,
    is_active: bool = True,
    status: str = ORDER_STATUS_NEW,
    number: str | None = None,
) -> Order:
    """Insert an order. A missing or zero percentage falls back to 5%."""
    order = Order(
        project_id=project_id,
        number=number,
        amount=_to_decimal(amount),
        agent_percentage=_pct(agent_percentage, settings.order_agent_percentage, zero_means_default=True),
        curator_percentage=_pct(curator_percentage, settings.order_curator_percentage, zero_means_default=True),
        is_active=is_active,
        status=status,
        created_at=utcnow(),
    )
    session.add(order)
    await session.flush()
    return order


def _to_decimal(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def _pct(value, default: Decimal, *, zero_means_default: bool) -> Decimal:
    if value is None:
        return default
    value = Decimal(str(value))
    if zero_means_default and value == 0:
        return default
    return value
