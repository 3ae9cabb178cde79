from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_core.db.models import Bonus, Contract, Order
from bonus_core.db.models.bonus import RECIPIENT_AGENT, RECIPIENT_CURATOR, RECIPIENT_REFERRER
from bonus_core.repo import (get_agent_id_for_project, get_curator_id_for_project, get_deal_for_bonus,
                             list_curator_assignments, list_deal_bonuses)
from bonus_core.services.bonuses.availability import AvailabilityEvaluator, is_deal_available
from bonus_core.services.commission.calculator import ZERO, calculate_commission, to_money
from bonus_core.services.referrals.service import ReferralBonusService

log = logging.getLogger(__name__)


def _accepts_amount(deal: Contract | Order) -> bool:
    """Active deal with an amount. Zero still gives a (zero) bonus row."""
    return bool(deal.is_active) and deal.amount is not None


class BonusService:
    """Bonus ledger: creates and recalculates bonus rows in lockstep with deals."""

    def __init__(
        self,
        *,
        referrals: ReferralBonusService | None = None,
        evaluator: AvailabilityEvaluator | None = None,
    ) -> None:
        self.referrals = referrals or ReferralBonusService()
        self.evaluator = evaluator or AvailabilityEvaluator()

    def percentage_for(self, deal: Contract | Order, recipient_type: str) -> Decimal:
        if recipient_type == RECIPIENT_AGENT:
            return Decimal(deal.agent_percentage)
        if recipient_type == RECIPIENT_CURATOR:
            return Decimal(deal.curator_percentage)
        if recipient_type == RECIPIENT_REFERRER:
            return self.referrals.percentage
        raise ValueError(f"unknown recipient_type: {recipient_type}")

    async def _create_role_bonus(
        self, session: AsyncSession, deal: Contract | Order, *, user_id: int, recipient_type: str
    ) -> Bonus:
        percentage = self.percentage_for(deal, recipient_type)
        bonus = Bonus.for_deal(
            deal,
            user_id=user_id,
            recipient_type=recipient_type,
            commission_amount=calculate_commission(deal.amount, percentage),
            percentage=percentage,
        )
        session.add(bonus)
        await session.flush()
        log.info(
            "bonus_created",
            extra={"bonus_id": bonus.id, "user_id": user_id, "deal": deal.ref},
        )
        return bonus

    async def create_bonus_for_deal(self, session: AsyncSession, deal: Contract | Order) -> Bonus | None:
        """Agent bonus (returned), plus curator and referrer siblings when they resolve.

        Everything is flushed into the caller's transaction.
        """
        if not _accepts_amount(deal):
            return None

        agent_bonus = None
        agent_id = await get_agent_id_for_project(session, deal.project_id)
        if agent_id:
            agent_bonus = await self._create_role_bonus(
                session, deal, user_id=agent_id, recipient_type=RECIPIENT_AGENT
            )
        else:
            log.info("bonus_agent_not_resolved", extra={"deal": deal.ref})

        curator_id = await get_curator_id_for_project(session, deal.project_id)
        if curator_id:
            await self._create_role_bonus(session, deal, user_id=curator_id, recipient_type=RECIPIENT_CURATOR)

        if agent_id:
            await self.referrals.maybe_create_referral_bonus(session, deal, agent_id)

        return agent_bonus

    async def _siblings_total(self, session: AsyncSession, bonus: Bonus) -> Decimal:
        """Amount held by other rows split off the same logical bonus."""
        q = select(Bonus.commission_amount).where(
            Bonus.id != bonus.id,
            Bonus.user_id == bonus.user_id,
            Bonus.recipient_type == bonus.recipient_type,
            Bonus.contract_id.is_(None) if bonus.contract_id is None else Bonus.contract_id == bonus.contract_id,
            Bonus.order_id.is_(None) if bonus.order_id is None else Bonus.order_id == bonus.order_id,
            Bonus.referral_user_id.is_(None)
            if bonus.referral_user_id is None
            else Bonus.referral_user_id == bonus.referral_user_id,
        )
        amounts = (await session.scalars(q)).all()
        return sum((Decimal(a) for a in amounts), ZERO)

    async def recalculate_bonus(self, session: AsyncSession, bonus: Bonus) -> Bonus:
        """Bring the commission back in line with the deal's current terms.

        Paid rows are left alone. A row split off by a partial payout only gets
        what its siblings have not already taken.
        """
        if bonus.paid_at is not None:
            log.debug("bonus_recalculation_skipped_paid", extra={"bonus_id": bonus.id})
            return bonus

        deal = await get_deal_for_bonus(session, bonus)
        if deal is None:
            return bonus

        if not deal.is_active:
            bonus.commission_amount = ZERO
        else:
            percentage = self.percentage_for(deal, bonus.recipient_type)
            full = calculate_commission(deal.amount, percentage)
            taken = await self._siblings_total(session, bonus)
            bonus.commission_amount = to_money(max(full - taken, ZERO))
            bonus.percentage = percentage

        await session.flush()
        log.info(
            "bonus_recalculated",
            extra={"bonus_id": bonus.id, "user_id": bonus.user_id, "deal": deal.ref},
        )
        return bonus

    async def get_deal_bonuses(self, session: AsyncSession, deal: Contract | Order) -> list[Bonus]:
        return await list_deal_bonuses(session, deal)

    async def recalculate_deal_bonuses(self, session: AsyncSession, deal: Contract | Order) -> list[Bonus]:
        bonuses = await list_deal_bonuses(session, deal)
        for bonus in bonuses:
            await self.recalculate_bonus(session, bonus)
        return bonuses

    async def create_missing_curator_bonuses(self, session: AsyncSession, *, dry_run: bool = False) -> int:
        """Backfill curator bonuses for active deals of projects that have a curator."""
        created = 0
        for assignment in await list_curator_assignments(session):
            for model, column in ((Contract, Bonus.contract_id), (Order, Bonus.order_id)):
                deals = (
                    await session.scalars(
                        select(model)
                        .where(model.project_id == assignment.project_id, model.is_active.is_(True))
                        .order_by(model.id.asc())
                    )
                ).all()
                for deal in deals:
                    exists = await session.scalar(
                        select(Bonus.id)
                        .where(column == deal.id, Bonus.recipient_type == RECIPIENT_CURATOR)
                        .limit(1)
                    )
                    if exists or not _accepts_amount(deal):
                        continue
                    if dry_run:
                        log.info("curator_bonus_would_be_created", extra={"deal": deal.ref})
                        created += 1
                        continue
                    bonus = await self._create_role_bonus(
                        session, deal, user_id=assignment.user_id, recipient_type=RECIPIENT_CURATOR
                    )
                    self.evaluator.apply(bonus, is_deal_available(deal))
                    created += 1

        await session.flush()
        log.info("curator_bonus_backfill_done created=%s dry_run=%s", created, dry_run)
        return created

    async def get_recipient_stats(
        self,
        session: AsyncSession,
        user_id: int,
        *,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        source_type: str | None = None,
    ) -> dict:
        """Totals for one recipient: everything accrued, what is available now, what was paid."""
        q = select(Bonus).where(Bonus.user_id == user_id)
        if date_from is not None:
            q = q.where(Bonus.accrued_at >= date_from)
        if date_to is not None:
            q = q.where(Bonus.accrued_at <= date_to)
        if source_type == "contract":
            q = q.where(Bonus.contract_id.is_not(None))
        elif source_type == "order":
            q = q.where(Bonus.order_id.is_not(None))

        accrued = available = paid = ZERO
        for b in (await session.scalars(q)).all():
            amount = Decimal(b.commission_amount)
            accrued += amount
            if b.paid_at is not None:
                paid += amount
            elif b.available_at is not None:
                available += amount

        return {
            "total_accrued": to_money(accrued),
            "total_available": to_money(available),
            "total_paid": to_money(paid),
        }
