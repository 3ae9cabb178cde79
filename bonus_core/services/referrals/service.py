from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_core.core.config import settings
from bonus_core.core.time import ensure_aware_utc, utcnow
from bonus_core.db.models import Bonus, Contract, Order, User
from bonus_core.db.models.bonus import RECIPIENT_REFERRER
from bonus_core.repo import get_user_by_referral_key, list_referred_users
from bonus_core.services.commission.calculator import ZERO, calculate_commission, to_money

log = logging.getLogger(__name__)


class ReferralBonusService:
    """Referrer's cut (0.5% by default) of deals closed by the agents they invited.

    Paid only while the agent is within the program window counted from the
    agent's own registration date.
    """

    def __init__(
        self,
        *,
        percentage: Decimal | None = None,
        program_years: int | None = None,
    ) -> None:
        self.percentage = Decimal(str(percentage)) if percentage is not None else settings.referral_commission_percentage
        self.program_years = int(program_years if program_years is not None else settings.referral_program_years)

    def calculate_referral_commission(self, amount) -> Decimal:
        return calculate_commission(amount, self.percentage)

    async def get_referrer_id(self, session: AsyncSession, agent_id: int) -> int | None:
        agent = await session.get(User, agent_id)
        if not agent or not agent.referred_by_key:
            return None
        referrer = await get_user_by_referral_key(session, agent.referred_by_key)
        if not referrer or int(referrer.id) == int(agent_id):
            return None
        return int(referrer.id)

    def program_expires_at(self, registered_at: datetime) -> datetime:
        return ensure_aware_utc(registered_at) + relativedelta(years=self.program_years)

    async def is_program_active(
        self, session: AsyncSession, agent_id: int, *, now: datetime | None = None
    ) -> bool:
        agent = await session.get(User, agent_id)
        if not agent or not agent.created_at:
            return False
        return ensure_aware_utc(now or utcnow()) < self.program_expires_at(agent.created_at)

    async def maybe_create_referral_bonus(
        self, session: AsyncSession, deal: Contract | Order, agent_id: int
    ) -> Bonus | None:
        """Create the referrer's bonus for this deal, or silently do nothing."""
        referrer_id = await self.get_referrer_id(session, agent_id)
        if not referrer_id:
            return None

        if not await self.is_program_active(session, agent_id):
            log.info(
                "referral_program_expired",
                extra={"user_id": agent_id, "deal": deal.ref},
            )
            return None

        if not deal.is_active or deal.amount is None:
            return None
        # orders need a positive amount; contracts let a zero amount through
        if isinstance(deal, Order) and deal.amount <= 0:
            return None

        commission = self.calculate_referral_commission(deal.amount)
        bonus = Bonus.for_deal(
            deal,
            user_id=referrer_id,
            recipient_type=RECIPIENT_REFERRER,
            commission_amount=commission,
            percentage=self.percentage,
            referral_user_id=agent_id,
        )
        session.add(bonus)
        await session.flush()

        log.info(
            "referral_bonus_created",
            extra={"bonus_id": bonus.id, "user_id": referrer_id, "deal": deal.ref},
        )
        return bonus

    async def get_referral_stats(self, session: AsyncSession, referrer_id: int) -> dict:
        """Pending / available / paid sums of referrer bonuses, plus per-referral totals."""
        q = select(Bonus).where(Bonus.user_id == referrer_id, Bonus.recipient_type == RECIPIENT_REFERRER)
        bonuses = (await session.scalars(q)).all()

        pending = available = paid = ZERO
        per_user: dict[int, Decimal] = {}
        for b in bonuses:
            amount = Decimal(b.commission_amount)
            if b.paid_at is not None:
                paid += amount
            elif b.available_at is not None:
                available += amount
            else:
                pending += amount
            if b.referral_user_id is not None:
                per_user[b.referral_user_id] = per_user.get(b.referral_user_id, ZERO) + amount

        referrals = []
        referrer = await session.get(User, referrer_id)
        referred = await list_referred_users(session, referrer) if referrer else []
        for user in referred:
            referrals.append(
                {
                    "user_id": user.id,
                    "name": user.name,
                    "email": user.email,
                    "registered_at": user.created_at,
                    "is_active": await self.is_program_active(session, user.id),
                    "total_bonus": to_money(per_user.get(user.id, ZERO)),
                }
            )

        return {
            "total_pending": to_money(pending),
            "total_available": to_money(available),
            "total_paid": to_money(paid),
            "total": to_money(pending + available + paid),
            "referrals": referrals,
        }
