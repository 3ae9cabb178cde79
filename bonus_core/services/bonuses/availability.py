from __future__ import annotations

import logging

from sqlalchemy import ColumnElement, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_core.core.time import utcnow
from bonus_core.db.models import Bonus, Contract, Order
from bonus_core.db.models.deal import (CONTRACT_STATUS_COMPLETED, ORDER_STATUS_DELIVERED,
                                       PARTNER_PAYMENT_PAID)
from bonus_core.repo import list_deal_bonuses

log = logging.getLogger(__name__)


def is_deal_available(deal: Contract | Order) -> bool:
    """Contract: completed + partner paid + active. Order: delivered + active.

    Orders never look at partner payment.
    """
    if isinstance(deal, Contract):
        return (
            deal.status == CONTRACT_STATUS_COMPLETED
            and deal.partner_payment_status == PARTNER_PAYMENT_PAID
            and bool(deal.is_active)
        )
    if isinstance(deal, Order):
        return deal.status == ORDER_STATUS_DELIVERED and bool(deal.is_active)
    return False


def availability_clause() -> ColumnElement[bool]:
    """Same predicate as is_deal_available, for queries joining contracts and orders."""
    return or_(
        and_(
            Bonus.contract_id.is_not(None),
            Contract.status == CONTRACT_STATUS_COMPLETED,
            Contract.partner_payment_status == PARTNER_PAYMENT_PAID,
            Contract.is_active.is_(True),
        ),
        and_(
            Bonus.order_id.is_not(None),
            Order.status == ORDER_STATUS_DELIVERED,
            Order.is_active.is_(True),
        ),
    )


class AvailabilityEvaluator:
    def mark_available(self, bonus: Bonus) -> Bonus:
        bonus.available_at = utcnow()
        return bonus

    def revert_to_accrued(self, bonus: Bonus) -> Bonus:
        bonus.available_at = None
        return bonus

    def apply(self, bonus: Bonus, available: bool) -> bool:
        """Move one bonus to match the predicate. Returns True if it changed."""
        if bonus.paid_at is not None:
            return False
        if available and bonus.available_at is None:
            self.mark_available(bonus)
            return True
        if not available and bonus.available_at is not None:
            self.revert_to_accrued(bonus)
            return True
        return False

    async def evaluate_deal(self, session: AsyncSession, deal: Contract | Order) -> int:
        """Re-check every bonus of the deal (agent, curator and referrer move together)."""
        available = is_deal_available(deal)
        changed = 0
        for bonus in await list_deal_bonuses(session, deal):
            if self.apply(bonus, available):
                changed += 1
                log.info(
                    "bonus_marked_available" if available else "bonus_reverted_to_accrued",
                    extra={"bonus_id": bonus.id, "user_id": bonus.user_id, "deal": deal.ref},
                )
        if changed:
            await session.flush()
        return changed
