from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_core.core.errors import AgentPaymentError, SettlementError
from bonus_core.core.time import utcnow
from bonus_core.db.locks import lock_recipient
from bonus_core.db.models import AgentPayment, AgentPaymentBonus, Bonus
from bonus_core.db.models.agent_payment import (AGENT_PAYMENT_COMPLETED, AGENT_PAYMENT_FAILED,
                                                AGENT_PAYMENT_PENDING)
from bonus_core.db.models.payment_request import PAYMENT_METHOD_DETAIL_FIELDS
from bonus_core.services.commission.calculator import ZERO, to_money
from bonus_core.services.payments.settlement import SettlementEngine

log = logging.getLogger(__name__)


class AgentPaymentService:
    """Direct payments to an agent for hand-picked bonuses.

    A payment takes whole bonus rows. While pending it claims them, so payout
    requests cannot link them. Completing marks them paid, failing releases them.
    """

    def __init__(self, *, engine: SettlementEngine | None = None) -> None:
        self.engine = engine or SettlementEngine()

    def calculate_payment_total(self, bonuses: Iterable[Bonus]) -> Decimal:
        return to_money(sum((Decimal(b.commission_amount) for b in bonuses), ZERO))

    async def get_available_bonuses_for_agent(self, session: AsyncSession, agent_id: int) -> list[Bonus]:
        """Available bonuses nobody has claimed any part of, oldest first."""
        return [
            bonus
            for bonus, left in await self.engine.get_free_bonuses(session, agent_id)
            if left == to_money(bonus.commission_amount)
        ]

    async def create_payment(
        self,
        session: AsyncSession,
        *,
        agent_id: int,
        bonus_ids: Iterable[int],
        payment_method: str,
        reference_number: str | None = None,
    ) -> AgentPayment:
        ids = sorted(set(bonus_ids))
        if not ids:
            raise AgentPaymentError("no_bonuses_selected")
        if payment_method not in PAYMENT_METHOD_DETAIL_FIELDS:
            raise AgentPaymentError("invalid_payment_method", payment_method=payment_method)

        await lock_recipient(session, agent_id)

        bonuses = list((await session.scalars(select(Bonus).where(Bonus.id.in_(ids)).order_by(Bonus.id))).all())
        missing = sorted(set(ids) - {b.id for b in bonuses})
        if missing:
            raise AgentPaymentError("bonus_not_found", bonus_ids=missing)
        foreign = [b.id for b in bonuses if b.user_id != agent_id]
        if foreign:
            raise AgentPaymentError("bonus_not_owned", agent_id=agent_id, bonus_ids=foreign)

        free = {b.id for b in await self.get_available_bonuses_for_agent(session, agent_id)}
        busy = [b.id for b in bonuses if b.id not in free]
        if busy:
            raise AgentPaymentError("bonus_not_available", bonus_ids=busy)

        payment = AgentPayment(
            agent_id=agent_id,
            total_amount=self.calculate_payment_total(bonuses),
            payment_method=payment_method,
            reference_number=(reference_number or "").strip() or None,
            status=AGENT_PAYMENT_PENDING,
            payment_date=utcnow(),
        )
        session.add(payment)
        await session.flush()

        session.add_all(AgentPaymentBonus(payment_id=payment.id, bonus_id=b.id) for b in bonuses)
        await session.flush()
        log.info(
            "agent_payment_created id=%s total=%s bonuses=%s",
            payment.id,
            payment.total_amount,
            len(bonuses),
            extra={"user_id": agent_id},
        )
        return payment

    async def _get(self, session: AsyncSession, payment_id: int) -> AgentPayment:
        payment = await session.get(AgentPayment, payment_id)
        if payment is None:
            raise AgentPaymentError("payment_not_found", payment_id=payment_id)
        return payment

    async def get_payment_bonuses(self, session: AsyncSession, payment_id: int) -> list[Bonus]:
        q = (
            select(Bonus)
            .join(AgentPaymentBonus, AgentPaymentBonus.bonus_id == Bonus.id)
            .where(AgentPaymentBonus.payment_id == payment_id)
            .order_by(Bonus.id.asc())
        )
        return list((await session.scalars(q)).all())

    async def complete_payment(self, session: AsyncSession, *, payment_id: int) -> AgentPayment:
        payment = await self._get(session, payment_id)
        await lock_recipient(session, payment.agent_id)

        if payment.status == AGENT_PAYMENT_COMPLETED:
            log.debug("agent_payment_already_completed id=%s", payment.id)
            return payment
        if payment.status != AGENT_PAYMENT_PENDING:
            raise AgentPaymentError("payment_not_pending", payment_id=payment.id, status=payment.status)

        now = utcnow()
        for bonus in await self.get_payment_bonuses(session, payment.id):
            if bonus.paid_at is not None:
                raise SettlementError("bonus_already_paid", payment_id=payment.id, bonus_id=bonus.id)
            bonus.paid_at = now

        payment.status = AGENT_PAYMENT_COMPLETED
        payment.payment_date = now
        await session.flush()
        log.info("agent_payment_completed id=%s", payment.id, extra={"user_id": payment.agent_id})
        return payment

    async def fail_payment(self, session: AsyncSession, *, payment_id: int) -> AgentPayment:
        """Mark the payment failed and give its bonuses back to the available pool."""
        payment = await self._get(session, payment_id)
        await lock_recipient(session, payment.agent_id)

        if payment.status == AGENT_PAYMENT_FAILED:
            return payment

        if payment.status == AGENT_PAYMENT_COMPLETED:
            for bonus in await self.get_payment_bonuses(session, payment.id):
                bonus.paid_at = None

        previous = payment.status
        payment.status = AGENT_PAYMENT_FAILED
        await session.flush()
        log.info(
            "agent_payment_failed id=%s previous=%s",
            payment.id,
            previous,
            extra={"user_id": payment.agent_id},
        )
        return payment
