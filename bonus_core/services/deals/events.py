from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from bonus_core.core.time import utcnow
from bonus_core.db.models import Contract, Order
from bonus_core.db.models.deal import PARTNER_PAYMENT_PAID
from bonus_core.repo import list_deal_bonuses
from bonus_core.services.bonuses.availability import AvailabilityEvaluator
from bonus_core.services.bonuses.service import BonusService

log = logging.getLogger(__name__)


class DealListener(Protocol):
    async def on_created(self, session: AsyncSession, deal: Contract | Order) -> None: ...

    async def on_amount_or_percentage_or_active_changed(
        self, session: AsyncSession, deal: Contract | Order, *, previous_is_active: bool | None = None
    ) -> None: ...

    async def on_status_changed(self, session: AsyncSession, deal: Contract | Order) -> None: ...

    async def on_partner_payment_status_changed(self, session: AsyncSession, contract: Contract) -> None: ...


class DealLifecycle:
    """Keeps bonuses in step with deal changes.

    The deal provider calls one hook per persisted change, inside the same
    session, after mutating the deal.
    """

    def __init__(self, *, ledger: BonusService | None = None, evaluator: AvailabilityEvaluator | None = None) -> None:
        self.evaluator = evaluator or AvailabilityEvaluator()
        self.ledger = ledger or BonusService(evaluator=self.evaluator)

    async def on_created(self, session: AsyncSession, deal: Contract | Order) -> None:
        await session.flush()
        await self.ledger.create_bonus_for_deal(session, deal)
        await self.evaluator.evaluate_deal(session, deal)

    async def on_amount_or_percentage_or_active_changed(
        self, session: AsyncSession, deal: Contract | Order, *, previous_is_active: bool | None = None
    ) -> None:
        await session.flush()
        if await list_deal_bonuses(session, deal):
            await self.ledger.recalculate_deal_bonuses(session, deal)
        else:
            # created inactive or without an amount: bonuses appear on first valid state
            if previous_is_active is False and deal.is_active:
                log.info("deal_activated", extra={"deal": deal.ref})
            await self.ledger.create_bonus_for_deal(session, deal)
        await self.evaluator.evaluate_deal(session, deal)

    async def on_status_changed(self, session: AsyncSession, deal: Contract | Order) -> None:
        await session.flush()
        await self.evaluator.evaluate_deal(session, deal)

    async def on_partner_payment_status_changed(self, session: AsyncSession, contract: Contract) -> None:
        if contract.partner_payment_status == PARTNER_PAYMENT_PAID:
            if contract.partner_payment_date is None:
                contract.partner_payment_date = utcnow().date()
        else:
            contract.partner_payment_date = None
        await session.flush()
        await self.evaluator.evaluate_deal(session, contract)


class DealEventBus:
    """Fans deal hooks out to every registered listener, in registration order."""

    def __init__(self, listeners: list[DealListener] | None = None) -> None:
        self.listeners: list[DealListener] = list(listeners or [])

    def register(self, listener: DealListener) -> DealListener:
        self.listeners.append(listener)
        return listener

    async def on_created(self, session: AsyncSession, deal: Contract | Order) -> None:
        for listener in self.listeners:
            await listener.on_created(session, deal)

    async def on_amount_or_percentage_or_active_changed(
        self, session: AsyncSession, deal: Contract | Order, *, previous_is_active: bool | None = None
    ) -> None:
        for listener in self.listeners:
            await listener.on_amount_or_percentage_or_active_changed(
                session, deal, previous_is_active=previous_is_active
            )

    async def on_status_changed(self, session: AsyncSession, deal: Contract | Order) -> None:
        for listener in self.listeners:
            await listener.on_status_changed(session, deal)

    async def on_partner_payment_status_changed(self, session: AsyncSession, contract: Contract) -> None:
        for listener in self.listeners:
            await listener.on_partner_payment_status_changed(session, contract)
