from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_core.core.errors import SettlementError
from bonus_core.core.time import ensure_aware_utc, utcnow
from bonus_core.db.models import (AgentPayment, AgentPaymentBonus, Bonus, Contract, Order, PaymentRequest,
                                  SettlementLink)
from bonus_core.db.models.agent_payment import AGENT_PAYMENT_PENDING
from bonus_core.db.models.payment_request import REQUEST_STATUS_APPROVED, REQUEST_STATUS_REQUESTED
from bonus_core.services.bonuses.availability import availability_clause
from bonus_core.services.commission.calculator import ZERO, to_money

log = logging.getLogger(__name__)

OPEN_REQUEST_STATUSES = (REQUEST_STATUS_REQUESTED, REQUEST_STATUS_APPROVED)


def _same_or_null(column, value):
    return column.is_(None) if value is None else column == value


def _open_request_ids():
    return select(PaymentRequest.id).where(PaymentRequest.status.in_(OPEN_REQUEST_STATUSES))


class SettlementEngine:
    """Settles payout requests against a recipient's bonuses, oldest first.

    Linking only records which bonus covers how much. Until settlement those
    links are claims: a bonus's free amount is its commission minus what open
    requests already cover, and a bonus in a pending agent payment is claimed
    whole. Bonuses change at settlement: fully covered ones are marked paid, a
    partially covered one is split into a paid part and an unpaid remainder
    that keeps its accrued_at. Rollback merges the remainder back.
    """

    async def get_available_bonuses(
        self, session: AsyncSession, user_id: int, *, for_update: bool = False
    ) -> list[Bonus]:
        q = (
            select(Bonus)
            .outerjoin(Contract, Bonus.contract_id == Contract.id)
            .outerjoin(Order, Bonus.order_id == Order.id)
            .where(
                Bonus.user_id == user_id,
                Bonus.paid_at.is_(None),
                Bonus.commission_amount > 0,
                availability_clause(),
            )
            .order_by(Bonus.accrued_at.asc(), Bonus.id.asc())
        )
        if for_update:
            q = q.with_for_update(of=Bonus)
        return list((await session.scalars(q)).all())

    async def get_claimed_amounts(
        self, session: AsyncSession, user_id: int, *, exclude_request_id: int | None = None
    ) -> dict[int, Decimal]:
        """bonus_id -> amount already promised to open requests or pending agent payments."""
        q = (
            select(SettlementLink.bonus_id, func.sum(SettlementLink.covered_amount))
            .join(PaymentRequest, SettlementLink.payment_request_id == PaymentRequest.id)
            .join(Bonus, SettlementLink.bonus_id == Bonus.id)
            .where(
                Bonus.user_id == user_id,
                Bonus.paid_at.is_(None),
                PaymentRequest.status.in_(OPEN_REQUEST_STATUSES),
            )
            .group_by(SettlementLink.bonus_id)
        )
        if exclude_request_id is not None:
            q = q.where(PaymentRequest.id != exclude_request_id)
        claimed = {bonus_id: to_money(total) for bonus_id, total in (await session.execute(q)).all()}

        # agent payments take whole rows
        pending = (
            select(Bonus.id, Bonus.commission_amount)
            .join(AgentPaymentBonus, AgentPaymentBonus.bonus_id == Bonus.id)
            .join(AgentPayment, AgentPaymentBonus.payment_id == AgentPayment.id)
            .where(
                Bonus.user_id == user_id,
                Bonus.paid_at.is_(None),
                AgentPayment.status == AGENT_PAYMENT_PENDING,
            )
        )
        for bonus_id, amount in (await session.execute(pending)).all():
            claimed[bonus_id] = to_money(amount)
        return claimed

    async def get_free_bonuses(
        self, session: AsyncSession, user_id: int, *, for_update: bool = False
    ) -> list[tuple[Bonus, Decimal]]:
        """Available bonuses in FIFO order with the part nobody has claimed yet."""
        bonuses = await self.get_available_bonuses(session, user_id, for_update=for_update)
        claimed = await self.get_claimed_amounts(session, user_id)
        free: list[tuple[Bonus, Decimal]] = []
        for bonus in bonuses:
            left = to_money(Decimal(bonus.commission_amount) - claimed.get(bonus.id, ZERO))
            if left > 0:
                free.append((bonus, left))
        return free

    async def calculate_available_balance(self, session: AsyncSession, user_id: int) -> Decimal:
        free = await self.get_free_bonuses(session, user_id)
        return to_money(sum((left for _, left in free), ZERO))

    async def link_bonuses_to_request(
        self,
        session: AsyncSession,
        request: PaymentRequest,
        user_id: int,
        amount,
        *,
        for_update: bool = False,
    ) -> list[SettlementLink]:
        """Cover `amount` from the free part of the FIFO queue. The caller checks the balance first."""
        remaining = to_money(amount)
        links: list[SettlementLink] = []

        for bonus, left in await self.get_free_bonuses(session, user_id, for_update=for_update):
            if remaining <= 0:
                break
            covered = min(left, remaining)
            link = SettlementLink(
                payment_request_id=request.id,
                bonus_id=bonus.id,
                covered_amount=covered,
            )
            session.add(link)
            links.append(link)
            remaining = to_money(remaining - covered)

        if remaining > 0:
            log.warning(
                "payment_request_under_covered remaining=%s",
                remaining,
                extra={"request_id": request.id, "user_id": user_id},
            )

        await session.flush()
        return links

    async def _linked_bonuses(
        self, session: AsyncSession, request: PaymentRequest
    ) -> list[tuple[SettlementLink, Bonus]]:
        q = (
            select(SettlementLink, Bonus)
            .join(Bonus, SettlementLink.bonus_id == Bonus.id)
            .where(SettlementLink.payment_request_id == request.id)
            .order_by(SettlementLink.id.asc())
            .execution_options(populate_existing=True)
        )
        return [(link, bonus) for link, bonus in (await session.execute(q)).all()]

    async def is_covered(self, session: AsyncSession, request: PaymentRequest) -> bool:
        """True if every link of `request` still fits in the free part of its bonus."""
        claimed = await self.get_claimed_amounts(session, request.user_id, exclude_request_id=request.id)
        for link, bonus in await self._linked_bonuses(session, request):
            if bonus.paid_at is not None:
                return False
            free = Decimal(bonus.commission_amount) - claimed.get(bonus.id, ZERO)
            if Decimal(link.covered_amount) > free:
                return False
        return True

    async def settle_bonuses(self, session: AsyncSession, request: PaymentRequest) -> None:
        """Mark the request's linked bonuses paid, splitting partially covered ones.

        Raises SettlementError if a linked bonus is already paid or smaller than
        its link; nothing is paid twice.
        """
        now = utcnow()
        for link, bonus in await self._linked_bonuses(session, request):
            if bonus.paid_at is not None:
                raise SettlementError("bonus_already_paid", request_id=request.id, bonus_id=bonus.id)

            covered = Decimal(link.covered_amount)
            amount = Decimal(bonus.commission_amount)
            if covered > amount:
                raise SettlementError(
                    "bonus_smaller_than_link",
                    request_id=request.id,
                    bonus_id=bonus.id,
                    covered=covered,
                    amount=amount,
                )

            if covered == amount:
                bonus.paid_at = now
                continue

            remainder = bonus.clone_remainder(to_money(amount - covered))
            session.add(remainder)
            bonus.commission_amount = covered
            bonus.paid_at = now
            await session.flush()

            # other open requests now claim the unpaid part
            await session.execute(
                update(SettlementLink)
                .where(
                    SettlementLink.bonus_id == bonus.id,
                    SettlementLink.payment_request_id != request.id,
                    SettlementLink.payment_request_id.in_(_open_request_ids()),
                )
                .values(bonus_id=remainder.id)
                .execution_options(synchronize_session="fetch")
            )
            log.info(
                "bonus_split remainder_id=%s remainder=%s",
                remainder.id,
                remainder.commission_amount,
                extra={"request_id": request.id, "bonus_id": bonus.id},
            )

        await session.flush()
        log.info("payment_request_settled", extra={"request_id": request.id, "user_id": request.user_id})

    async def find_remainder_bonus(self, session: AsyncSession, original: Bonus) -> Bonus | None:
        """The unpaid sibling split off `original` at settlement, if it is still free to merge."""
        open_link = (
            select(SettlementLink.id)
            .join(PaymentRequest, SettlementLink.payment_request_id == PaymentRequest.id)
            .where(
                SettlementLink.bonus_id == Bonus.id,
                PaymentRequest.status.in_(OPEN_REQUEST_STATUSES),
            )
        )
        agent_payment = select(AgentPaymentBonus.id).where(AgentPaymentBonus.bonus_id == Bonus.id)
        q = (
            select(Bonus)
            .where(
                Bonus.id > original.id,
                Bonus.user_id == original.user_id,
                Bonus.paid_at.is_(None),
                Bonus.recipient_type == original.recipient_type,
                _same_or_null(Bonus.contract_id, original.contract_id),
                _same_or_null(Bonus.order_id, original.order_id),
                _same_or_null(Bonus.referral_user_id, original.referral_user_id),
                ~open_link.exists(),
                ~agent_payment.exists(),
            )
            .order_by(Bonus.created_at.asc(), Bonus.id.asc())
        )
        accrued_on = ensure_aware_utc(original.accrued_at).date()
        for candidate in (await session.scalars(q)).all():
            if ensure_aware_utc(candidate.accrued_at).date() == accrued_on:
                return candidate
        return None

    async def rollback_settlement(self, session: AsyncSession, request: PaymentRequest) -> None:
        """Undo settle_bonuses: merge remainders back and clear paid_at."""
        for link, bonus in await self._linked_bonuses(session, request):
            if bonus.paid_at is None:
                log.warning(
                    "settlement_rollback_skipped_not_paid",
                    extra={"request_id": request.id, "bonus_id": bonus.id},
                )
                continue

            remainder = await self.find_remainder_bonus(session, bonus)
            if remainder is not None:
                bonus.commission_amount = to_money(
                    Decimal(bonus.commission_amount) + Decimal(remainder.commission_amount)
                )
                # closed requests may still point at the remainder
                await session.execute(
                    update(SettlementLink)
                    .where(SettlementLink.bonus_id == remainder.id)
                    .values(bonus_id=bonus.id)
                    .execution_options(synchronize_session="fetch")
                )
                await session.delete(remainder)
                log.info(
                    "bonus_merged remainder_id=%s",
                    remainder.id,
                    extra={"request_id": request.id, "bonus_id": bonus.id},
                )
            bonus.paid_at = None
            await session.flush()

        log.info(
            "payment_request_settlement_rolled_back",
            extra={"request_id": request.id, "user_id": request.user_id},
        )

    async def is_settled(self, session: AsyncSession, request: PaymentRequest) -> bool:
        paid_links = await session.scalar(
            select(func.count(SettlementLink.id))
            .join(Bonus, SettlementLink.bonus_id == Bonus.id)
            .where(SettlementLink.payment_request_id == request.id, Bonus.paid_at.is_not(None))
        )
        return bool(paid_links)

    async def get_request_links(self, session: AsyncSession, request_id: int) -> list[SettlementLink]:
        q = (
            select(SettlementLink)
            .where(SettlementLink.payment_request_id == request_id)
            .order_by(SettlementLink.id.asc())
        )
        return list((await session.scalars(q)).all())
