from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_core.core.errors import PaymentRequestError
from bonus_core.core.time import utcnow
from bonus_core.db.locks import lock_recipient
from bonus_core.db.models import PaymentRequest, SettlementLink
from bonus_core.db.models.payment_request import (PAYMENT_METHOD_DETAIL_FIELDS, REQUEST_STATUS_CANCELLED,
                                                  REQUEST_STATUS_PAID, REQUEST_STATUS_REQUESTED, REQUEST_STATUSES)
from bonus_core.services.commission.calculator import to_money
from bonus_core.services.payments.settlement import SettlementEngine

log = logging.getLogger(__name__)


def _parse_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise PaymentRequestError("amount_not_positive", amount=amount) from None
    if not value.is_finite() or value <= 0:
        raise PaymentRequestError("amount_not_positive", amount=amount)
    return to_money(value)


class PaymentRequestService:
    def __init__(self, *, engine: SettlementEngine | None = None) -> None:
        self.engine = engine or SettlementEngine()

    async def create_request(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        amount,
        payment_method: str,
        card_number: str | None = None,
        phone_number: str | None = None,
        contact_info: str | None = None,
        comment: str | None = None,
    ) -> PaymentRequest:
        """Validate, then create the request and link it to the oldest available bonuses.

        Balance check and linking happen under the recipient lock so two
        concurrent requests cannot both spend the same bonus.
        """
        value = _parse_amount(amount)

        field = PAYMENT_METHOD_DETAIL_FIELDS.get(payment_method)
        if field is None:
            raise PaymentRequestError("invalid_payment_method", payment_method=payment_method)

        details = {
            "card_number": card_number,
            "phone_number": phone_number,
            "contact_info": contact_info,
        }
        detail = (details[field] or "").strip()
        if not detail:
            raise PaymentRequestError(f"missing_{field}", payment_method=payment_method)

        await lock_recipient(session, user_id)

        balance = await self.engine.calculate_available_balance(session, user_id)
        if value > balance:
            raise PaymentRequestError("amount_exceeds_balance", amount=value, balance=balance)

        request = PaymentRequest(
            user_id=user_id,
            amount=value,
            payment_method=payment_method,
            comment=comment,
            status=REQUEST_STATUS_REQUESTED,
        )
        setattr(request, field, detail)
        session.add(request)
        await session.flush()

        links = await self.engine.link_bonuses_to_request(session, request, user_id, value, for_update=True)
        log.info(
            "payment_request_created amount=%s links=%s",
            value,
            len(links),
            extra={"request_id": request.id, "user_id": user_id},
        )
        return request

    async def _get(self, session: AsyncSession, request_id: int) -> PaymentRequest:
        request = await session.get(PaymentRequest, request_id)
        if request is None:
            raise PaymentRequestError("request_not_found", request_id=request_id)
        return request

    async def update_status(self, session: AsyncSession, *, request_id: int, status: str) -> PaymentRequest:
        """Apply an admin status change.

        Entering paid settles the linked bonuses, leaving paid rolls them back.
        Setting the status it already has touches nothing. A cancelled request
        can only be reopened while its bonuses are still unclaimed.
        """
        if status not in REQUEST_STATUSES:
            raise PaymentRequestError("unknown_status", status=status)

        request = await self._get(session, request_id)
        await lock_recipient(session, request.user_id)

        previous = request.status
        if previous == status:
            log.debug("payment_request_status_unchanged", extra={"request_id": request.id})
            return request

        if previous == REQUEST_STATUS_CANCELLED and not await self.engine.is_covered(session, request):
            raise PaymentRequestError("request_not_covered", request_id=request.id, status=status)

        request.status = status
        request.payment_date = utcnow() if status == REQUEST_STATUS_PAID else None
        await session.flush()

        if status == REQUEST_STATUS_PAID:
            await self.engine.settle_bonuses(session, request)
        elif previous == REQUEST_STATUS_PAID:
            await self.engine.rollback_settlement(session, request)

        log.info(
            "payment_request_status_changed %s->%s",
            previous,
            status,
            extra={"request_id": request.id, "user_id": request.user_id},
        )
        return request

    async def delete_request(self, session: AsyncSession, *, request_id: int) -> None:
        request = await self._get(session, request_id)
        if request.status == REQUEST_STATUS_PAID:
            raise PaymentRequestError("cannot_delete_paid_request", request_id=request_id)

        await session.execute(delete(SettlementLink).where(SettlementLink.payment_request_id == request.id))
        await session.delete(request)
        await session.flush()
        log.info("payment_request_deleted", extra={"request_id": request_id, "user_id": request.user_id})

    async def get_request_links(self, session: AsyncSession, request_id: int) -> list[SettlementLink]:
        return await self.engine.get_request_links(session, request_id)
