"""
Tests for direct agent payments over whole bonus rows.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from bonus_core.core.errors import AgentPaymentError
from bonus_core.db.models.agent_payment import (AGENT_PAYMENT_COMPLETED, AGENT_PAYMENT_FAILED,
                                                AGENT_PAYMENT_PENDING)
from bonus_core.db.models.bonus import STATUS_AVAILABLE, STATUS_PAID
from bonus_core.db.models.deal import ORDER_STATUS_DELIVERED, ORDER_STATUS_NEW
from bonus_core.db.models.payment_request import REQUEST_STATUS_CANCELLED
from bonus_core.services.bonuses.availability import AvailabilityEvaluator
from bonus_core.services.bonuses.service import BonusService
from bonus_core.services.payments.agent_payments import AgentPaymentService
from bonus_core.services.payments.service import PaymentRequestService
from bonus_core.services.payments.settlement import SettlementEngine

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settlement():
    return SettlementEngine()


@pytest.fixture
def payments(settlement):
    return AgentPaymentService(engine=settlement)


@pytest.fixture
def requests(settlement):
    return PaymentRequestService(engine=settlement)


@pytest.fixture
def bonus_for(session, make_project, make_order):
    async def _make(user, amount: str, *, offset: int = 0, status: str = ORDER_STATUS_DELIVERED):
        project = await make_project(agent=user)
        order = await make_order(project, amount=amount, agent_percentage=100, status=status)
        bonus = await BonusService().create_bonus_for_deal(session, order)
        bonus.accrued_at = T0 + timedelta(days=offset)
        await AvailabilityEvaluator().evaluate_deal(session, order)
        return bonus

    return _make


class TestCreatePayment:
    async def test_totals_selected_bonuses(self, session, payments, bonus_for, agent):
        b1 = await bonus_for(agent, "1000")
        b2 = await bonus_for(agent, "250.50", offset=1)
        await bonus_for(agent, "300", offset=2)

        payment = await payments.create_payment(
            session, agent_id=agent.id, bonus_ids=[b2.id, b1.id], payment_method="card", reference_number=" PP-17 "
        )

        assert payment.status == AGENT_PAYMENT_PENDING
        assert payment.total_amount == Decimal("1250.50")
        assert payment.reference_number == "PP-17"
        assert [b.id for b in await payments.get_payment_bonuses(session, payment.id)] == [b1.id, b2.id]
        assert b1.paid_at is None

    async def test_empty_selection(self, session, payments, agent):
        with pytest.raises(AgentPaymentError) as exc:
            await payments.create_payment(session, agent_id=agent.id, bonus_ids=[], payment_method="card")
        assert exc.value.code == "no_bonuses_selected"

    async def test_unknown_method(self, session, payments, bonus_for, agent):
        b1 = await bonus_for(agent, "100")
        with pytest.raises(AgentPaymentError) as exc:
            await payments.create_payment(session, agent_id=agent.id, bonus_ids=[b1.id], payment_method="cash")
        assert exc.value.code == "invalid_payment_method"

    async def test_missing_bonus(self, session, payments, bonus_for, agent):
        b1 = await bonus_for(agent, "100")
        with pytest.raises(AgentPaymentError) as exc:
            await payments.create_payment(session, agent_id=agent.id, bonus_ids=[b1.id, 9999], payment_method="sbp")
        assert exc.value.code == "bonus_not_found"
        assert exc.value.details["bonus_ids"] == [9999]

    async def test_someone_elses_bonus(self, session, payments, bonus_for, agent, make_user):
        other = await make_user(name="other-agent")
        foreign = await bonus_for(other, "100")

        with pytest.raises(AgentPaymentError) as exc:
            await payments.create_payment(session, agent_id=agent.id, bonus_ids=[foreign.id], payment_method="card")
        assert exc.value.code == "bonus_not_owned"

    async def test_accrued_bonus_is_not_payable(self, session, payments, bonus_for, agent):
        accrued = await bonus_for(agent, "100", status=ORDER_STATUS_NEW)

        with pytest.raises(AgentPaymentError) as exc:
            await payments.create_payment(session, agent_id=agent.id, bonus_ids=[accrued.id], payment_method="card")
        assert exc.value.code == "bonus_not_available"

    async def test_bonus_claimed_by_payout_request(self, session, payments, requests, bonus_for, agent):
        b1 = await bonus_for(agent, "1000")
        await requests.create_request(
            session, user_id=agent.id, amount="1", payment_method="card", card_number="4111"
        )

        with pytest.raises(AgentPaymentError) as exc:
            await payments.create_payment(session, agent_id=agent.id, bonus_ids=[b1.id], payment_method="card")
        assert exc.value.code == "bonus_not_available"

    async def test_bonus_in_pending_payment_cannot_be_taken_twice(self, session, payments, bonus_for, agent):
        b1 = await bonus_for(agent, "1000")
        await payments.create_payment(session, agent_id=agent.id, bonus_ids=[b1.id], payment_method="card")

        with pytest.raises(AgentPaymentError) as exc:
            await payments.create_payment(session, agent_id=agent.id, bonus_ids=[b1.id], payment_method="card")
        assert exc.value.code == "bonus_not_available"


class TestPayoutInteraction:
    async def test_pending_payment_removes_bonus_from_balance(self, session, payments, settlement, bonus_for, agent):
        b1 = await bonus_for(agent, "1000")
        b2 = await bonus_for(agent, "400", offset=1)

        await payments.create_payment(session, agent_id=agent.id, bonus_ids=[b1.id], payment_method="card")

        assert await settlement.calculate_available_balance(session, agent.id) == Decimal("400.00")
        assert [b.id for b in await payments.get_available_bonuses_for_agent(session, agent.id)] == [b2.id]

    async def test_cancelled_request_releases_bonus(self, session, payments, requests, bonus_for, agent):
        b1 = await bonus_for(agent, "1000")
        request = await requests.create_request(
            session, user_id=agent.id, amount="1000", payment_method="card", card_number="4111"
        )
        await requests.update_status(session, request_id=request.id, status=REQUEST_STATUS_CANCELLED)

        payment = await payments.create_payment(
            session, agent_id=agent.id, bonus_ids=[b1.id], payment_method="card"
        )

        assert payment.total_amount == Decimal("1000.00")


class TestCompleteAndFail:
    async def test_complete_marks_bonuses_paid(self, session, payments, settlement, bonus_for, agent):
        b1 = await bonus_for(agent, "1000")
        b2 = await bonus_for(agent, "500", offset=1)
        payment = await payments.create_payment(
            session, agent_id=agent.id, bonus_ids=[b1.id, b2.id], payment_method="card"
        )

        await payments.complete_payment(session, payment_id=payment.id)

        assert payment.status == AGENT_PAYMENT_COMPLETED
        assert b1.status == STATUS_PAID
        assert b2.status == STATUS_PAID
        assert await settlement.calculate_available_balance(session, agent.id) == Decimal("0.00")

    async def test_complete_twice_is_a_noop(self, session, payments, bonus_for, agent):
        b1 = await bonus_for(agent, "1000")
        payment = await payments.create_payment(session, agent_id=agent.id, bonus_ids=[b1.id], payment_method="sbp")
        await payments.complete_payment(session, payment_id=payment.id)
        paid_at = b1.paid_at

        await payments.complete_payment(session, payment_id=payment.id)

        assert b1.paid_at == paid_at

    async def test_fail_after_complete_restores_bonuses(self, session, payments, settlement, bonus_for, agent):
        b1 = await bonus_for(agent, "1000")
        payment = await payments.create_payment(session, agent_id=agent.id, bonus_ids=[b1.id], payment_method="card")
        await payments.complete_payment(session, payment_id=payment.id)

        await payments.fail_payment(session, payment_id=payment.id)

        assert payment.status == AGENT_PAYMENT_FAILED
        assert b1.paid_at is None
        assert b1.status == STATUS_AVAILABLE
        assert await settlement.calculate_available_balance(session, agent.id) == Decimal("1000.00")

    async def test_fail_pending_releases_claim(self, session, payments, settlement, bonus_for, agent):
        b1 = await bonus_for(agent, "1000")
        payment = await payments.create_payment(session, agent_id=agent.id, bonus_ids=[b1.id], payment_method="card")

        await payments.fail_payment(session, payment_id=payment.id)

        assert b1.paid_at is None
        assert await settlement.calculate_available_balance(session, agent.id) == Decimal("1000.00")

    async def test_failed_payment_cannot_be_completed(self, session, payments, bonus_for, agent):
        b1 = await bonus_for(agent, "1000")
        payment = await payments.create_payment(session, agent_id=agent.id, bonus_ids=[b1.id], payment_method="card")
        await payments.fail_payment(session, payment_id=payment.id)

        with pytest.raises(AgentPaymentError) as exc:
            await payments.complete_payment(session, payment_id=payment.id)
        assert exc.value.code == "payment_not_pending"

    async def test_unknown_payment(self, session, payments):
        with pytest.raises(AgentPaymentError) as exc:
            await payments.fail_payment(session, payment_id=321)
        assert exc.value.code == "payment_not_found"
