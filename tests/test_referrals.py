"""
Tests for referral bonuses and the two-year program window.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from dateutil.relativedelta import relativedelta
from sqlalchemy import select

from bonus_core.core.time import utcnow
from bonus_core.db.models import Bonus
from bonus_core.db.models.bonus import RECIPIENT_REFERRER
from bonus_core.services.bonuses.service import BonusService
from bonus_core.services.referrals.service import ReferralBonusService


@pytest.fixture
def referrals():
    return ReferralBonusService()


@pytest.fixture
def ledger(referrals):
    return BonusService(referrals=referrals)


@pytest.fixture
async def referrer(make_user):
    return await make_user(name="referrer", referral_key="INVITE-1")


@pytest.fixture
async def invited_agent(make_user, referrer):
    return await make_user(name="invited", referred_by_key="INVITE-1")


@pytest.fixture
async def invited_project(make_project, invited_agent):
    return await make_project(agent=invited_agent)


async def _referrer_bonuses(session, referrer_id):
    q = (
        select(Bonus)
        .where(Bonus.user_id == referrer_id, Bonus.recipient_type == RECIPIENT_REFERRER)
        .order_by(Bonus.id.asc())
    )
    return list((await session.scalars(q)).all())


class TestReferrerResolution:
    async def test_resolves_by_key(self, session, referrals, referrer, invited_agent):
        assert await referrals.get_referrer_id(session, invited_agent.id) == referrer.id

    async def test_self_referral_is_ignored(self, session, referrals, make_user):
        user = await make_user(referral_key="ME", referred_by_key="ME")
        assert await referrals.get_referrer_id(session, user.id) is None

    async def test_unknown_key(self, session, referrals, make_user):
        user = await make_user(referred_by_key="NOBODY")
        assert await referrals.get_referrer_id(session, user.id) is None

    async def test_no_key(self, session, referrals, agent):
        assert await referrals.get_referrer_id(session, agent.id) is None


class TestProgramWindow:
    def test_expiry_is_two_calendar_years(self, referrals):
        registered = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
        assert referrals.program_expires_at(registered) == datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

    def test_naive_registration_is_treated_as_utc(self, referrals):
        assert referrals.program_expires_at(datetime(2024, 2, 29)) == datetime(2026, 2, 28, tzinfo=timezone.utc)

    async def test_active_inside_window(self, session, referrals, make_user):
        user = await make_user(created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
        now = datetime(2026, 12, 31, tzinfo=timezone.utc)
        assert await referrals.is_program_active(session, user.id, now=now) is True

    async def test_inactive_after_window(self, session, referrals, make_user):
        user = await make_user(created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
        now = datetime(2027, 1, 1, tzinfo=timezone.utc)
        assert await referrals.is_program_active(session, user.id, now=now) is False


class TestReferralBonusCreation:
    async def test_half_percent_of_contract(self, session, ledger, referrer, invited_agent, invited_project,
                                            make_contract):
        contract = await make_contract(invited_project, amount="100000")

        await ledger.create_bonus_for_deal(session, contract)

        (bonus,) = await _referrer_bonuses(session, referrer.id)
        assert bonus.commission_amount == Decimal("500.00")
        assert bonus.percentage == Decimal("0.5")
        assert bonus.referral_user_id == invited_agent.id
        assert bonus.contract_id == contract.id

    async def test_agent_registered_over_two_years_ago(self, session, ledger, make_user, make_project,
                                                       make_contract, referrer):
        agent = await make_user(
            referred_by_key="INVITE-1",
            created_at=utcnow() - relativedelta(years=2, days=1),
        )
        contract = await make_contract(await make_project(agent=agent), amount="100000")

        agent_bonus = await ledger.create_bonus_for_deal(session, contract)

        assert agent_bonus is not None
        assert await _referrer_bonuses(session, referrer.id) == []

    async def test_agent_registered_just_inside_window(self, session, ledger, make_user, make_project,
                                                       make_contract, referrer):
        agent = await make_user(
            referred_by_key="INVITE-1",
            created_at=utcnow() - relativedelta(years=2) + relativedelta(days=1),
        )
        contract = await make_contract(await make_project(agent=agent), amount="100000")

        await ledger.create_bonus_for_deal(session, contract)

        assert len(await _referrer_bonuses(session, referrer.id)) == 1

    async def test_zero_amount_order_gets_no_referral(self, session, ledger, referrer, invited_project, make_order):
        order = await make_order(invited_project, amount="0")

        agent_bonus = await ledger.create_bonus_for_deal(session, order)

        assert agent_bonus.commission_amount == Decimal("0.00")
        assert await _referrer_bonuses(session, referrer.id) == []

    async def test_zero_amount_contract_gets_zero_referral(self, session, ledger, referrer, invited_project,
                                                           make_contract):
        contract = await make_contract(invited_project, amount="0")

        await ledger.create_bonus_for_deal(session, contract)

        (bonus,) = await _referrer_bonuses(session, referrer.id)
        assert bonus.commission_amount == Decimal("0.00")

    async def test_referral_bonus_follows_recalculation(self, session, ledger, referrer, invited_project,
                                                        make_order):
        order = await make_order(invited_project, amount="10000")
        await ledger.create_bonus_for_deal(session, order)

        order.amount = Decimal("30000")
        await ledger.recalculate_deal_bonuses(session, order)

        (bonus,) = await _referrer_bonuses(session, referrer.id)
        assert bonus.commission_amount == Decimal("150.00")


class TestReferralStats:
    async def test_totals_and_per_referral_rows(self, session, ledger, referrals, referrer, invited_agent,
                                                invited_project, make_contract, make_order):
        await ledger.create_bonus_for_deal(session, await make_contract(invited_project, amount="100000"))
        await ledger.create_bonus_for_deal(session, await make_order(invited_project, amount="20000"))
        await ledger.create_bonus_for_deal(session, await make_contract(invited_project, amount="40000"))
        available, paid, pending = await _referrer_bonuses(session, referrer.id)
        available.available_at = utcnow()
        paid.paid_at = utcnow()
        await session.flush()

        stats = await referrals.get_referral_stats(session, referrer.id)

        assert stats["total_available"] == Decimal("500.00")
        assert stats["total_paid"] == Decimal("100.00")
        assert stats["total_pending"] == Decimal("200.00")
        assert stats["total"] == Decimal("800.00")
        (row,) = stats["referrals"]
        assert row["user_id"] == invited_agent.id
        assert row["is_active"] is True
        assert row["total_bonus"] == Decimal("800.00")
