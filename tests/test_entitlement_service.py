"""
Clinivoice Backend: Entitlement Gate Tests
===========================================

What:  EntitlementGate against a real (in-memory SQLite) database so the
       insert-or-ignore and conditional UPDATE statements actually run.
How:   The gate's clock is pinned to FIXED_NOW (2026-10-15 UTC), so the
       current usage bucket is "2026-10".

What we test:
    ✅ Every branch of the decision order, in order
    ✅ Whitelist and admin bypass the limit
    ✅ Usage == limit is denied, usage == limit - 1 is allowed
    ✅ reserve_slot never lets usage pass the limit
    ✅ release_slot floors at zero and credits the month it reserved from
    ✅ Month rollover
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from clinivoice.exceptions import NotFoundError
from clinivoice.models.entitlement import Plan
from clinivoice.schemas.entitlement import DenialReason, EntitlementDecision
from clinivoice.services.entitlement_service import (
    BYPASS_ADMIN,
    BYPASS_WHITELIST,
    EntitlementGate,
    denial_message,
    seed_default_plans,
)

from conftest import FIXED_NOW


@pytest.fixture
def gate() -> EntitlementGate:
    return EntitlementGate(clock=lambda: FIXED_NOW)


class TestDecisionOrder:
    @pytest.mark.asyncio
    async def test_admin_bypasses_everything(self, gate, seed, db_session):
        admin = await seed.user("admin", role="admin", status="locked")

        decision = await gate.check_entitlement(db_session, admin.id)

        assert decision.allowed
        assert decision.bypass == BYPASS_ADMIN

    @pytest.mark.asyncio
    async def test_locked_beats_whitelist(self, gate, seed, db_session):
        user = await seed.user(status="locked")
        await seed.whitelist(user)

        decision = await gate.check_entitlement(db_session, user.id)

        assert not decision.allowed
        assert decision.reason is DenialReason.LOCKED

    @pytest.mark.asyncio
    async def test_whitelist_ignores_limit(self, gate, seed, db_session):
        user = await seed.subscribed_user(limit=10, usage=15)
        await seed.whitelist(user)

        decision = await gate.check_entitlement(db_session, user.id)

        assert decision.allowed
        assert decision.bypass == BYPASS_WHITELIST
        assert decision.usage == 15

    @pytest.mark.asyncio
    async def test_no_subscription(self, gate, seed, db_session):
        user = await seed.user()

        decision = await gate.check_entitlement(db_session, user.id)

        assert not decision.allowed
        assert decision.reason is DenialReason.NO_SUBSCRIPTION
        assert decision.usage == 0

    @pytest.mark.asyncio
    async def test_inactive_subscription(self, gate, seed, db_session):
        user = await seed.user()
        plan = await seed.plan()
        await seed.subscription(user, plan, status="cancelled")

        decision = await gate.check_entitlement(db_session, user.id)

        assert decision.reason is DenialReason.INACTIVE_SUBSCRIPTION
        assert decision.limit == 50
        assert decision.plan == "starter"

    @pytest.mark.asyncio
    async def test_expired_subscription(self, gate, seed, db_session):
        user = await seed.user()
        plan = await seed.plan()
        await seed.subscription(
            user,
            plan,
            status="expired",
            start_date=date(2026, 9, 1),
            end_date=date(2026, 9, 30),
        )

        decision = await gate.check_entitlement(db_session, user.id)

        assert decision.reason is DenialReason.SUBSCRIPTION_EXPIRED

    @pytest.mark.asyncio
    async def test_latest_subscription_decides(self, gate, seed, db_session):
        user = await seed.user()
        plan = await seed.plan()
        await seed.subscription(user, plan, status="active", start_date=date(2026, 1, 1))
        await seed.subscription(user, plan, status="cancelled", start_date=date(2026, 10, 1))

        decision = await gate.check_entitlement(db_session, user.id)

        assert decision.reason is DenialReason.INACTIVE_SUBSCRIPTION

    @pytest.mark.asyncio
    async def test_trial_counts_as_usable(self, gate, seed, db_session):
        user = await seed.user()
        plan = await seed.plan()
        await seed.subscription(user, plan, status="trial")

        decision = await gate.check_entitlement(db_session, user.id)

        assert decision.allowed

    @pytest.mark.asyncio
    async def test_usage_equal_to_limit_is_denied(self, gate, seed, db_session):
        user = await seed.subscribed_user(limit=50, usage=50)

        decision = await gate.check_entitlement(db_session, user.id)

        assert not decision.allowed
        assert decision.reason is DenialReason.LIMIT_EXCEEDED
        assert (decision.usage, decision.limit) == (50, 50)

    @pytest.mark.asyncio
    async def test_usage_below_limit_is_allowed(self, gate, seed, db_session):
        user = await seed.subscribed_user(limit=50, usage=49)

        decision = await gate.check_entitlement(db_session, user.id)

        assert decision.allowed
        assert decision.reason is None
        assert (decision.usage, decision.limit, decision.plan) == (49, 50, "plan-dr.who")

    @pytest.mark.asyncio
    async def test_unlimited_plan(self, gate, seed, db_session):
        user = await seed.subscribed_user(limit=None, usage=10_000)

        decision = await gate.check_entitlement(db_session, user.id)

        assert decision.allowed
        assert decision.limit is None

    @pytest.mark.asyncio
    async def test_new_month_starts_at_zero(self, gate, seed, db_session):
        user = await seed.subscribed_user(limit=50)
        await seed.usage(user, 50, month="2026-09")

        decision = await gate.check_entitlement(db_session, user.id)

        assert decision.allowed
        assert decision.usage == 0

    @pytest.mark.asyncio
    async def test_unknown_user(self, gate, db_session):
        with pytest.raises(NotFoundError):
            await gate.check_entitlement(db_session, 999)


class TestUsageCounting:
    @pytest.mark.asyncio
    async def test_increment_creates_row(self, gate, seed, db_session):
        user = await seed.subscribed_user()

        assert await gate.increment_usage(db_session, user.id) == 1
        assert await gate.increment_usage(db_session, user.id) == 2

    @pytest.mark.asyncio
    async def test_reserve_takes_one_slot(self, gate, seed, db_session):
        user = await seed.subscribed_user(limit=2, usage=1)

        decision = await gate.reserve_slot(db_session, user.id)

        assert decision.allowed
        assert decision.usage == 2

        denied = await gate.reserve_slot(db_session, user.id)
        assert not denied.allowed
        assert denied.reason is DenialReason.LIMIT_EXCEEDED
        assert denied.usage == 2

    @pytest.mark.asyncio
    async def test_denied_reserve_leaves_usage(self, gate, seed, db_session):
        user = await seed.user()

        decision = await gate.reserve_slot(db_session, user.id)

        assert decision.reason is DenialReason.NO_SUBSCRIPTION
        check = await gate.check_entitlement(db_session, user.id)
        assert check.usage == 0

    @pytest.mark.asyncio
    async def test_conditional_update_refuses_past_limit(self, gate, seed, db_session):
        # Another request took the last slot between the check and the update.
        user = await seed.subscribed_user(limit=3, usage=3)
        gate._evaluate = AsyncMock(
            return_value=EntitlementDecision(allowed=True, usage=2, limit=3, plan="starter")
        )

        decision = await gate.reserve_slot(db_session, user.id)

        assert not decision.allowed
        assert decision.reason is DenialReason.LIMIT_EXCEEDED
        assert decision.usage == 3

    @pytest.mark.asyncio
    async def test_whitelisted_reserve_counts_usage(self, gate, seed, db_session):
        user = await seed.subscribed_user(limit=1, usage=1)
        await seed.whitelist(user)

        decision = await gate.reserve_slot(db_session, user.id)

        assert decision.allowed
        assert decision.usage == 2

    @pytest.mark.asyncio
    async def test_release_gives_slot_back(self, gate, seed, db_session):
        user = await seed.subscribed_user(limit=5)
        await gate.reserve_slot(db_session, user.id)

        await gate.release_slot(db_session, user.id)

        decision = await gate.check_entitlement(db_session, user.id)
        assert decision.usage == 0

    @pytest.mark.asyncio
    async def test_release_after_rollover_credits_reserved_month(self, seed, db_session):
        now = [datetime(2026, 10, 31, 23, 59, 59, tzinfo=timezone.utc)]
        gate = EntitlementGate(clock=lambda: now[0])
        user = await seed.subscribed_user(limit=None)
        await seed.usage(user, 3, month="2026-11")

        decision = await gate.reserve_slot(db_session, user.id)
        assert decision.month == "2026-10"
        assert decision.usage == 1

        now[0] = datetime(2026, 11, 1, 0, 0, 1, tzinfo=timezone.utc)
        await gate.release_slot(db_session, user.id, decision.month)

        november = await gate.check_entitlement(db_session, user.id)
        assert november.usage == 3
        now[0] = datetime(2026, 10, 31, 12, 0, tzinfo=timezone.utc)
        october = await gate.check_entitlement(db_session, user.id)
        assert october.usage == 0

    @pytest.mark.asyncio
    async def test_release_never_goes_negative(self, gate, seed, db_session):
        user = await seed.subscribed_user(limit=5)

        await gate.release_slot(db_session, user.id)
        await gate.increment_usage(db_session, user.id)
        await gate.release_slot(db_session, user.id)
        await gate.release_slot(db_session, user.id)

        decision = await gate.check_entitlement(db_session, user.id)
        assert decision.usage == 0


class TestHelpers:
    def test_current_month_is_utc(self):
        late_evening_west = datetime(2026, 10, 31, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert EntitlementGate(clock=lambda: late_evening_west).current_month() == "2026-11"

    def test_limit_message_names_limit(self):
        decision = EntitlementDecision(
            allowed=False, reason=DenialReason.LIMIT_EXCEEDED, usage=50, limit=50
        )
        assert "(50)" in denial_message(decision)

    def test_allowed_has_no_message(self):
        assert denial_message(EntitlementDecision(allowed=True)) is None

    @pytest.mark.asyncio
    async def test_seed_default_plans_is_idempotent(self, db_session):
        assert await seed_default_plans(db_session) == 3
        assert await seed_default_plans(db_session) == 0

        plan = await db_session.get(Plan, 1)
        assert plan.name == "starter"
        assert plan.transcription_limit == 50
