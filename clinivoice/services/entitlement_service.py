"""
Clinivoice Backend: Entitlement Gate
=====================================

What:  Decides whether a user may run a billable note generation this month,
       and keeps the monthly usage counter.
How:   Reads role, account status, whitelist, latest subscription with its
       plan, and the current month's usage row; applies the decision order
       below. Denials are returned as values, never raised.
Who:   POST /api/generate-note (reserve_slot / release_slot) and
       GET /api/subscription-status (check_entitlement).
When:  Once per generation request, before any provider is called.

Decision order (first match wins):
    1. role admin                            → allowed (bypass=admin)
    2. status locked                         → denied  locked
    3. whitelisted                           → allowed (bypass=whitelist)
    4. no subscription                       → denied  no_subscription
    5. latest status not active/trial        → denied  subscription_expired
                                               (end_date passed) or
                                               inactive_subscription
    6. plan limit set and usage >= limit     → denied  limit_exceeded
    7. otherwise                             → allowed

Atomic reservation:
    reserve_slot() ensures the month row exists (insert-or-ignore), then runs a
    single conditional UPDATE ... SET count = count + 1 WHERE count < :limit.
    Zero rows updated means another request took the last slot, so the
    decision becomes limit_exceeded. check_entitlement() followed by
    increment_usage() remains available for read-only callers.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clinivoice.exceptions import DatabaseError, NotFoundError
from clinivoice.models.entitlement import (
    USABLE_SUBSCRIPTION_STATUSES,
    Plan,
    Subscription,
    UsageRecord,
    WhitelistEntry,
)
from clinivoice.models.user import User
from clinivoice.schemas.entitlement import DenialReason, EntitlementDecision

logger = logging.getLogger(__name__)

BYPASS_ADMIN = "admin"
BYPASS_WHITELIST = "whitelist"

DENIAL_MESSAGES: Dict[DenialReason, str] = {
    DenialReason.NO_SUBSCRIPTION: "No active subscription found. Please subscribe to continue.",
    DenialReason.INACTIVE_SUBSCRIPTION: (
        "Your subscription is not active. Please renew or contact support."
    ),
    DenialReason.LIMIT_EXCEEDED: (
        "You have reached your monthly transcription limit ({limit}). "
        "Upgrade your plan or wait for next month."
    ),
    DenialReason.SUBSCRIPTION_EXPIRED: "Your subscription has expired. Please renew to continue.",
    DenialReason.LOCKED: "Your account has been locked. Please contact admin for assistance.",
}

DEFAULT_PLANS: List[Dict[str, Any]] = [
    {
        "name": "starter",
        "display_name": "Starter",
        "description": "Perfect for individual clinicians",
        "price": Decimal("19.00"),
        "transcription_limit": 50,
    },
    {
        "name": "professional",
        "display_name": "Professional",
        "description": "For busy practices that need more",
        "price": Decimal("49.99"),
        "transcription_limit": 200,
    },
    {
        "name": "enterprise",
        "display_name": "Enterprise",
        "description": "Unlimited power for large practices",
        "price": Decimal("0"),
        "transcription_limit": None,
    },
]


def denial_message(decision: EntitlementDecision) -> Optional[str]:
    """Client-facing message for a denied decision; None when allowed."""
    if decision.allowed or decision.reason is None:
        return None
    template = DENIAL_MESSAGES.get(decision.reason, "Subscription required")
    limit = decision.limit if decision.limit is not None else "unlimited"
    return template.format(limit=limit)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntitlementGate:
    """
    Subscription, whitelist and monthly usage checks.

    Stateless apart from the injected clock; every method takes the request's
    AsyncSession as its first argument and leaves committing to the caller.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock

    def current_month(self) -> str:
        """Usage bucket key, 'YYYY-MM' in UTC."""
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.strftime("%Y-%m")

    # ── Public operations ─────────────────────────────────────────────────

    async def check_entitlement(self, db: AsyncSession, user_id: int) -> EntitlementDecision:
        """
        Evaluates the decision order for `user_id` without changing usage.

        Raises:
            NotFoundError: no user with this id
            DatabaseError: the lookup failed
        """
        try:
            user = await self._load_user(db, user_id)
            return await self._evaluate(db, user, self.current_month())
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("Entitlement check failed for user %s: %s", user_id, e)
            raise DatabaseError(
                message="Failed to verify subscription",
                context={"user_id": user_id},
            )

    async def increment_usage(self, db: AsyncSession, user_id: int) -> int:
        """Adds one to this month's usage (creating the row); returns the new count."""
        month = self.current_month()
        try:
            await self._load_user(db, user_id)
            await self._ensure_usage_row(db, user_id, month)
            await db.execute(
                update(UsageRecord)
                .where(UsageRecord.user_id == user_id, UsageRecord.month == month)
                .values(transcription_count=UsageRecord.transcription_count + 1)
                .execution_options(synchronize_session=False)
            )
            count = await self._usage(db, user_id, month)
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("Usage increment failed for user %s: %s", user_id, e)
            raise DatabaseError(
                message="Failed to record usage",
                context={"user_id": user_id, "month": month},
            )

        logger.info("Usage for user %s in %s is now %d", user_id, month, count)
        return count

    async def reserve_slot(self, db: AsyncSession, user_id: int) -> EntitlementDecision:
        """
        Atomically checks entitlement and takes one unit of monthly usage.

        Returns the decision; when allowed, `usage` is the count including the
        reserved slot. Denied decisions leave usage untouched.
        """
        month = self.current_month()
        try:
            user = await self._load_user(db, user_id)
            decision = await self._evaluate(db, user, month)
            if not decision.allowed:
                return decision

            await self._ensure_usage_row(db, user_id, month)

            stmt = (
                update(UsageRecord)
                .where(UsageRecord.user_id == user_id, UsageRecord.month == month)
                .values(transcription_count=UsageRecord.transcription_count + 1)
                .execution_options(synchronize_session=False)
            )
            if decision.bypass is None and decision.limit is not None:
                stmt = stmt.where(UsageRecord.transcription_count < decision.limit)

            result = await db.execute(stmt)
            usage = await self._usage(db, user_id, month)
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("Slot reservation failed for user %s: %s", user_id, e)
            raise DatabaseError(
                message="Failed to verify subscription",
                context={"user_id": user_id, "month": month},
            )

        if result.rowcount == 0:
            logger.info(
                "User %s lost the race for the last slot (%d/%s)",
                user_id,
                usage,
                decision.limit,
            )
            return EntitlementDecision(
                allowed=False,
                reason=DenialReason.LIMIT_EXCEEDED,
                usage=usage,
                limit=decision.limit,
                plan=decision.plan,
            )

        return decision.model_copy(update={"usage": usage, "month": month})

    async def release_slot(
        self, db: AsyncSession, user_id: int, month: Optional[str] = None
    ) -> None:
        """
        Gives back one unit of usage in `month`; never goes below zero.

        Pass the decision's `month` from reserve_slot so a release that lands
        after a month rollover credits the bucket the slot was taken from.
        Defaults to the current month.
        """
        month = month or self.current_month()
        try:
            await db.execute(
                update(UsageRecord)
                .where(
                    UsageRecord.user_id == user_id,
                    UsageRecord.month == month,
                    UsageRecord.transcription_count > 0,
                )
                .values(transcription_count=UsageRecord.transcription_count - 1)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error("Slot release failed for user %s: %s", user_id, e)
            raise DatabaseError(
                message="Failed to record usage",
                context={"user_id": user_id, "month": month},
            )
        logger.info("Released usage slot for user %s in %s", user_id, month)

    # ── Decision ──────────────────────────────────────────────────────────

    async def _evaluate(self, db: AsyncSession, user: User, month: str) -> EntitlementDecision:
        if user.is_admin:
            return EntitlementDecision(
                allowed=True,
                usage=await self._usage(db, user.id, month),
                bypass=BYPASS_ADMIN,
            )

        if user.is_locked:
            return EntitlementDecision(allowed=False, reason=DenialReason.LOCKED)

        usage = await self._usage(db, user.id, month)

        if await self._is_whitelisted(db, user.id):
            return EntitlementDecision(allowed=True, usage=usage, bypass=BYPASS_WHITELIST)

        latest = await self._latest_subscription(db, user.id)
        if latest is None:
            return EntitlementDecision(
                allowed=False, reason=DenialReason.NO_SUBSCRIPTION, usage=usage
            )

        subscription, plan = latest
        limit = plan.transcription_limit

        if subscription.status not in USABLE_SUBSCRIPTION_STATUSES:
            today = self._clock().date()
            expired = subscription.end_date is not None and subscription.end_date < today
            return EntitlementDecision(
                allowed=False,
                reason=(
                    DenialReason.SUBSCRIPTION_EXPIRED
                    if expired
                    else DenialReason.INACTIVE_SUBSCRIPTION
                ),
                usage=usage,
                limit=limit,
                plan=plan.name,
            )

        if limit is not None and usage >= limit:
            return EntitlementDecision(
                allowed=False,
                reason=DenialReason.LIMIT_EXCEEDED,
                usage=usage,
                limit=limit,
                plan=plan.name,
            )

        return EntitlementDecision(allowed=True, usage=usage, limit=limit, plan=plan.name)

    # ── Queries ───────────────────────────────────────────────────────────

    async def _load_user(self, db: AsyncSession, user_id: int) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))
        return user

    async def _is_whitelisted(self, db: AsyncSession, user_id: int) -> bool:
        result = await db.execute(
            select(WhitelistEntry.id).where(WhitelistEntry.user_id == user_id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _latest_subscription(
        self, db: AsyncSession, user_id: int
    ) -> Optional[Tuple[Subscription, Plan]]:
        result = await db.execute(
            select(Subscription, Plan)
            .join(Plan, Plan.id == Subscription.plan_id)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.start_date.desc(), Subscription.id.desc())
            .limit(1)
        )
        row = result.first()
        return (row[0], row[1]) if row is not None else None

    async def _usage(self, db: AsyncSession, user_id: int, month: str) -> int:
        result = await db.execute(
            select(UsageRecord.transcription_count).where(
                UsageRecord.user_id == user_id, UsageRecord.month == month
            )
        )
        return result.scalar_one_or_none() or 0

    async def _ensure_usage_row(self, db: AsyncSession, user_id: int, month: str) -> None:
        """Creates the (user, month) row with count 0 unless it already exists."""
        values = {"user_id": user_id, "month": month, "transcription_count": 0}
        dialect = db.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert
            await db.execute(
                insert(UsageRecord)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["user_id", "month"])
            )
            return

        if await self._usage_row_exists(db, user_id, month):
            return
        try:
            async with db.begin_nested():
                db.add(UsageRecord(**values))
        except IntegrityError:
            logger.debug("Usage row for user %s in %s created concurrently", user_id, month)

    async def _usage_row_exists(self, db: AsyncSession, user_id: int, month: str) -> bool:
        result = await db.execute(
            select(UsageRecord.id).where(
                UsageRecord.user_id == user_id, UsageRecord.month == month
            )
        )
        return result.scalar_one_or_none() is not None


async def seed_default_plans(db: AsyncSession) -> int:
    """Inserts any DEFAULT_PLANS missing by name; returns how many were added."""
    result = await db.execute(select(Plan.name))
    existing = set(result.scalars().all())

    added = 0
    for plan in DEFAULT_PLANS:
        if plan["name"] in existing:
            continue
        db.add(Plan(billing_period="monthly", **plan))
        added += 1

    if added:
        await db.flush()
        logger.info("Seeded %d default plan(s)", added)
    return added


# ── Singleton Instance ────────────────────────────────────────────────────
entitlement_gate = EntitlementGate()
