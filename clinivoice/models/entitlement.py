"""
Clinivoice Backend: Entitlement SQLAlchemy Models
==================================================

What:  Plans, subscriptions, whitelist entries and monthly usage rows.
How:   Declarative mappings on the shared Base. Stripe-specific columns are
       not modelled here; billing webhooks write `status` and `end_date`.
Who:   Read and written by the entitlement gate.

Query Patterns:
    - Latest subscription of a user:
      SELECT ... WHERE user_id = :id ORDER BY start_date DESC, id DESC LIMIT 1
    - Current month usage:
      SELECT transcription_count WHERE user_id = :id AND month = 'YYYY-MM'
      → served by the (user_id, month) unique constraint
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from clinivoice.database import Base

# Subscription statuses that allow billable work.
USABLE_SUBSCRIPTION_STATUSES = frozenset({"active", "trial"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Plan(Base):
    """A purchasable tier. transcription_limit NULL means unlimited."""

    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    billing_period: Mapped[str] = mapped_column(
        String(20), nullable=False, default="monthly", server_default=text("'monthly'")
    )
    transcription_limit: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Generations allowed per calendar month; NULL = unlimited",
    )

    def __repr__(self) -> str:
        return f"<Plan(name='{self.name}', limit={self.transcription_limit})>"


class Subscription(Base):
    """
    A user's subscription to a plan.

    Lifecycle (driven by the billing integration):
        trial / active → past_due → cancelled (end_date set)
    """

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id"), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="active", server_default=text("'active'")
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False, default=lambda: _utcnow().date())
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Subscription(user_id={self.user_id}, plan_id={self.plan_id}, status='{self.status}')>"


class WhitelistEntry(Base):
    """Presence of a row grants unlimited usage regardless of plan."""

    __tablename__ = "whitelist_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class UsageRecord(Base):
    """One row per user per calendar month (UTC), keyed 'YYYY-MM'."""

    __tablename__ = "usage_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    transcription_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )

    __table_args__ = (
        UniqueConstraint("user_id", "month", name="uq_usage_records_user_month"),
    )

    def __repr__(self) -> str:
        return f"<UsageRecord(user_id={self.user_id}, month='{self.month}', count={self.transcription_count})>"
