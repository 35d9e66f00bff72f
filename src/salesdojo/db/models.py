"""ORM models for accounts, practice sessions, billing events and progression.

Schema is created by alembic/versions/001_core_tables.py on PostgreSQL; tests
build it from this metadata directly.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salesdojo.db.base import Base, BigIntPK
from salesdojo.sessions.state import SessionStatus


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class Account(Base):
    """One row per end user. Holds plan state, balances and denormalized progression."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("trial_credits_remaining >= 0", name="trial_credits_non_negative"),
        CheckConstraint("tokens_remaining >= 0", name="tokens_non_negative"),
        CheckConstraint("power >= 0", name="power_non_negative"),
        CheckConstraint("plan IN ('trial', 'paid')", name="plan_valid"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # --- Plan & billing ---
    plan: Mapped[str] = mapped_column(String(16), nullable=False, default="trial", server_default="trial")
    subscription_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    subscription_ref: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    payment_customer_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    trial_purchase_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    trial_credits_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    tokens_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    billing_cycle_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Progression (denormalized, O(1) reads) ---
    power: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    current_tier: Mapped[str] = mapped_column(String(32), nullable=False, default="Bronze", server_default="Bronze")
    current_belt: Mapped[str] = mapped_column(String(16), nullable=False, default="White", server_default="White")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    streak_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(4, 2), nullable=False, default=Decimal("1.00"), server_default="1.00"
    )
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    badges_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    earned_badges: Mapped[list[EarnedBadge]] = relationship("EarnedBadge", back_populates="account")
    statistics: Mapped[AccountStatistics | None] = relationship(
        "AccountStatistics", back_populates="account", uselist=False
    )


class AccountStatistics(Base):
    """Category rates written by the call-scoring collaborator; read by badge rules."""

    __tablename__ = "account_statistics"

    account_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    average_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    objection_success_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    closing_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    average_wpm: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    account: Mapped[Account] = relationship("Account", back_populates="statistics")


# ---------------------------------------------------------------------------
# Content catalog
# ---------------------------------------------------------------------------


class ContentItem(Base):
    """A practice persona. `tier_required` is the only attribute this engine filters on."""

    __tablename__ = "content_items"
    __table_args__ = (CheckConstraint("tier_required IN ('trial', 'paid')", name="tier_required_valid"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    agent_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tier_required: Mapped[str] = mapped_column(String(16), nullable=False, default="trial", server_default="trial")
    is_boss: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")


# ---------------------------------------------------------------------------
# Practice sessions
# ---------------------------------------------------------------------------


class PracticeSession(Base):
    """One practice attempt. Terminal states (completed, abandoned) are final."""

    __tablename__ = "practice_sessions"
    __table_args__ = (
        Index("ix_practice_sessions_account_status", "account_id", "status"),
        Index("ix_practice_sessions_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    content_id: Mapped[str] = mapped_column(String(64), ForeignKey("content_items.id"), nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SessionStatus.PENDING,
    )
    plan_at_issue: Mapped[str] = mapped_column(String(16), nullable=False)
    max_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)

    access_token: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    access_token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    access_token_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    billed_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tokens_charged: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_overage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    overage_charge_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    progression_applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    account: Mapped[Account] = relationship("Account")


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class BilledEvent(Base):
    """Write-once record of a billing-provider event. UNIQUE(event_id) is the idempotency boundary."""

    __tablename__ = "billed_events"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Progression
# ---------------------------------------------------------------------------


class EarnedBadge(Base):
    """Badges earned by accounts. UNIQUE(account_id, badge_slug) prevents duplicates."""

    __tablename__ = "earned_badges"
    __table_args__ = (UniqueConstraint("account_id", "badge_slug", name="earned_badges_account_id_badge_slug_key"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    badge_slug: Mapped[str] = mapped_column(String(64), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    progress: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total: Mapped[int | None] = mapped_column(Integer, nullable=True)

    account: Mapped[Account] = relationship("Account", back_populates="earned_badges")


class Notification(Base):
    """In-app notification for badge unlocks and tier changes."""

    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_account_created", "account_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    extra: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
