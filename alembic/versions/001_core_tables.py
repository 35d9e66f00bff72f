"""Core tables: accounts, content catalog, practice sessions, billing events, progression.

Revision ID: 001_core_tables
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_core_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id BIGSERIAL PRIMARY KEY,
            external_id VARCHAR(128) NOT NULL,
            email VARCHAR(320),
            display_name VARCHAR(64),
            plan VARCHAR(16) NOT NULL DEFAULT 'trial',
            subscription_status VARCHAR(16),
            subscription_ref VARCHAR(128),
            payment_customer_ref VARCHAR(128),
            trial_purchase_count INTEGER NOT NULL DEFAULT 0,
            trial_credits_remaining INTEGER NOT NULL DEFAULT 0,
            tokens_remaining INTEGER NOT NULL DEFAULT 0,
            billing_cycle_start TIMESTAMPTZ,
            power BIGINT NOT NULL DEFAULT 0,
            current_tier VARCHAR(32) NOT NULL DEFAULT 'Bronze',
            current_belt VARCHAR(16) NOT NULL DEFAULT 'White',
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_activity_date DATE,
            streak_multiplier NUMERIC(4, 2) NOT NULL DEFAULT 1.00,
            total_sessions INTEGER NOT NULL DEFAULT 0,
            total_minutes INTEGER NOT NULL DEFAULT 0,
            badges_earned INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ,
            CONSTRAINT accounts_external_id_key UNIQUE (external_id),
            CONSTRAINT accounts_subscription_ref_key UNIQUE (subscription_ref),
            CONSTRAINT ck_accounts_trial_credits_non_negative CHECK (trial_credits_remaining >= 0),
            CONSTRAINT ck_accounts_tokens_non_negative CHECK (tokens_remaining >= 0),
            CONSTRAINT ck_accounts_power_non_negative CHECK (power >= 0),
            CONSTRAINT ck_accounts_plan_valid CHECK (plan IN ('trial', 'paid'))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_accounts_power
        ON accounts(power DESC, id ASC)
        WHERE power > 0
    """)

    # --- Account Statistics (written by call scoring) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS account_statistics (
            account_id BIGINT PRIMARY KEY REFERENCES accounts(id) ON DELETE CASCADE,
            average_score DOUBLE PRECISION NOT NULL DEFAULT 0,
            objection_success_rate DOUBLE PRECISION NOT NULL DEFAULT 0,
            closing_rate DOUBLE PRECISION NOT NULL DEFAULT 0,
            average_wpm INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ
        )
    """)

    # --- Content Catalog ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS content_items (
            id VARCHAR(64) PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            agent_ref VARCHAR(128),
            tier_required VARCHAR(16) NOT NULL DEFAULT 'trial',
            is_boss BOOLEAN NOT NULL DEFAULT false,
            CONSTRAINT ck_content_items_tier_required_valid CHECK (tier_required IN ('trial', 'paid'))
        )
    """)

    # --- Practice Sessions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS practice_sessions (
            id VARCHAR(36) PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            content_id VARCHAR(64) NOT NULL REFERENCES content_items(id),
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            plan_at_issue VARCHAR(16) NOT NULL,
            max_duration_seconds INTEGER NOT NULL,
            access_token VARCHAR(128),
            access_token_expires_at TIMESTAMPTZ,
            access_token_used_at TIMESTAMPTZ,
            started_at TIMESTAMPTZ,
            ended_at TIMESTAMPTZ,
            duration_seconds INTEGER,
            billed_seconds INTEGER,
            tokens_charged INTEGER NOT NULL DEFAULT 0,
            is_overage BOOLEAN NOT NULL DEFAULT false,
            overage_charge_cents INTEGER NOT NULL DEFAULT 0,
            progression_applied_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT practice_sessions_access_token_key UNIQUE (access_token)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_practice_sessions_account_status
        ON practice_sessions(account_id, status)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_practice_sessions_status_created
        ON practice_sessions(status, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_practice_sessions_unprogressed
        ON practice_sessions(ended_at)
        WHERE status = 'completed' AND progression_applied_at IS NULL
    """)

    # --- Billed Events (idempotency ledger) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS billed_events (
            id BIGSERIAL PRIMARY KEY,
            event_id VARCHAR(255) NOT NULL,
            event_type VARCHAR(64) NOT NULL,
            processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT billed_events_event_id_key UNIQUE (event_id)
        )
    """)

    # --- Earned Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS earned_badges (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            badge_slug VARCHAR(64) NOT NULL,
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            progress INTEGER,
            total INTEGER,
            CONSTRAINT earned_badges_account_id_badge_slug_key UNIQUE (account_id, badge_slug)
        )
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            title VARCHAR(200) NOT NULL,
            message TEXT NOT NULL,
            metadata JSON NOT NULL DEFAULT '{}',
            read BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_notifications_account_created
        ON notifications(account_id, created_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS earned_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS billed_events CASCADE")
    op.execute("DROP TABLE IF EXISTS practice_sessions CASCADE")
    op.execute("DROP TABLE IF EXISTS content_items CASCADE")
    op.execute("DROP TABLE IF EXISTS account_statistics CASCADE")
    op.execute("DROP TABLE IF EXISTS accounts CASCADE")
