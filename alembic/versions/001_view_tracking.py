"""View tracking tables.

Creates view_events (event store), view_dedup_claims (atomic uniqueness
guard) and entity_view_summaries (rollup output). The users table is owned
by the marketplace backend and is not touched here.

Revision ID: 001_view_tracking
Revises:
Create Date: 2026-10-16
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_view_tracking"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Use raw SQL for full IF NOT EXISTS support (handles partial migration reruns)

    # --- Event Store ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS view_events (
            id VARCHAR(36) PRIMARY KEY,
            entity_id VARCHAR(64) NOT NULL,
            sub_entity_id VARCHAR(64),
            view_kind VARCHAR(16) NOT NULL DEFAULT 'profile',
            identity VARCHAR(128) NOT NULL,
            identity_source VARCHAR(16) NOT NULL,
            viewer_id VARCHAR(128),
            anonymous_id VARCHAR(128),
            session_token VARCHAR(128) NOT NULL,
            client_address VARCHAR(45),
            user_agent VARCHAR(512),
            referrer TEXT,
            viewed_at TIMESTAMPTZ NOT NULL,
            is_unique BOOLEAN NOT NULL,
            geo JSONB
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_view_events_dedup_lookup
        ON view_events (entity_id, identity_source, identity, viewed_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_view_events_entity_time
        ON view_events (entity_id, viewed_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_view_events_viewed_at
        ON view_events (viewed_at)
    """)

    # --- Dedup claims ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS view_dedup_claims (
            entity_id VARCHAR(64) NOT NULL,
            identity_source VARCHAR(16) NOT NULL,
            identity VARCHAR(128) NOT NULL,
            last_seen_at TIMESTAMPTZ NOT NULL,
            last_unique_at TIMESTAMPTZ NOT NULL,
            last_unique_event_id VARCHAR(36) NOT NULL,
            PRIMARY KEY (entity_id, identity_source, identity)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_view_dedup_claims_last_seen
        ON view_dedup_claims (last_seen_at)
    """)

    # --- Summary Store ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS entity_view_summaries (
            entity_id VARCHAR(64) PRIMARY KEY,
            total_views INTEGER NOT NULL DEFAULT 0,
            unique_views INTEGER NOT NULL DEFAULT 0,
            history_daily INTEGER NOT NULL DEFAULT 0,
            history_weekly INTEGER NOT NULL DEFAULT 0,
            history_monthly INTEGER NOT NULL DEFAULT 0,
            window_hours INTEGER NOT NULL DEFAULT 24,
            last_updated TIMESTAMPTZ
        )
    """)


def downgrade() -> None:
    op.drop_table("entity_view_summaries")
    op.drop_table("view_dedup_claims")
    op.drop_table("view_events")
