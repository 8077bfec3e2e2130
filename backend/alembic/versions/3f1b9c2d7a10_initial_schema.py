"""initial schema

Revision ID: 3f1b9c2d7a10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f1b9c2d7a10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


SYNC_STATUSES = "'idle', 'syncing', 'error'"
AUTH_MODES = "'github_app'"
JOB_STATUSES = "'pending', 'processing', 'completed', 'failed'"
SYNC_REASONS = "'initial_backfill', 'push', 'installation_repositories', 'reconcile'"


def _user_fk(table_name: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        ["user_id"],
        ["users.user_id"],
        name=f"fk_{table_name}_user_id_users",
        ondelete="CASCADE",
    )


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("user_id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("user_id", name="pk_users"),
        sa.UniqueConstraint("external_id", name="uq_users_external_id"),
    )

    # --- github_connections ---
    op.create_table(
        "github_connections",
        sa.Column("connection_id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("auth_mode", sa.String(length=20), server_default="github_app", nullable=False),
        sa.Column("installation_id", sa.BigInteger(), nullable=False),
        sa.Column("installation_account_login", sa.String(length=255), nullable=False),
        sa.Column("installation_account_type", sa.String(length=20), nullable=False),
        sa.Column(
            "repo_selection_mode",
            sa.String(length=20),
            server_default="selected",
            nullable=False,
        ),
        sa.Column("github_login", sa.String(length=255), nullable=True),
        sa.Column(
            "connected_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("last_synced_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("history_synced_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "synced_from_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Earliest authored timestamp ingested so far",
        ),
        sa.Column(
            "synced_to_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Latest authored timestamp ingested so far",
        ),
        sa.Column("sync_status", sa.String(length=20), server_default="idle", nullable=False),
        sa.Column("last_error_code", sa.String(length=64), nullable=True),
        sa.Column("last_error_message", sa.Text(), nullable=True),
        sa.Column("last_webhook_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("streak_days", sa.Integer(), nullable=True),
        sa.Column("streak_updated_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            f"sync_status IN ({SYNC_STATUSES})",
            name="ck_github_connections_sync_status",
        ),
        sa.CheckConstraint(
            f"auth_mode IN ({AUTH_MODES})",
            name="ck_github_connections_auth_mode",
        ),
        _user_fk("github_connections"),
        sa.PrimaryKeyConstraint("connection_id", name="pk_github_connections"),
        sa.UniqueConstraint("user_id", name="uq_github_connections_user_id"),
        sa.UniqueConstraint("installation_id", name="uq_github_connections_installation_id"),
    )

    # --- goals ---
    op.create_table(
        "goals",
        sa.Column("goal_id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("commits_per_day", sa.Integer(), server_default="1", nullable=False),
        sa.Column("loc_per_day", sa.Integer(), server_default="50", nullable=False),
        sa.Column("push_by_hour", sa.Integer(), server_default="18", nullable=False),
        sa.Column("timezone", sa.String(length=64), server_default="UTC", nullable=False),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "push_by_hour >= 0 AND push_by_hour <= 23",
            name="ck_goals_push_by_hour",
        ),
        _user_fk("goals"),
        sa.PrimaryKeyConstraint("goal_id", name="pk_goals"),
        sa.UniqueConstraint("user_id", name="uq_goals_user_id"),
    )

    # --- notification_connections ---
    op.create_table(
        "notification_connections",
        sa.Column("notification_id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("chat_id", sa.String(length=64), nullable=False),
        sa.Column("telegram_user_id", sa.String(length=64), nullable=True),
        sa.Column("telegram_username", sa.String(length=255), nullable=True),
        sa.Column("quiet_hours_start", sa.Integer(), nullable=True),
        sa.Column("quiet_hours_end", sa.Integer(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("last_notified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "connected_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        _user_fk("notification_connections"),
        sa.PrimaryKeyConstraint("notification_id", name="pk_notification_connections"),
        sa.UniqueConstraint("user_id", name="uq_notification_connections_user_id"),
    )

    # --- sync_jobs ---
    op.create_table(
        "sync_jobs",
        sa.Column("job_id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("installation_id", sa.BigInteger(), nullable=False),
        sa.Column("repo_full_name", sa.String(length=512), nullable=True),
        sa.Column("reason", sa.String(length=50), nullable=False),
        sa.Column("lookback_days", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), server_default="pending", nullable=False),
        sa.Column("attempt", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "run_after",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("delivery_id", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(f"status IN ({JOB_STATUSES})", name="ck_sync_jobs_status"),
        sa.CheckConstraint(f"reason IN ({SYNC_REASONS})", name="ck_sync_jobs_reason"),
        _user_fk("sync_jobs"),
        sa.PrimaryKeyConstraint("job_id", name="pk_sync_jobs"),
        sa.UniqueConstraint("delivery_id", name="uq_sync_jobs_delivery_id"),
    )
    op.create_index("ix_sync_jobs_status_run_after", "sync_jobs", ["status", "run_after"])
    op.create_index(
        "ix_sync_jobs_installation_status", "sync_jobs", ["installation_id", "status"]
    )

    # --- commit_events ---
    op.create_table(
        "commit_events",
        sa.Column("event_id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "repo",
            sa.String(length=512),
            nullable=False,
            comment="Repository full name (owner/name)",
        ),
        sa.Column("repo_id", sa.BigInteger(), nullable=True),
        sa.Column("sha", sa.String(length=40), nullable=False),
        sa.Column("message", sa.Text(), server_default="", nullable=False),
        sa.Column("url", sa.Text(), server_default="", nullable=False),
        sa.Column("additions", sa.Integer(), server_default="0", nullable=False),
        sa.Column("deletions", sa.Integer(), server_default="0", nullable=False),
        sa.Column("files_changed", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "committed_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            comment="Author timestamp, the one GitHub contributions are keyed to",
        ),
        sa.Column("size", sa.Integer(), server_default="0", nullable=False),
        _user_fk("commit_events"),
        sa.PrimaryKeyConstraint("event_id", name="pk_commit_events"),
        sa.UniqueConstraint("user_id", "sha", name="uq_commit_events_user_sha"),
    )
    op.create_index(
        "ix_commit_events_user_committed_at", "commit_events", ["user_id", "committed_at"]
    )

    # --- daily_stats ---
    op.create_table(
        "daily_stats",
        sa.Column("stat_id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("commit_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("loc_changed", sa.Integer(), server_default="0", nullable=False),
        sa.Column("avg_commit_size", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "repos_touched",
            postgresql.ARRAY(sa.String(length=512)),
            server_default="{}",
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        _user_fk("daily_stats"),
        sa.PrimaryKeyConstraint("stat_id", name="pk_daily_stats"),
        sa.UniqueConstraint("user_id", "date", name="uq_daily_stats_user_date"),
    )

    # --- webhook_deliveries ---
    op.create_table(
        "webhook_deliveries",
        sa.Column("delivery_id", sa.String(length=64), nullable=False),
        sa.Column("event", sa.String(length=64), nullable=False),
        sa.Column("installation_id", sa.BigInteger(), nullable=True),
        sa.Column(
            "received_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("delivery_id", name="pk_webhook_deliveries"),
    )


def downgrade() -> None:
    op.drop_table("webhook_deliveries")
    op.drop_table("daily_stats")
    op.drop_index("ix_commit_events_user_committed_at", table_name="commit_events")
    op.drop_table("commit_events")
    op.drop_index("ix_sync_jobs_installation_status", table_name="sync_jobs")
    op.drop_index("ix_sync_jobs_status_run_after", table_name="sync_jobs")
    op.drop_table("sync_jobs")
    op.drop_table("notification_connections")
    op.drop_table("goals")
    op.drop_table("github_connections")
    op.drop_table("users")
