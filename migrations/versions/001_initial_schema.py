"""Initial trust & safety schema.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-01 00:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "ip_activity_log",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("ip_address", sa.String(45), nullable=False),
        sa.Column("action_type", sa.String(64), nullable=False),
        sa.Column("profile_id", sa.String(64), nullable=True),
        sa.Column("resource_id", sa.String(64), nullable=True),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("metadata", JSON_TYPE, nullable=False),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_ip_activity_log_ip_action_created_at",
        "ip_activity_log",
        ["ip_address", "action_type", "created_at"],
    )
    op.create_index("ix_ip_activity_log_profile_created_at", "ip_activity_log", ["profile_id", "created_at"])
    # Retention pruning
    op.create_index("ix_ip_activity_log_created_at", "ip_activity_log", ["created_at"])

    op.create_table(
        "rate_limit_counters",
        sa.Column("subject", sa.String(160), nullable=False),
        sa.Column("action_type", sa.String(64), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_requests", sa.Integer(), nullable=False),
        sa.Column("window_minutes", sa.Integer(), nullable=False),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=False),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("subject", "action_type", "window_start"),
    )
    op.create_index("ix_rate_limit_counters_updated_at", "rate_limit_counters", ["updated_at"])
    op.create_index("ix_rate_limit_counters_window_end", "rate_limit_counters", ["window_end"])

    op.create_table(
        "ip_blacklist",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("ip_address", sa.String(45), nullable=False, unique=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("banned_by", sa.String(64), nullable=True),
        _timestamp("banned_at"),
        _timestamp("expires_at", nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_ip_blacklist_active_expires", "ip_blacklist", ["is_active", "expires_at"])

    op.create_table(
        "suspicious_ip_patterns",
        sa.Column("ip_address", sa.String(45), nullable=False),
        sa.Column("pattern_type", sa.String(64), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("first_seen_at"),
        _timestamp("last_seen_at"),
        sa.Column("details", JSON_TYPE, nullable=False),
        sa.PrimaryKeyConstraint("ip_address", "pattern_type"),
    )
    op.create_index("ix_suspicious_ip_patterns_severity", "suspicious_ip_patterns", ["severity"])

    op.create_table(
        "reputation_action_log",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("profile_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(64), nullable=False),
        sa.Column("source_profile_id", sa.String(64), nullable=True),
        sa.Column("resource_id", sa.String(64), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_reputation_action_log_pair",
        "reputation_action_log",
        ["profile_id", "source_profile_id", "action_type", "created_at"],
    )
    op.create_index(
        "ix_reputation_action_log_profile_created_at",
        "reputation_action_log",
        ["profile_id", "created_at"],
    )

    op.create_table(
        "moderation_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("subject_resource_id", sa.String(64), nullable=False),
        sa.Column("resource_type", sa.String(32), nullable=False, server_default="clip"),
        sa.Column("reasons", JSON_TYPE, nullable=False),
        sa.Column("risk_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("reporter_id", sa.String(64), nullable=True),
        sa.Column("content_text", sa.Text(), nullable=True),
        sa.Column("workflow_state", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("assigned_to", sa.String(64), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("escalation_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("reviewed_at", nullable=True),
        sa.Column("reviewed_by", sa.String(64), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index(
        "ix_moderation_items_kind_state_created_at",
        "moderation_items",
        ["kind", "workflow_state", "created_at"],
    )
    op.create_index("ix_moderation_items_priority", "moderation_items", ["priority", "created_at"])
    op.create_index("ix_moderation_items_subject", "moderation_items", ["kind", "subject_resource_id"])
    op.create_index("ix_moderation_items_workflow_state", "moderation_items", ["workflow_state"])
    op.create_index("ix_moderation_items_assigned_to", "moderation_items", ["assigned_to"])

    op.create_table(
        "moderation_history",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("item_kind", sa.String(32), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("admin_id", sa.String(64), nullable=True),
        sa.Column("previous_value", JSON_TYPE, nullable=True),
        sa.Column("new_value", JSON_TYPE, nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("correlation_id", sa.String(64), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_moderation_history_item", "moderation_history", ["item_kind", "item_id", "created_at"])
    op.create_index("ix_moderation_history_admin", "moderation_history", ["admin_id", "created_at"])

    op.create_table(
        "admin_notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(48), nullable=False),
        sa.Column("item_kind", sa.String(16), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("severity", sa.String(16), nullable=True),
        sa.Column("payload", JSON_TYPE, nullable=False),
        _timestamp("created_at"),
        _timestamp("read_at", nullable=True),
    )
    op.create_index(
        "ix_admin_notifications_recipient_unread",
        "admin_notifications",
        ["recipient_id", "read_at", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("admin_notifications")
    op.drop_table("moderation_history")
    op.drop_table("moderation_items")
    op.drop_table("reputation_action_log")
    op.drop_table("suspicious_ip_patterns")
    op.drop_table("ip_blacklist")
    op.drop_table("rate_limit_counters")
    op.drop_table("ip_activity_log")
