"""Initial schema: users, binding requests, verification codes, shared content, trackers.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

PENDING_ONLY = sa.text("status = 'pending'")


def _user_fk(name: str = "user_id", **kwargs: object) -> sa.Column:
    return sa.Column(name, sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, **kwargs)


def upgrade() -> None:
    """Create all tables."""
    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(256), nullable=True),
        sa.Column("invitation_code", sa.String(16), nullable=True),
        sa.Column("bound_invitation_code", sa.String(16), nullable=True),
        sa.Column("partner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("email_verified", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("token_version", sa.Integer(), server_default="0", nullable=False),
        sa.Column("gender", sa.String(8), server_default="male", nullable=False),
        sa.Column("name", sa.String(64), nullable=True),
        sa.Column("avatar", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("gender IN ('male', 'female')", name="ck_users_gender"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("invitation_code", name="uq_users_invitation_code"),
    )

    # --- binding_requests ---
    op.create_table(
        "binding_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk("requester_user_id"),
        _user_fk("target_user_id"),
        sa.Column("invite_code", sa.String(16), nullable=False),
        sa.Column("confirm_token", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), server_default="pending", nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'expired')", name="ck_binding_requests_status"
        ),
        sa.UniqueConstraint("confirm_token", name="uq_binding_requests_confirm_token"),
    )
    # At most one pending request per requester and per target
    op.create_index(
        "idx_binding_requests_requester_pending_unique",
        "binding_requests",
        ["requester_user_id"],
        unique=True,
        postgresql_where=PENDING_ONLY,
        sqlite_where=PENDING_ONLY,
    )
    op.create_index(
        "idx_binding_requests_target_pending_unique",
        "binding_requests",
        ["target_user_id"],
        unique=True,
        postgresql_where=PENDING_ONLY,
        sqlite_where=PENDING_ONLY,
    )

    # --- email_verifications ---
    op.create_table(
        "email_verifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("purpose", sa.String(32), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("password_hash", sa.String(256), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("purpose IN ('signup', 'reset_password')", name="ck_email_verifications_purpose"),
        sa.UniqueConstraint("email", "purpose", name="uq_email_verifications_email_purpose"),
    )

    # --- memories / events ---
    op.create_table(
        "memories",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("image", sa.Text(), nullable=False),
        sa.Column("rotation", sa.String(16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_memories_user_created", "memories", ["user_id", "created_at"])

    op.create_table(
        "events",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("subtitle", sa.String(160), server_default="", nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("image", sa.Text(), server_default="", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_events_user_created", "events", ["user_id", "created_at"])

    # --- notifications / user_settings ---
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(16), server_default="system", nullable=False),
        sa.Column("read", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("type IN ('system', 'interaction')", name="ck_notifications_type"),
    )
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])

    op.create_table(
        "user_settings",
        _user_fk(primary_key=True),
        sa.Column("together_date", sa.Date(), nullable=True),
        sa.Column("is_connected", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # --- trackers ---
    op.create_table(
        "focus_stats",
        _user_fk(primary_key=True),
        sa.Column("today_focus_minutes", sa.Integer(), server_default="0", nullable=False),
        sa.Column("today_sessions", sa.Integer(), server_default="0", nullable=False),
        sa.Column("streak", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_sessions", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_focus_date", sa.Date(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "period_tracker_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("is_period", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("mood", sa.String(16), nullable=True),
        sa.Column("flow", sa.String(8), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "flow IS NULL OR flow IN ('light', 'medium', 'heavy')", name="ck_period_tracker_entries_flow"
        ),
        sa.UniqueConstraint("user_id", "entry_date", name="uq_period_tracker_entries_user_date"),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("period_tracker_entries")
    op.drop_table("focus_stats")
    op.drop_table("user_settings")
    op.drop_index("ix_notifications_user_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_events_user_created", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_memories_user_created", table_name="memories")
    op.drop_table("memories")
    op.drop_table("email_verifications")
    op.drop_index("idx_binding_requests_target_pending_unique", table_name="binding_requests")
    op.drop_index("idx_binding_requests_requester_pending_unique", table_name="binding_requests")
    op.drop_table("binding_requests")
    op.drop_table("users")
