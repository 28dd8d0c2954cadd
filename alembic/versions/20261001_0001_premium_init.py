"""Initialize premium access schema.

Revision ID: 20261001_0001
Revises:
Create Date: 2026-10-01 00:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind: sa.engine.Connection, table_name: str) -> bool:
    inspector = sa.inspect(bind)
    return table_name in set(inspector.get_table_names())


def _has_index(bind: sa.engine.Connection, table_name: str, index_name: str) -> bool:
    inspector = sa.inspect(bind)
    if table_name not in set(inspector.get_table_names()):
        return False
    return any(item.get("name") == index_name for item in inspector.get_indexes(table_name))


def _create_index(bind: sa.engine.Connection, name: str, table: str, columns: list[str], *, unique: bool = False) -> None:
    if not _has_index(bind, table, name):
        op.create_index(name, table, columns, unique=unique)


def upgrade() -> None:
    bind = op.get_bind()

    if not _table_exists(bind, "premium_plans"):
        op.create_table(
            "premium_plans",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("code", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("price_minor", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("currency", sa.String(length=8), nullable=False, server_default=sa.text("'INR'")),
            sa.Column("validity_days", sa.Integer(), nullable=False, server_default=sa.text("365")),
            sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'active'")),
            sa.Column("is_free", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_index(bind, op.f("ix_premium_plans_code"), "premium_plans", ["code"], unique=True)
    _create_index(bind, op.f("ix_premium_plans_status"), "premium_plans", ["status"])

    if not _table_exists(bind, "premium_payments"):
        op.create_table(
            "premium_payments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("plan_id", sa.String(length=36), nullable=False),
            sa.Column("amount_minor", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("currency", sa.String(length=8), nullable=False, server_default=sa.text("'INR'")),
            sa.Column("receipt", sa.String(length=64), nullable=True),
            sa.Column("gateway_order_id", sa.String(length=128), nullable=False),
            sa.Column("gateway_payment_id", sa.String(length=128), nullable=True),
            sa.Column("gateway_signature", sa.String(length=256), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
            sa.Column("finalized_by", sa.String(length=16), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["plan_id"], ["premium_plans.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("gateway_payment_id"),
        )
    _create_index(bind, op.f("ix_premium_payments_user_id"), "premium_payments", ["user_id"])
    _create_index(bind, op.f("ix_premium_payments_plan_id"), "premium_payments", ["plan_id"])
    _create_index(bind, op.f("ix_premium_payments_created_at"), "premium_payments", ["created_at"])
    _create_index(
        bind,
        op.f("ix_premium_payments_gateway_order_id"),
        "premium_payments",
        ["gateway_order_id"],
        unique=True,
    )
    _create_index(bind, "ix_premium_payments_user_status", "premium_payments", ["user_id", "status"])
    _create_index(bind, "ix_premium_payments_status_created", "premium_payments", ["status", "created_at"])

    if not _table_exists(bind, "premium_access_grants"):
        op.create_table(
            "premium_access_grants",
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("archive_unlocked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("archive_expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("materials_unlocked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("materials_expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("combo_unlocked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("combo_expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("user_id"),
        )

    if not _table_exists(bind, "premium_notifications"):
        op.create_table(
            "premium_notifications",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'unread'")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_index(bind, op.f("ix_premium_notifications_user_id"), "premium_notifications", ["user_id"])
    _create_index(bind, op.f("ix_premium_notifications_created_at"), "premium_notifications", ["created_at"])
    _create_index(
        bind,
        "ix_premium_notifications_user_created",
        "premium_notifications",
        ["user_id", "created_at"],
    )

    if not _table_exists(bind, "premium_audit_logs"):
        op.create_table(
            "premium_audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("provider", sa.String(length=32), nullable=False, server_default=sa.text("'razorpay'")),
            sa.Column("event_type", sa.String(length=64), nullable=False),
            sa.Column("gateway_order_id", sa.String(length=128), nullable=True),
            sa.Column("signature", sa.String(length=512), nullable=True),
            sa.Column("signature_valid", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("raw_payload", sa.Text(), nullable=False),
            sa.Column("outcome", sa.String(length=32), nullable=False),
            sa.Column("detail", sa.Text(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_index(bind, op.f("ix_premium_audit_logs_occurred_at"), "premium_audit_logs", ["occurred_at"])
    _create_index(bind, op.f("ix_premium_audit_logs_provider"), "premium_audit_logs", ["provider"])
    _create_index(bind, op.f("ix_premium_audit_logs_event_type"), "premium_audit_logs", ["event_type"])
    _create_index(bind, op.f("ix_premium_audit_logs_gateway_order_id"), "premium_audit_logs", ["gateway_order_id"])
    _create_index(bind, op.f("ix_premium_audit_logs_outcome"), "premium_audit_logs", ["outcome"])


def downgrade() -> None:
    op.drop_table("premium_audit_logs")
    op.drop_table("premium_notifications")
    op.drop_table("premium_access_grants")
    op.drop_table("premium_payments")
    op.drop_table("premium_plans")
