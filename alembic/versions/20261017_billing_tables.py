"""Create payments, subscriptions, processed_webhook_events and notifications.

Revision ID: 5c1e0b7d2a94
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

revision = "5c1e0b7d2a94"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("external_payment_id", sa.String(255), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False, server_default="coinpay"),
        sa.Column("owner_user_id", sa.String(36), nullable=False),
        sa.Column("type", sa.String(50), nullable=False, server_default="subscription"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("amount_crypto", sa.Float, nullable=True),
        sa.Column("amount_fiat", sa.Float, nullable=True),
        sa.Column("currency", sa.String(20), nullable=True),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_payments_external_payment_id", "payments", ["external_payment_id"], unique=True)
    op.create_index("ix_payments_owner_user_id", "payments", ["owner_user_id"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("plan", sa.String(20), nullable=False, server_default="free"),
        sa.Column("status", sa.String(20), nullable=False, server_default="incomplete"),
        sa.Column("provider", sa.String(20), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("external_customer_ref", sa.String(255), nullable=True),
        sa.Column("external_subscription_ref", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"], unique=True)
    op.create_index("ix_subscriptions_external_customer_ref", "subscriptions", ["external_customer_ref"])
    op.create_index("ix_subscriptions_plan_status", "subscriptions", ["plan", "status"])

    op.create_table(
        "processed_webhook_events",
        sa.Column("event_key", sa.String(320), primary_key=True),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("external_event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_processed_webhook_events_received_at", "processed_webhook_events", ["received_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("data", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("processed_webhook_events")
    op.drop_table("subscriptions")
    op.drop_table("payments")
