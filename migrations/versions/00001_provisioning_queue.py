"""Create the license provisioning tables.

Revision ID: 00001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

revision = "00001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create queue, licenses, subscriptions, refunds, payments and webhook tables."""
    op.create_table(
        "queue",
        sa.Column("queue_id", sa.String(64), nullable=False),
        sa.Column("job_type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("customer_id", sa.String(255), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("payment_intent_id", sa.String(255), nullable=False),
        sa.Column("price_id", sa.String(255), nullable=True),
        sa.Column("license_key", sa.String(64), nullable=True),
        sa.Column("placeholder_key", sa.String(64), nullable=True),
        sa.Column("subscription_id", sa.String(255), nullable=True),
        sa.Column("item_id", sa.String(255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("next_retry_at", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.Integer(), nullable=False),
        sa.Column("processed_at", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("queue_id"),
    )
    op.create_index("idx_queue_status_next_retry", "queue", ["status", "next_retry_at"])
    op.create_index("idx_queue_payment_intent", "queue", ["payment_intent_id"])
    op.create_index("idx_queue_license_key", "queue", ["license_key"])
    op.create_index("idx_queue_created_at", "queue", ["created_at"])

    op.create_table(
        "licenses",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("license_key", sa.String(64), nullable=False),
        sa.Column("customer_id", sa.String(255), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("subscription_id", sa.String(255), nullable=True),
        sa.Column("item_id", sa.String(255), nullable=True),
        sa.Column("site_domain", sa.String(255), nullable=True),
        sa.Column("platform", sa.String(50), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="available"),
        sa.Column("billing_period", sa.String(50), nullable=True),
        sa.Column("renewal_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("license_key"),
    )
    op.create_index("idx_licenses_customer_id", "licenses", ["customer_id"])
    op.create_index("idx_licenses_subscription_id", "licenses", ["subscription_id"])
    op.create_index("idx_licenses_site_domain", "licenses", ["site_domain"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subscription_id", sa.String(255), nullable=False),
        sa.Column("customer_id", sa.String(255), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("billing_period", sa.String(50), nullable=True),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subscription_id"),
    )
    op.create_index("idx_subscriptions_customer_id", "subscriptions", ["customer_id"])

    op.create_table(
        "subscription_items",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("item_id", sa.String(255), nullable=False),
        sa.Column("subscription_id", sa.String(255), nullable=False),
        sa.Column("site_domain", sa.String(255), nullable=True),
        sa.Column("price_id", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(50), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("item_id"),
    )
    op.create_index(
        "idx_subscription_items_subscription_id", "subscription_items", ["subscription_id"]
    )

    op.create_table(
        "refunds",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("refund_id", sa.String(255), nullable=False),
        sa.Column("payment_intent_id", sa.String(255), nullable=False),
        sa.Column("charge_id", sa.String(255), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(10), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("queue_id", sa.String(64), nullable=False),
        sa.Column("license_key", sa.String(64), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("refund_id"),
        sa.UniqueConstraint("queue_id"),
    )
    op.create_index("idx_refunds_payment_intent_id", "refunds", ["payment_intent_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("payment_intent_id", sa.String(255), nullable=False),
        sa.Column("customer_id", sa.String(255), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("subscription_id", sa.String(255), nullable=True),
        sa.Column("license_key", sa.String(64), nullable=True),
        sa.Column("site_domain", sa.String(255), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(10), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_payments_payment_intent_id", "payments", ["payment_intent_id"])
    op.create_index("idx_payments_customer_id", "payments", ["customer_id"])

    op.create_table(
        "stripe_webhook_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("stripe_event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(255), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="received"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_event_id"),
    )
    op.create_index(
        "idx_stripe_webhook_events_event_type", "stripe_webhook_events", ["event_type"]
    )
    op.create_index(
        "idx_stripe_webhook_events_created_at", "stripe_webhook_events", ["created_at"]
    )
    op.create_index("idx_stripe_webhook_events_status", "stripe_webhook_events", ["status"])


def downgrade():
    """Drop the license provisioning tables."""
    op.drop_table("stripe_webhook_events")
    op.drop_table("payments")
    op.drop_table("refunds")
    op.drop_table("subscription_items")
    op.drop_table("subscriptions")
    op.drop_table("licenses")
    op.drop_table("queue")
