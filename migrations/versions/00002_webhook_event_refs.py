"""Track the checkout and payment behind each webhook event.

Revision ID: 00002
Revises: 00001
Create Date: 2026-10-19 14:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

revision = "00002"
down_revision = "00001"
branch_labels = None
depends_on = None


def upgrade():
    """Add object, payment intent and delivery count columns to stripe_webhook_events."""
    with op.batch_alter_table("stripe_webhook_events") as batch_op:
        batch_op.add_column(sa.Column("object_id", sa.String(255), nullable=True))
        batch_op.add_column(sa.Column("payment_intent_id", sa.String(255), nullable=True))
        batch_op.add_column(
            sa.Column("delivery_count", sa.Integer(), nullable=False, server_default="1")
        )
        batch_op.drop_index("idx_stripe_webhook_events_created_at")
        batch_op.create_index(
            "idx_stripe_webhook_events_payment_intent_id", ["payment_intent_id"]
        )


def downgrade():
    """Remove the webhook reference columns."""
    with op.batch_alter_table("stripe_webhook_events") as batch_op:
        batch_op.drop_index("idx_stripe_webhook_events_payment_intent_id")
        batch_op.create_index("idx_stripe_webhook_events_created_at", ["created_at"])
        batch_op.drop_column("delivery_count")
        batch_op.drop_column("payment_intent_id")
        batch_op.drop_column("object_id")
