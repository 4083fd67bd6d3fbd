"""Stripe webhook event model."""

from datetime import datetime

from app.database import db

WEBHOOK_STATUS_RECEIVED = "received"
WEBHOOK_STATUS_PROCESSED = "processed"
WEBHOOK_STATUS_FAILED = "failed"
WEBHOOK_STATUS_IGNORED = "ignored"


class StripeWebhookEvent(db.Model):
    """A delivered Stripe event and what the queue producer made of it.

    ``object_id`` is the id of the event's data object (the checkout session for
    ``checkout.session.completed``) and ``payment_intent_id`` its payment intent, which
    is the key queue jobs carry. Together they join an event to the jobs it produced.
    """

    __tablename__ = "stripe_webhook_events"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    stripe_event_id = db.Column(db.String(255), unique=True, nullable=False)
    event_type = db.Column(db.String(255), nullable=False)
    object_id = db.Column(db.String(255), nullable=True)
    payment_intent_id = db.Column(db.String(255), nullable=True)
    event_data = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(50), nullable=False, default=WEBHOOK_STATUS_RECEIVED)
    # Stripe retries until it gets a 2xx
    delivery_count = db.Column(db.Integer, nullable=False, default=1)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    processed_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index("idx_stripe_webhook_events_event_type", "event_type"),
        db.Index("idx_stripe_webhook_events_status", "status"),
        db.Index("idx_stripe_webhook_events_payment_intent_id", "payment_intent_id"),
    )

    def __repr__(self):
        """Return a string representation of the webhook event."""
        return f"<StripeWebhookEvent {self.stripe_event_id} {self.event_type} {self.status}>"
