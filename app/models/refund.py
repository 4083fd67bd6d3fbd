"""Refund and payment record models."""

from datetime import datetime

from app.database import db


class Refund(db.Model):
    """A compensating refund issued for a permanently failed queue job."""

    __tablename__ = "refunds"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    refund_id = db.Column(db.String(255), unique=True, nullable=False)
    payment_intent_id = db.Column(db.String(255), nullable=False)
    charge_id = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Integer, nullable=False)  # minor currency units
    currency = db.Column(db.String(10), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    # at most one refund per job
    queue_id = db.Column(db.String(64), unique=True, nullable=False)
    license_key = db.Column(db.String(64), nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.Index("idx_refunds_payment_intent_id", "payment_intent_id"),)

    def __repr__(self):
        """Return a string representation of the refund."""
        return f"<Refund {self.refund_id} for {self.queue_id}>"


class Payment(db.Model):
    """Audit row of a provisioned payment, written by a background task."""

    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    payment_intent_id = db.Column(db.String(255), nullable=False)
    customer_id = db.Column(db.String(255), nullable=False)
    user_email = db.Column(db.String(255), nullable=True)
    subscription_id = db.Column(db.String(255), nullable=True)
    license_key = db.Column(db.String(64), nullable=True)
    site_domain = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Integer, nullable=True)
    currency = db.Column(db.String(10), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index("idx_payments_payment_intent_id", "payment_intent_id"),
        db.Index("idx_payments_customer_id", "customer_id"),
    )
