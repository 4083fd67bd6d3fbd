"""Subscription models."""

from datetime import datetime

from app.database import db


class Subscription(db.Model):
    """Local mirror of a Stripe subscription."""

    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    subscription_id = db.Column(db.String(255), unique=True, nullable=False)
    customer_id = db.Column(db.String(255), nullable=False)
    user_email = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), nullable=False)
    billing_period = db.Column(db.String(50), nullable=True)
    current_period_start = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (db.Index("idx_subscriptions_customer_id", "customer_id"),)

    def __repr__(self):
        """Return a string representation of the subscription."""
        return f"<Subscription {self.subscription_id}>"


class SubscriptionItem(db.Model):
    """A subscription line item scoped to a single site."""

    __tablename__ = "subscription_items"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    item_id = db.Column(db.String(255), unique=True, nullable=False)
    subscription_id = db.Column(db.String(255), nullable=False)
    site_domain = db.Column(db.String(255), nullable=True)
    price_id = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(50), nullable=False, default="active")

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (db.Index("idx_subscription_items_subscription_id", "subscription_id"),)

    def __repr__(self):
        """Return a string representation of the subscription item."""
        return f"<SubscriptionItem {self.item_id} {self.site_domain}>"
