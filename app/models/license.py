"""License model."""

from datetime import datetime

from app.database import db

LICENSE_STATUS_ACTIVE = "active"
LICENSE_STATUS_AVAILABLE = "available"
LICENSE_STATUS_CANCELLED = "cancelled"


class License(db.Model):
    """Model for a license key bound to a subscription and, optionally, a site."""

    __tablename__ = "licenses"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    license_key = db.Column(db.String(64), unique=True, nullable=False)
    customer_id = db.Column(db.String(255), nullable=False)
    user_email = db.Column(db.String(255), nullable=True)
    subscription_id = db.Column(db.String(255), nullable=True)
    item_id = db.Column(db.String(255), nullable=True)

    # Unassigned quantity licenses have no site until activated
    site_domain = db.Column(db.String(255), nullable=True)
    platform = db.Column(db.String(50), nullable=True)

    status = db.Column(db.String(50), nullable=False, default=LICENSE_STATUS_AVAILABLE)
    billing_period = db.Column(db.String(50), nullable=True)
    renewal_date = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index("idx_licenses_customer_id", "customer_id"),
        db.Index("idx_licenses_subscription_id", "subscription_id"),
        db.Index("idx_licenses_site_domain", "site_domain"),
    )

    def __repr__(self):
        """Return a string representation of the license."""
        return f"<License {self.license_key}>"
