"""License schemas."""

from datetime import datetime

from pydantic import BaseModel


class LicenseSchema(BaseModel):
    """Schema for a license."""

    license_key: str
    customer_id: str
    user_email: str | None = None
    subscription_id: str | None = None
    item_id: str | None = None
    site_domain: str | None = None
    platform: str | None = None
    status: str
    billing_period: str | None = None
    renewal_date: datetime | None = None
    created_at: datetime | None = None

    class Config:
        """Config for the license schema."""

        from_attributes = True


class RefundSchema(BaseModel):
    """Schema for a refund."""

    refund_id: str
    payment_intent_id: str
    charge_id: str | None = None
    amount: int
    currency: str | None = None
    reason: str | None = None
    queue_id: str
    license_key: str | None = None
    created_at: datetime | None = None

    class Config:
        """Config for the refund schema."""

        from_attributes = True
