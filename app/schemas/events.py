"""Inbound payment event schemas."""

import json

from pydantic import BaseModel, field_validator


class LineItem(BaseModel):
    """A checkout line item."""

    price_id: str | None = None
    quantity: int = 1
    amount_total: int | None = None


class PaymentEvent(BaseModel):
    """A completed-payment event as delivered to the job producer."""

    event_type: str
    session_or_intent_id: str
    customer_id: str | None = None
    user_email: str | None = None
    payment_intent_id: str | None = None
    mode: str | None = None
    metadata: dict[str, str] = {}
    amount: int | None = None
    currency: str | None = None
    line_items: list[LineItem] = []

    @field_validator("metadata", mode="before")
    @classmethod
    def _stringify_metadata(cls, value):
        # Stripe metadata values are always strings; coerce anything else we are handed
        if not value:
            return {}
        return {
            str(k): v if isinstance(v, str) else json.dumps(v) for k, v in dict(value).items()
        }

    @property
    def intent_id(self) -> str:
        """Return the payment intent id, falling back to the session id."""
        return self.payment_intent_id or self.session_or_intent_id

    @property
    def total_quantity(self) -> int:
        """Return the summed quantity of all line items."""
        return sum(item.quantity for item in self.line_items)
