"""Thin wrapper around the Stripe API calls made by the provisioning queue.

Every call returns plain dictionaries so the queue code does not depend on Stripe object
types, and every Stripe failure is raised as :class:`ProviderError`.
"""

import hashlib
import logging

import stripe
from flask import current_app

from consentbit.exceptions import ProviderError


def subscription_idempotency_key(license_key: str, payment_intent_id: str) -> str:
    """Derive the provider idempotency key for creating the subscription of a license."""
    digest = hashlib.sha256(f"{license_key}:{payment_intent_id}".encode()).hexdigest()
    return f"sub-{digest[:32]}"


def _first_item(subscription) -> dict | None:
    # StripeObject.items is the dict method, the line items live under the "items" key
    items = subscription.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else None


class StripeProvider:
    """Payment provider backed by the Stripe API."""

    def __init__(self, api_key: str | None = None):
        """Initialize the provider with the Stripe secret key.

        Parameters
        ----------
        api_key : str, optional
            The Stripe secret key, by default ``STRIPE_SECRET_KEY`` from the app config.
        """
        self.api_key = api_key or current_app.config.get("STRIPE_SECRET_KEY")
        if not self.api_key:
            raise ValueError("STRIPE_SECRET_KEY not found in application configuration")

    def _call(self, description: str, func, *args, **kwargs):
        try:
            return func(*args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            logging.error(f"Stripe {description} failed: {str(e)}")
            raise ProviderError(
                f"Stripe {description} failed: {e.user_message or str(e)}",
                code=getattr(e, "code", None),
                http_status=getattr(e, "http_status", None),
            ) from e

    def create_subscription(
        self,
        customer: str,
        price: str,
        quantity: int,
        trial_end: int | None,
        metadata: dict,
        idempotency_key: str | None = None,
    ) -> dict:
        """Create a subscription for ``customer`` on ``price``.

        Returns
        -------
        dict
            ``id``, ``item_id``, ``status``, ``customer``, ``current_period_start`` and
            ``current_period_end`` of the created subscription.
        """
        params = {
            "customer": customer,
            "items": [{"price": price, "quantity": quantity}],
            "metadata": {k: str(v) for k, v in metadata.items()},
        }
        if trial_end:
            params["trial_end"] = trial_end
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        subscription = self._call("subscription creation", stripe.Subscription.create, **params)
        item = _first_item(subscription)
        # newer API versions report the billing period on the item
        period_source = item if item and item.get("current_period_end") else subscription
        return {
            "id": subscription["id"],
            "item_id": item["id"] if item else None,
            "status": subscription.get("status"),
            "customer": subscription.get("customer"),
            "current_period_start": period_source.get("current_period_start"),
            "current_period_end": period_source.get("current_period_end"),
        }

    def get_price(self, price_id: str) -> dict:
        """Fetch a price, returning its amount, currency, interval and metadata."""
        price = self._call("price lookup", stripe.Price.retrieve, price_id)
        recurring = price.get("recurring") or {}
        return {
            "id": price["id"],
            "unit_amount": price.get("unit_amount"),
            "currency": price.get("currency"),
            "interval": recurring.get("interval"),
            "metadata": dict(price.get("metadata") or {}),
        }

    def get_payment_intent(self, payment_intent_id: str) -> dict:
        """Fetch a payment intent, returning its amount, currency and latest charge."""
        intent = self._call(
            "payment intent lookup", stripe.PaymentIntent.retrieve, payment_intent_id
        )
        charge = intent.get("latest_charge")
        if isinstance(charge, dict):
            charge = charge.get("id")
        return {
            "id": intent["id"],
            "amount": intent.get("amount"),
            "amount_received": intent.get("amount_received"),
            "currency": intent.get("currency"),
            "charge_id": charge,
            "metadata": dict(intent.get("metadata") or {}),
        }

    def create_refund(
        self,
        charge_id: str,
        amount: int,
        metadata: dict,
        idempotency_key: str | None = None,
    ) -> dict:
        """Refund ``amount`` (minor units) of ``charge_id``."""
        params = {
            "charge": charge_id,
            "amount": amount,
            "metadata": {k: str(v) for k, v in metadata.items()},
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        refund = self._call("refund creation", stripe.Refund.create, **params)
        return {
            "id": refund["id"],
            "amount": refund.get("amount"),
            "currency": refund.get("currency"),
            "status": refund.get("status"),
        }


    def create_checkout_session(
        self,
        customer_email: str,
        price: str,
        quantity: int,
        metadata: dict,
        success_url: str,
        cancel_url: str,
    ) -> dict:
        """Create a one-time payment checkout for ``quantity`` units of ``price``.

        The session always creates a customer, so the completed checkout carries the
        customer id the provisioning jobs need. ``metadata`` is copied onto the payment
        intent as well.

        Returns
        -------
        dict
            ``id`` and ``url`` of the checkout session.
        """
        metadata = {k: str(v) for k, v in metadata.items()}
        session = self._call(
            "checkout session creation",
            stripe.checkout.Session.create,
            mode="payment",
            customer_creation="always",
            customer_email=customer_email,
            line_items=[{"price": price, "quantity": quantity}],
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
            success_url=success_url,
            cancel_url=cancel_url,
        )
        return {"id": session["id"], "url": session.get("url")}

    def update_subscription_metadata(self, subscription_id: str, metadata: dict) -> dict:
        """Merge ``metadata`` into the metadata of a subscription."""
        subscription = self._call(
            "subscription update",
            stripe.Subscription.modify,
            subscription_id,
            metadata={k: str(v) for k, v in metadata.items()},
        )
        return {
            "id": subscription["id"],
            "status": subscription.get("status"),
            "metadata": dict(subscription.get("metadata") or {}),
        }


def get_provider() -> StripeProvider:
    """Return the payment provider configured for the current app."""
    return StripeProvider()
