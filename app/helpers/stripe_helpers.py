"""Stripe helper functions."""

import logging

import stripe
from flask import current_app

from app.schemas.events import LineItem, PaymentEvent
from consentbit.exceptions import ProviderError


def get_checkout_line_items(session_id: str) -> list[LineItem]:
    """Fetch the line items of a checkout session from Stripe.

    Parameters
    ----------
    session_id : str
        The Stripe checkout session ID.

    Returns
    -------
    list[LineItem]
        The line items of the session.

    Raises
    ------
    ProviderError
        If Stripe could not be reached or rejected the request. The caller must not
        treat this as an empty session, the event has to be delivered again.
    """
    try:
        line_items = stripe.checkout.Session.list_line_items(
            session_id, limit=100, api_key=current_app.config["STRIPE_SECRET_KEY"]
        )
    except stripe.StripeError as e:
        logging.error(f"Error fetching line items of checkout session {session_id}: {str(e)}")
        raise ProviderError(
            f"Stripe line item lookup for {session_id} failed: {e.user_message or str(e)}",
            code=getattr(e, "code", None),
            http_status=getattr(e, "http_status", None),
        ) from e

    return [
        LineItem(
            price_id=(item.get("price") or {}).get("id"),
            quantity=item.get("quantity") or 1,
            amount_total=item.get("amount_total"),
        )
        for item in line_items.get("data", [])
    ]


def normalize_email(email: str | None) -> str | None:
    """Lower-case and strip an email address; empty values become None."""
    if not email:
        return None
    return email.strip().lower() or None


def payment_event_from_session(event_type: str, session: dict) -> PaymentEvent:
    """Convert a completed checkout session into the event handed to the job producer.

    Line items are only fetched from Stripe when the session metadata does not name
    the price, or names a quantity purchase without the quantity.

    Raises
    ------
    ProviderError
        If the line items were needed but could not be fetched.
    """
    metadata = dict(session.get("metadata") or {})
    customer_details = session.get("customer_details") or {}

    line_items = []
    needs_line_items = not metadata.get("price_id") or (
        metadata.get("purchase_type") == "quantity" and not metadata.get("quantity")
    )
    if session.get("mode") == "payment" and needs_line_items:
        line_items = get_checkout_line_items(session["id"])

    return PaymentEvent(
        event_type=event_type,
        session_or_intent_id=session["id"],
        customer_id=session.get("customer"),
        user_email=normalize_email(customer_details.get("email") or session.get("customer_email")),
        payment_intent_id=session.get("payment_intent"),
        mode=session.get("mode"),
        metadata=metadata,
        amount=session.get("amount_total"),
        currency=session.get("currency"),
        line_items=line_items,
    )
