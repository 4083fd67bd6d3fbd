"""API routes for starting Stripe checkouts.

The metadata written here is what the queue producer classifies the completed checkout
by: ``purchase_type`` picks the use case, ``quantity`` or ``sites`` size the jobs and
``price_id`` names the recurring price the subscriptions are created on.
"""

import json
import logging

from flask import current_app, request
from flask_restx import Namespace, Resource, fields
from pydantic import ValidationError

from app.schemas.checkout import QuantityCheckoutRequest, SiteCheckoutRequest
from consentbit.exceptions import ProviderError
from consentbit.provider import get_provider
from consentbit.queue.producer import PURCHASE_TYPE_QUANTITY, PURCHASE_TYPE_SITE

checkout_ns = Namespace("checkout", description="Checkout operations")

# Stripe rejects metadata values longer than this
METADATA_VALUE_LIMIT = 500

quantity_checkout_model = checkout_ns.model(
    "QuantityCheckout",
    {
        "email": fields.String(required=True, description="Customer email"),
        "quantity": fields.Integer(required=True, description="Number of licenses"),
        "billing_period": fields.String(description="monthly or yearly", default="monthly"),
    },
)

site_checkout_model = checkout_ns.model(
    "SiteCheckout",
    {
        "email": fields.String(required=True, description="Customer email"),
        "sites": fields.List(fields.String, required=True, description="Site domains"),
        "billing_period": fields.String(description="monthly or yearly", default="monthly"),
    },
)

checkout_session_model = checkout_ns.model(
    "CheckoutSession",
    {
        "checkout_url": fields.String(description="Stripe hosted checkout page"),
        "session_id": fields.String(description="Stripe checkout session ID"),
    },
)


def invalid_request(error: ValidationError):
    """Return the 400 response of a request body that failed validation."""
    errors = error.errors(include_url=False, include_context=False)
    return {"message": "Invalid request", "errors": errors}, 400


def price_for(billing_period: str) -> str | None:
    """Return the configured Stripe price of a billing period."""
    key = "STRIPE_PRICE_YEARLY" if billing_period == "yearly" else "STRIPE_PRICE_MONTHLY"
    return current_app.config.get(key)


def start_checkout(email: str, quantity: int, billing_period: str, metadata: dict):
    """Create the checkout session and return the API response."""
    price_id = price_for(billing_period)
    success_url = current_app.config.get("CHECKOUT_SUCCESS_URL")
    cancel_url = current_app.config.get("CHECKOUT_CANCEL_URL")
    if not price_id or not success_url or not cancel_url:
        logging.error(f"Checkout for {billing_period} billing is not configured")
        return {"message": "Checkout is not configured"}, 500

    metadata = {**metadata, "billing_period": billing_period, "price_id": price_id}
    try:
        session = get_provider().create_checkout_session(
            customer_email=email,
            price=price_id,
            quantity=quantity,
            metadata=metadata,
            success_url=success_url,
            cancel_url=cancel_url,
        )
    except ProviderError as e:
        logging.error(f"Checkout for {email} failed: {str(e)}")
        return {"message": "Payment provider unavailable, try again later"}, 502

    logging.info(f"Created {metadata['purchase_type']} checkout {session['id']} for {email}")
    return {"checkout_url": session["url"], "session_id": session["id"]}, 200


@checkout_ns.route("/quantity")
class QuantityCheckoutResource(Resource):
    """Resource for buying unassigned licenses."""

    @checkout_ns.expect(quantity_checkout_model)
    @checkout_ns.response(200, "Checkout created", checkout_session_model)
    def post(self):
        """Start a checkout for a number of licenses to activate later."""
        try:
            data = QuantityCheckoutRequest.model_validate(request.get_json(silent=True) or {})
        except ValidationError as e:
            return invalid_request(e)

        metadata = {"purchase_type": PURCHASE_TYPE_QUANTITY, "quantity": data.quantity}
        return start_checkout(data.email, data.quantity, data.billing_period, metadata)


@checkout_ns.route("/sites")
class SiteCheckoutResource(Resource):
    """Resource for buying one license per site."""

    @checkout_ns.expect(site_checkout_model)
    @checkout_ns.response(200, "Checkout created", checkout_session_model)
    def post(self):
        """Start a checkout for licenses bound to the given sites."""
        try:
            data = SiteCheckoutRequest.model_validate(request.get_json(silent=True) or {})
        except ValidationError as e:
            return invalid_request(e)

        sites = json.dumps(data.sites, separators=(",", ":"))
        if len(sites) > METADATA_VALUE_LIMIT:
            return {"message": "Too many sites for one checkout"}, 400

        metadata = {"purchase_type": PURCHASE_TYPE_SITE, "sites": sites}
        return start_checkout(data.email, len(data.sites), data.billing_period, metadata)
