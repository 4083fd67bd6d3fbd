"""Stripe webhook handler and health check.

Completed checkouts are turned into provisioning jobs by the queue producer; the webhook
itself never creates subscriptions for one-time payments.
"""

import logging
from datetime import datetime

import stripe
from flask import current_app, request
from flask_restx import Namespace, Resource, fields
from sqlalchemy.exc import SQLAlchemyError

from app.database import db
from app.helpers.stripe_helpers import normalize_email, payment_event_from_session
from app.models.stripe_webhook import (
    WEBHOOK_STATUS_FAILED,
    WEBHOOK_STATUS_IGNORED,
    WEBHOOK_STATUS_PROCESSED,
    WEBHOOK_STATUS_RECEIVED,
    StripeWebhookEvent,
)
from app.models.subscription import Subscription
from consentbit.exceptions import InvalidPayloadError, ProviderError
from consentbit.queue.producer import USE_CASE_DIRECT_LINK, enqueue

stripe_ns = Namespace("stripe", description="Stripe payment operations")

config_model = stripe_ns.model(
    "StripeConfig",
    {
        "publishableKey": fields.String(description="Stripe publishable key"),
    },
)

CHECKOUT_COMPLETED = "checkout.session.completed"


@stripe_ns.route("/config")
class StripeConfigResource(Resource):
    """Resource for getting Stripe configuration."""

    @stripe_ns.marshal_with(config_model)
    def get(self):
        """Get Stripe publishable key."""
        return {"publishableKey": current_app.config.get("STRIPE_PUBLISHABLE_KEY")}


@stripe_ns.route("/webhook")
class StripeWebhookResource(Resource):
    """Resource for handling Stripe webhooks."""

    def post(self):
        """Handle Stripe webhook events."""
        webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
        if not webhook_secret:
            logging.error("STRIPE_WEBHOOK_SECRET not found in application configuration")
            return {"error": "Webhook not configured"}, 500

        payload = request.data
        sig_header = request.headers.get("Stripe-Signature")

        try:
            event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
        except ValueError as e:
            logging.error(f"Invalid payload: {str(e)}")
            return {"error": "Invalid payload"}, 400
        except stripe.SignatureVerificationError as e:
            logging.error(f"Invalid signature: {str(e)}")
            return {"error": "Invalid signature"}, 400

        # storing is best effort, a failed insert must not lose the event
        webhook_event = self.store_webhook_event(event)

        return self.process_webhook_event(event, webhook_event)

    @staticmethod
    def store_webhook_event(event):
        """Store the webhook event, reusing the row of an earlier delivery of the same event."""
        try:
            existing = StripeWebhookEvent.query.filter_by(stripe_event_id=event["id"]).first()
            if existing:
                logging.info(f"Redelivery of webhook event {event['id']} (was {existing.status})")
                existing.delivery_count += 1
                db.session.commit()
                return existing

            logging.info(f"Storing webhook event: id={event['id']}, type={event['type']}")
            data_object = (event.get("data") or {}).get("object") or {}
            webhook_event = StripeWebhookEvent(
                stripe_event_id=event["id"],
                event_type=event["type"],
                object_id=data_object.get("id"),
                payment_intent_id=data_object.get("payment_intent"),
                event_data=event.to_dict() if hasattr(event, "to_dict") else dict(event),
                status=WEBHOOK_STATUS_RECEIVED,
            )
            db.session.add(webhook_event)
            db.session.commit()
            return webhook_event
        except SQLAlchemyError as e:
            db.session.rollback()
            logging.error(f"Failed to store webhook event {event['id']}: {str(e)}")
            return None

    @staticmethod
    def record_direct_subscription(session: dict) -> None:
        """Record a subscription created directly by a subscription-mode checkout."""
        subscription_id = session.get("subscription")
        if not subscription_id or not session.get("customer"):
            logging.warning(f"Subscription checkout {session['id']} has no subscription")
            return

        row = Subscription.query.filter_by(subscription_id=subscription_id).first()
        if row is None:
            row = Subscription(subscription_id=subscription_id, customer_id=session["customer"])
            db.session.add(row)
        row.user_email = normalize_email(
            (session.get("customer_details") or {}).get("email") or session.get("customer_email")
        )
        row.status = "active"
        row.billing_period = (session.get("metadata") or {}).get("billing_period")
        db.session.commit()
        logging.info(f"Recorded direct subscription {subscription_id}")

    @staticmethod
    def process_webhook_event(event, webhook_event):
        """Process the webhook event."""
        if event["type"] != CHECKOUT_COMPLETED:
            logging.debug(f"Ignoring webhook event type {event['type']}")
            StripeWebhookResource.update_webhook_status(webhook_event, WEBHOOK_STATUS_IGNORED)
            return {"status": "ignored"}

        session = event["data"]["object"]
        try:
            payment_event = payment_event_from_session(event["type"], session)
            result = enqueue(payment_event)
            if result.use_case == USE_CASE_DIRECT_LINK:
                StripeWebhookResource.record_direct_subscription(session)
        except InvalidPayloadError as e:
            # redelivery cannot fix a malformed checkout, acknowledge it
            logging.error(f"Checkout {session.get('id')} could not be queued: {str(e)}")
            StripeWebhookResource.update_webhook_status(webhook_event, WEBHOOK_STATUS_FAILED, str(e))
            return {"status": "failed", "error": str(e)}
        except ProviderError as e:
            # transient: Stripe redelivers on a 5xx and enqueue is idempotent
            db.session.rollback()
            error_msg = f"Stripe lookup for checkout {session.get('id')} failed: {str(e)}"
            logging.error(error_msg)
            StripeWebhookResource.update_webhook_status(webhook_event, WEBHOOK_STATUS_FAILED, error_msg)
            return {"error": "Payment provider unavailable, retry later"}, 500
        except SQLAlchemyError as e:
            db.session.rollback()
            error_msg = f"Error queueing checkout {session.get('id')}: {str(e)}"
            logging.error(error_msg, exc_info=True)
            StripeWebhookResource.update_webhook_status(webhook_event, WEBHOOK_STATUS_FAILED, error_msg)
            return {"error": "Could not queue provisioning"}, 500

        StripeWebhookResource.update_webhook_status(webhook_event, WEBHOOK_STATUS_PROCESSED)
        return {
            "status": "success",
            "use_case": result.use_case,
            "queue_ids": result.queue_ids,
        }

    @staticmethod
    def update_webhook_status(webhook_event, status, error_message=None):
        """Update the status of the webhook event."""
        if webhook_event:
            try:
                webhook_event.status = status
                webhook_event.processed_at = datetime.utcnow()
                if error_message:
                    webhook_event.error_message = error_message
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                logging.error(f"Failed to update webhook event status: {str(e)}")


@stripe_ns.route("/health")
class StripeHealthResource(Resource):
    """Resource for checking Stripe health status."""

    def get(self):
        """Check if Stripe is properly configured and accessible."""
        if not current_app.config.get("ENABLE_STRIPE_HEALTH_ENDPOINT", False):
            return {"status": "disabled", "message": "Stripe health endpoint is disabled"}, 403

        publishable_key = current_app.config.get("STRIPE_PUBLISHABLE_KEY")
        secret_key = current_app.config.get("STRIPE_SECRET_KEY")
        webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")

        missing_keys = [
            name
            for name, value in (
                ("STRIPE_PUBLISHABLE_KEY", publishable_key),
                ("STRIPE_SECRET_KEY", secret_key),
                ("STRIPE_WEBHOOK_SECRET", webhook_secret),
            )
            if not value
        ]
        if missing_keys:
            return {
                "status": "error",
                "message": "Missing Stripe configuration",
                "details": f"Missing keys: {', '.join(missing_keys)}",
            }, 500

        try:
            stripe.Price.list(limit=1, api_key=secret_key)
        except stripe.AuthenticationError as e:
            logging.error(f"Stripe authentication error: {str(e)}")
            return {"status": "error", "message": "Invalid Stripe API keys", "details": str(e)}, 500
        except stripe.StripeError as e:
            logging.error(f"Error checking Stripe health: {str(e)}")
            return {
                "status": "error",
                "message": "Failed to check Stripe health",
                "details": str(e),
            }, 500

        return {"status": "healthy", "message": "Stripe is properly configured and accessible"}
