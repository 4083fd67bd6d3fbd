"""Local records written when a queue job produces a subscription."""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from app.database import db
from app.models.license import LICENSE_STATUS_ACTIVE, LICENSE_STATUS_AVAILABLE, License
from app.models.queue import QueueJob
from app.models.subscription import Subscription, SubscriptionItem
from consentbit.exceptions import PersistenceError, ProviderError
from consentbit.payments import dispatch_payment_record
from consentbit.queue.store import setting

SECONDS_PER_DAY = 24 * 60 * 60

_INTERVAL_TO_PERIOD = {"month": "monthly", "year": "yearly"}


def to_datetime(timestamp: int | None) -> datetime | None:
    """Convert epoch seconds to a naive UTC datetime."""
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, timezone.utc).replace(tzinfo=None)


def compute_trial(job: QueueJob, billing_period: str | None, provider) -> tuple[int, str]:
    """Work out when the first recurring charge happens.

    The one-time checkout already paid for the first period, so the subscription starts
    with a trial covering it. A ``trial_days`` entry in the price metadata wins over the
    configured defaults. The trial is anchored on the job's creation time so that every
    retry sends identical parameters to the provider.

    Returns
    -------
    tuple[int, str]
        The trial end in epoch seconds and the billing period (``monthly``/``yearly``).
    """
    price = None
    if job.price_id:
        try:
            price = provider.get_price(job.price_id)
        except ProviderError as e:
            logging.warning(f"Price lookup for {job.price_id} failed, using config trial: {e}")

    if not billing_period and price:
        billing_period = _INTERVAL_TO_PERIOD.get(price.get("interval") or "")
    billing_period = billing_period or "monthly"

    trial_days = None
    if price and price.get("metadata", {}).get("trial_days"):
        try:
            trial_days = int(price["metadata"]["trial_days"])
        except ValueError:
            logging.warning(f"Ignoring invalid trial_days on price {job.price_id}")
    if trial_days is None:
        if billing_period == "yearly":
            trial_days = setting("TRIAL_DAYS_YEARLY", 365)
        else:
            trial_days = setting("TRIAL_DAYS_MONTHLY", 30)

    return job.created_at + trial_days * SECONDS_PER_DAY, billing_period


def save_provisioned(
    job: QueueJob,
    license_key: str,
    subscription: dict,
    billing_period: str,
    renewal_at: int,
    site_domain: str | None = None,
    platform: str | None = None,
) -> None:
    """Write the license and subscription (and, for a site, the item) in one transaction.

    Raises
    ------
    PersistenceError
        If any of the writes fails. Nothing is committed in that case.
    """
    try:
        _upsert_subscription(job, subscription, billing_period)

        license_row = License.query.filter_by(license_key=license_key).first()
        if license_row is None:
            license_row = License(license_key=license_key, customer_id=job.customer_id)
            db.session.add(license_row)
        license_row.user_email = job.user_email
        license_row.subscription_id = subscription["id"]
        license_row.item_id = subscription.get("item_id")
        license_row.site_domain = site_domain
        license_row.platform = platform
        license_row.status = LICENSE_STATUS_ACTIVE if site_domain else LICENSE_STATUS_AVAILABLE
        license_row.billing_period = billing_period
        license_row.renewal_date = to_datetime(renewal_at)

        if site_domain and subscription.get("item_id"):
            item = SubscriptionItem.query.filter_by(item_id=subscription["item_id"]).first()
            if item is None:
                db.session.add(
                    SubscriptionItem(
                        item_id=subscription["item_id"],
                        subscription_id=subscription["id"],
                        site_domain=site_domain,
                        price_id=job.price_id,
                        quantity=1,
                    )
                )

        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(
            f"Subscription {subscription['id']} created but local records failed: {e}"
        ) from e


def _upsert_subscription(job: QueueJob, subscription: dict, billing_period: str) -> None:
    row = Subscription.query.filter_by(subscription_id=subscription["id"]).first()
    if row is None:
        row = Subscription(subscription_id=subscription["id"], customer_id=job.customer_id)
        db.session.add(row)
    row.user_email = job.user_email
    row.status = subscription.get("status") or "active"
    row.billing_period = billing_period
    row.current_period_start = to_datetime(subscription.get("current_period_start"))
    row.current_period_end = to_datetime(subscription.get("current_period_end"))


def send_payment_record(
    job: QueueJob, license_key: str, subscription_id: str, site_domain: str | None = None
) -> None:
    """Hand the payment audit row to the background writer."""
    dispatch_payment_record(
        {
            "payment_intent_id": job.payment_intent_id,
            "customer_id": job.customer_id,
            "user_email": job.user_email,
            "subscription_id": subscription_id,
            "license_key": license_key,
            "site_domain": site_domain,
        }
    )
