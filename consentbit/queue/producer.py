"""Job producer: classify completed-payment events and enqueue provisioning jobs.

Classification, first match wins:

1. subscription-mode checkout -> ``direct_link``, handled synchronously by the webhook,
   nothing is queued;
2. one-time payment with ``purchase_type=quantity`` -> one ``per_license`` job per unit;
3. one-time payment with ``purchase_type=site`` and a site list -> one ``site_batch`` job;
4. anything else -> ``unclassified``, nothing is queued.

The producer only writes queue rows. It never calls the payment provider.
"""

import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from app.database import db
from app.models.queue import JOB_TYPE_PER_LICENSE, JOB_TYPE_SITE_BATCH
from app.schemas.events import PaymentEvent
from app.schemas.queue import EnqueueResult, PerLicensePayload, SiteBatchPayload
from consentbit.exceptions import InvalidPayloadError
from consentbit.license_keys import temporary_key
from consentbit.queue.store import create_job, find_active_duplicate

USE_CASE_DIRECT_LINK = "direct_link"
USE_CASE_QUANTITY = "quantity"
USE_CASE_SITE_BATCH = "site_batch"
USE_CASE_UNCLASSIFIED = "unclassified"

PURCHASE_TYPE_QUANTITY = "quantity"
PURCHASE_TYPE_SITE = "site"


def _parse_list(raw: str | None) -> list[str]:
    """Parse a metadata list given either as a JSON array or as a comma separated string."""
    if not raw:
        return []
    raw = raw.strip()
    if raw.startswith("["):
        try:
            values = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidPayloadError(f"Malformed list in metadata: {raw[:100]}") from e
        return [str(v).strip() for v in values if str(v).strip()]
    return [part.strip() for part in raw.split(",") if part.strip()]


def classify(event: PaymentEvent) -> str:
    """Return the use case of a completed-payment event."""
    if event.mode == "subscription":
        return USE_CASE_DIRECT_LINK

    purchase_type = (event.metadata.get("purchase_type") or "").strip().lower()
    if purchase_type == PURCHASE_TYPE_QUANTITY:
        return USE_CASE_QUANTITY
    if purchase_type == PURCHASE_TYPE_SITE and _parse_list(event.metadata.get("sites")):
        return USE_CASE_SITE_BATCH
    return USE_CASE_UNCLASSIFIED


def _price_id(event: PaymentEvent) -> str | None:
    if event.metadata.get("price_id"):
        return event.metadata["price_id"]
    for item in event.line_items:
        if item.price_id:
            return item.price_id
    return None


def _quantity(event: PaymentEvent) -> int:
    raw = event.metadata.get("quantity")
    if raw:
        try:
            quantity = int(raw)
        except ValueError as e:
            raise InvalidPayloadError(f"Invalid quantity in metadata: {raw}") from e
    else:
        quantity = event.total_quantity
    if quantity < 1:
        raise InvalidPayloadError(f"Quantity purchase without units: {quantity}")
    return quantity


def _billing_period(event: PaymentEvent) -> str | None:
    period = (event.metadata.get("billing_period") or "").strip().lower()
    return period or None


def _require_customer(event: PaymentEvent) -> str:
    if not event.customer_id:
        raise InvalidPayloadError(f"Event {event.session_or_intent_id} has no customer")
    return event.customer_id


def _enqueue_quantity(event: PaymentEvent, result: EnqueueResult) -> None:
    customer_id = _require_customer(event)
    quantity = _quantity(event)
    price_id = _price_id(event)
    real_keys = _parse_list(event.metadata.get("license_keys"))

    for index in range(1, quantity + 1):
        key = real_keys[index - 1] if index <= len(real_keys) else temporary_key(index)

        existing = find_active_duplicate(event.intent_id, JOB_TYPE_PER_LICENSE, license_key=key)
        if existing:
            logging.info(
                f"Duplicate delivery for {event.intent_id} license {key}, "
                f"keeping job {existing.queue_id}"
            )
            result.queue_ids.append(existing.queue_id)
            result.skipped += 1
            continue

        payload = PerLicensePayload(
            quantity=1, original_quantity=quantity, billing_period=_billing_period(event)
        )
        job = create_job(
            job_type=JOB_TYPE_PER_LICENSE,
            customer_id=customer_id,
            user_email=event.user_email,
            payment_intent_id=event.intent_id,
            price_id=price_id,
            license_key=key,
            placeholder_key=key if index > len(real_keys) else None,
            payload=payload.model_dump(),
        )
        # flush so the next unit's duplicate check sees this row
        db.session.flush()
        result.queue_ids.append(job.queue_id)
        result.created += 1


def _enqueue_site_batch(event: PaymentEvent, result: EnqueueResult) -> None:
    customer_id = _require_customer(event)

    existing = find_active_duplicate(event.intent_id, JOB_TYPE_SITE_BATCH)
    if existing:
        logging.info(
            f"Duplicate delivery for {event.intent_id} site batch, keeping job {existing.queue_id}"
        )
        result.queue_ids.append(existing.queue_id)
        result.skipped += 1
        return

    try:
        payload = SiteBatchPayload(
            sites=_parse_list(event.metadata.get("sites")),
            billing_period=_billing_period(event),
        )
    except ValueError as e:
        raise InvalidPayloadError(f"Invalid site list for {event.intent_id}: {e}") from e

    job = create_job(
        job_type=JOB_TYPE_SITE_BATCH,
        customer_id=customer_id,
        user_email=event.user_email,
        payment_intent_id=event.intent_id,
        price_id=_price_id(event),
        payload=payload.model_dump(),
    )
    db.session.flush()
    result.queue_ids.append(job.queue_id)
    result.created += 1


def enqueue(event: PaymentEvent) -> EnqueueResult:
    """Classify a completed-payment event and enqueue its provisioning jobs.

    Parameters
    ----------
    event : PaymentEvent
        The event delivered by the webhook handler.

    Returns
    -------
    EnqueueResult
        The use case and the ids of the created or already existing jobs.

    Raises
    ------
    InvalidPayloadError
        If the event is classified but lacks the data needed to build its jobs.
    SQLAlchemyError
        If the jobs could not be written; nothing is committed in that case.
    """
    use_case = classify(event)
    result = EnqueueResult(use_case=use_case)

    if use_case == USE_CASE_DIRECT_LINK:
        logging.info(f"Event {event.session_or_intent_id} is a direct subscription, not queued")
        return result
    if use_case == USE_CASE_UNCLASSIFIED:
        logging.warning(
            f"Event {event.session_or_intent_id} matches no provisioning use case, not queued"
        )
        return result

    try:
        if use_case == USE_CASE_QUANTITY:
            _enqueue_quantity(event, result)
        else:
            _enqueue_site_batch(event, result)
        db.session.commit()
    except (InvalidPayloadError, SQLAlchemyError):
        db.session.rollback()
        raise

    logging.info(
        f"Enqueued {result.created} job(s) for {event.intent_id} ({use_case}), "
        f"{result.skipped} duplicate(s) skipped"
    )
    return result
