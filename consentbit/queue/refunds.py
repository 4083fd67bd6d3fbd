"""Refund compensator: refund payments whose provisioning job failed for good.

A job is refundable once it is ``failed``, older than ``REFUND_GRACE_SECONDS`` and its
``error_message`` carries no ``REFUNDED:`` marker. A refund row is unique per
``queue_id`` and the provider call uses the idempotency key ``refund-<queue_id>``, so a
sweep that crashes between the refund and the marker never pays out twice.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from app.database import db
from app.models.queue import QueueJob, epoch_now
from app.models.refund import Refund
from app.schemas.queue import CycleSummary, SiteBatchPayload, parse_job_payload
from consentbit.exceptions import ProvisioningError
from consentbit.logging import queue_context
from consentbit.provider import get_provider
from consentbit.queue.site_batch import unprovisioned_sites
from consentbit.queue.store import append_refund_marker, select_refundable_jobs, setting

REASON_DUPLICATE = "duplicate"
REASON_NOTHING_TO_REFUND = "nothing_to_refund"

NO_REFUND_ID = "none"


def refund_idempotency_key(queue_id: str) -> str:
    """Return the provider idempotency key for refunding a job."""
    return f"refund-{queue_id}"


def _units(job: QueueJob) -> tuple[int, int]:
    """Return the number of units to refund and the number of units originally bought."""
    payload = parse_job_payload(job.payload)
    if isinstance(payload, SiteBatchPayload):
        return len(unprovisioned_sites(job, payload)), len(payload.sites)
    return 1, payload.original_quantity


def refund_amount(job: QueueJob, intent: dict, provider) -> int:
    """Compute the amount in minor units to refund for a failed job.

    The price's ``unit_amount`` times the failed units is used when the price can be
    read; otherwise the intent amount is split evenly over the units originally bought.
    """
    units, original = _units(job)
    if units == 0:
        return 0

    if job.price_id:
        try:
            price = provider.get_price(job.price_id)
            if price.get("unit_amount"):
                return price["unit_amount"] * units
        except ProvisioningError as e:
            logging.warning(f"Price lookup for refund of {job.queue_id} failed: {e}")

    paid = intent.get("amount_received") or intent.get("amount") or 0
    return paid // max(original, 1) * units


def _refund_job(job: QueueJob, provider, now: int) -> str:
    intent = provider.get_payment_intent(job.payment_intent_id)
    if not intent.get("charge_id"):
        raise ProvisioningError(f"Payment intent {job.payment_intent_id} has no charge")

    amount = refund_amount(job, intent, provider)
    if amount <= 0:
        logging.info(f"Job {job.queue_id} has nothing left to refund")
        append_refund_marker(job, NO_REFUND_ID, now=now)
        db.session.commit()
        return REASON_NOTHING_TO_REFUND

    refund = provider.create_refund(
        charge_id=intent["charge_id"],
        amount=amount,
        metadata={
            "queue_id": job.queue_id,
            "payment_intent_id": job.payment_intent_id,
            "license_key": job.license_key or "",
            "reason": "license_provisioning_failed",
        },
        idempotency_key=refund_idempotency_key(job.queue_id),
    )

    db.session.add(
        Refund(
            refund_id=refund["id"],
            payment_intent_id=job.payment_intent_id,
            charge_id=intent["charge_id"],
            amount=refund.get("amount") or amount,
            currency=refund.get("currency") or intent.get("currency"),
            reason=job.error_message,
            queue_id=job.queue_id,
            license_key=job.license_key,
            attempts=job.attempts,
        )
    )
    append_refund_marker(job, refund["id"], now=now)
    db.session.commit()
    logging.info(
        f"Refunded {amount} {intent.get('currency') or ''} for failed job {job.queue_id} "
        f"({refund['id']})"
    )
    return refund["id"]


def run_refund_sweep(
    limit: int | None = None, provider=None, now: int | None = None
) -> CycleSummary:
    """Refund the payments of permanently failed jobs.

    Parameters
    ----------
    limit : int, optional
        Maximum number of jobs per sweep, by default ``REFUND_BATCH_LIMIT``.
    provider : StripeProvider, optional
        The payment provider, by default the configured Stripe provider.
    now : int, optional
        Epoch seconds used for the grace window; defaults to the wall clock.

    Returns
    -------
    CycleSummary
        ``succeeded`` counts issued refunds, ``skipped`` the jobs whose refund already
        existed or that had nothing to refund, ``failed`` the jobs left for the next sweep.
    """
    limit = limit or setting("REFUND_BATCH_LIMIT", 20)
    now = now or epoch_now()
    summary = CycleSummary()

    jobs = select_refundable_jobs(limit, now=now)
    if not jobs:
        logging.debug("No failed jobs awaiting a refund")
        return summary

    provider = provider or get_provider()

    for job in jobs:
        summary.processed += 1
        with queue_context(job.queue_id):
            try:
                existing = Refund.query.filter_by(queue_id=job.queue_id).first()
                if existing:
                    logging.warning(
                        f"Job {job.queue_id} already refunded as {existing.refund_id}, "
                        "restoring the marker"
                    )
                    append_refund_marker(job, existing.refund_id, now=now)
                    db.session.commit()
                    summary.skip(REASON_DUPLICATE)
                    continue

                outcome = _refund_job(job, provider, now)
            except (ProvisioningError, SQLAlchemyError) as e:
                db.session.rollback()
                logging.error(
                    f"Refund for job {job.queue_id} failed, retrying next sweep: {str(e)}"
                )
                summary.failed += 1
                continue
            except Exception as e:
                db.session.rollback()
                logging.error(
                    f"Unexpected error refunding job {job.queue_id}: {str(e)}", exc_info=True
                )
                summary.failed += 1
                continue

        if outcome == REASON_NOTHING_TO_REFUND:
            summary.skip(REASON_NOTHING_TO_REFUND)
        else:
            summary.succeeded += 1

    logging.info(
        f"Refund sweep done: processed={summary.processed} refunded={summary.succeeded} "
        f"failed={summary.failed} skipped={summary.skipped}"
    )
    return summary
