"""Job processor: drain due provisioning jobs into subscriptions and licenses.

One invocation of :func:`run_processing_cycle` reclaims stuck jobs, selects the due ones
oldest first, claims each with a conditional update and processes the jobs it won. Every
job is isolated: whatever goes wrong is recorded on that job (retry with backoff or
terminal failure) and the loop moves on.
"""

import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from app.database import db
from app.models.license import License
from app.models.queue import QueueJob, epoch_now
from app.schemas.queue import (
    CycleSummary,
    PerLicensePayload,
    SiteBatchPayload,
    parse_job_payload,
)
from consentbit.exceptions import InvalidPayloadError, KeyGenerationExhausted
from consentbit.license_keys import generate_unique_license_key, is_temporary
from consentbit.logging import queue_context
from consentbit.provider import get_provider, subscription_idempotency_key
from consentbit.queue.records import compute_trial, save_provisioned, send_payment_record
from consentbit.queue.site_batch import process_site_batch
from consentbit.queue.store import (
    OUTCOME_ALREADY_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_SUCCEEDED,
    claim_job,
    mark_completed,
    reclaim_stuck_jobs,
    record_failure,
    replace_license_key,
    select_due_jobs,
    setting,
)

REASON_RACE_DETECTED = "race_detected"


def _process_per_license(
    job: QueueJob, payload: PerLicensePayload, provider, now: int | None = None
) -> str:
    if not job.price_id:
        raise InvalidPayloadError(f"Job {job.queue_id} has no price")

    license_key = job.license_key
    if is_temporary(license_key):
        license_key = generate_unique_license_key()
        replace_license_key(job.queue_id, license_key, now=now)
        logging.info(f"Job {job.queue_id}: replaced temporary key {job.placeholder_key}")

    # another job for the same license may have completed first
    existing = License.query.filter(
        License.license_key == license_key, License.subscription_id.isnot(None)
    ).first()
    if existing:
        logging.info(
            f"Job {job.queue_id}: license {license_key} already has subscription "
            f"{existing.subscription_id}, completing without a new one"
        )
        mark_completed(job.queue_id, existing.subscription_id, existing.item_id, now=now)
        return OUTCOME_ALREADY_COMPLETED

    trial_end, billing_period = compute_trial(job, payload.billing_period, provider)
    subscription = provider.create_subscription(
        customer=job.customer_id,
        price=job.price_id,
        quantity=payload.quantity,
        trial_end=trial_end,
        metadata={
            "license_key": license_key,
            "queue_id": job.queue_id,
            "payment_intent_id": job.payment_intent_id,
            "billing_period": billing_period,
        },
        idempotency_key=subscription_idempotency_key(license_key, job.payment_intent_id),
    )
    logging.info(f"Job {job.queue_id}: created subscription {subscription['id']}")

    save_provisioned(job, license_key, subscription, billing_period, trial_end)
    mark_completed(job.queue_id, subscription["id"], subscription.get("item_id"), now=now)
    send_payment_record(job, license_key, subscription["id"])
    return OUTCOME_SUCCEEDED


def process_job(job: QueueJob, provider, now: int | None = None) -> str:
    """Process a job this worker has claimed.

    Returns
    -------
    str
        ``succeeded``, ``already_completed`` or ``failed``. Failures have already been
        recorded on the job when this returns.
    """
    try:
        payload = parse_job_payload(job.payload)
        if isinstance(payload, SiteBatchPayload):
            return process_site_batch(job, payload, provider, now=now)
        return _process_per_license(job, payload, provider, now=now)
    except (KeyGenerationExhausted, InvalidPayloadError) as e:
        db.session.rollback()
        record_failure(job, str(e), now=now, permanent=True)
        return OUTCOME_FAILED
    except Exception as e:
        db.session.rollback()
        logging.error(f"Job {job.queue_id} failed: {str(e)}", exc_info=True)
        record_failure(job, f"{type(e).__name__}: {e}", now=now)
        return OUTCOME_FAILED


def run_processing_cycle(
    limit: int | None = None,
    provider=None,
    now: int | None = None,
    time_budget: float | None = None,
) -> CycleSummary:
    """Run one pass of the provisioning queue.

    Parameters
    ----------
    limit : int, optional
        Maximum number of jobs to select, by default ``QUEUE_BATCH_LIMIT``.
    provider : StripeProvider, optional
        The payment provider, by default the configured Stripe provider.
    now : int, optional
        Epoch seconds used for due checks, claims and backoff; defaults to the wall clock.
    time_budget : float, optional
        Seconds after which no further jobs are claimed, by default
        ``QUEUE_TIME_BUDGET_SECONDS``. Jobs left over stay pending for the next run.

    Returns
    -------
    CycleSummary
        Counts of processed, succeeded, failed and skipped jobs.
    """
    limit = limit or setting("QUEUE_BATCH_LIMIT", 10)
    if time_budget is None:
        time_budget = setting("QUEUE_TIME_BUDGET_SECONDS", 25)

    summary = CycleSummary()
    summary.reclaimed = reclaim_stuck_jobs(now=now)

    jobs = select_due_jobs(limit, now=now)
    if not jobs:
        logging.debug("No due jobs in the provisioning queue")
        return summary

    provider = provider or get_provider()
    started = time.monotonic()

    for job in jobs:
        if time.monotonic() - started > time_budget:
            logging.warning(
                f"Time budget of {time_budget}s exhausted, leaving remaining jobs for next run"
            )
            break

        queue_id = job.queue_id
        if not claim_job(queue_id, now=now):
            logging.info(f"Job {queue_id} was claimed by another worker, skipping")
            summary.skip(REASON_RACE_DETECTED)
            continue

        summary.processed += 1
        with queue_context(queue_id):
            try:
                outcome = process_job(job, provider, now=now)
            except SQLAlchemyError as e:
                # recording the failure itself failed; the reclaimer will return the job
                db.session.rollback()
                logging.error(f"Could not record outcome of job {queue_id}: {str(e)}")
                outcome = OUTCOME_FAILED

        if outcome == OUTCOME_SUCCEEDED:
            summary.succeeded += 1
        elif outcome == OUTCOME_ALREADY_COMPLETED:
            summary.skip(OUTCOME_ALREADY_COMPLETED)
        else:
            summary.failed += 1

    logging.info(
        f"Processing cycle done at {now or epoch_now()}: processed={summary.processed} "
        f"succeeded={summary.succeeded} failed={summary.failed} skipped={summary.skipped}"
    )
    return summary
