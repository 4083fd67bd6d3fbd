"""Job store for the license provisioning queue.

All state transitions are conditional ``UPDATE`` statements guarded by the job's current
status, so concurrent workers coordinate through the database alone:

    pending --claim--> processing --complete--> completed
                           |
                           +--failure--> pending (attempts + 1, next_retry_at = backoff)
                           +--failure, attempts exhausted--> failed
    processing --stale for QUEUE_STALE_SECONDS--> pending (reclaimed)

Job rows are never deleted.
"""

import logging

from flask import current_app
from sqlalchemy import or_, update

from app.database import db
from app.models.queue import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    JOB_TYPE_PER_LICENSE,
    QueueJob,
    epoch_now,
)

BACKOFF_BASE_SECONDS = 60
REFUND_MARKER = "REFUNDED:"

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_FAILED = "failed"
OUTCOME_ALREADY_COMPLETED = "already_completed"

# statuses that make a redelivered payment a duplicate
ACTIVE_STATUSES = (JOB_STATUS_PENDING, JOB_STATUS_PROCESSING, JOB_STATUS_COMPLETED)


def setting(name: str, default):
    """Read a queue setting from the app config."""
    return current_app.config.get(name, default)


def retry_delay(attempts: int) -> int:
    """Return the backoff in seconds after the ``attempts``-th failed attempt."""
    return BACKOFF_BASE_SECONDS * 2**attempts


def get_job(queue_id: str) -> QueueJob | None:
    """Return the job with ``queue_id``."""
    return db.session.get(QueueJob, queue_id)


def find_active_duplicate(
    payment_intent_id: str, job_type: str, license_key: str | None = None
) -> QueueJob | None:
    """Find a live job for the same payment (and license key, for per-license jobs).

    The key is matched against both the current key and the placeholder the job was
    enqueued with, so a redelivered event still matches after the processor replaced a
    temporary key.
    """
    query = QueueJob.query.filter(
        QueueJob.payment_intent_id == payment_intent_id,
        QueueJob.job_type == job_type,
        QueueJob.status.in_(ACTIVE_STATUSES),
    )
    if job_type == JOB_TYPE_PER_LICENSE and license_key:
        query = query.filter(
            or_(QueueJob.license_key == license_key, QueueJob.placeholder_key == license_key)
        )
    return query.order_by(QueueJob.created_at.asc()).first()


def create_job(
    *,
    job_type: str,
    customer_id: str,
    payment_intent_id: str,
    payload: dict,
    user_email: str | None = None,
    price_id: str | None = None,
    license_key: str | None = None,
    placeholder_key: str | None = None,
    now: int | None = None,
) -> QueueJob:
    """Add a new pending job to the session. The caller commits."""
    now = now or epoch_now()
    job = QueueJob(
        job_type=job_type,
        status=JOB_STATUS_PENDING,
        customer_id=customer_id,
        user_email=user_email,
        payment_intent_id=payment_intent_id,
        price_id=price_id,
        license_key=license_key,
        placeholder_key=placeholder_key,
        payload=payload,
        attempts=0,
        max_attempts=setting("QUEUE_MAX_ATTEMPTS", 3),
        created_at=now,
        updated_at=now,
    )
    db.session.add(job)
    return job


def select_due_jobs(limit: int, now: int | None = None) -> list[QueueJob]:
    """Return up to ``limit`` pending jobs whose retry time has come, oldest first."""
    now = now or epoch_now()
    return (
        QueueJob.query.filter(
            QueueJob.status == JOB_STATUS_PENDING,
            or_(QueueJob.next_retry_at.is_(None), QueueJob.next_retry_at <= now),
        )
        .order_by(QueueJob.created_at.asc(), QueueJob.queue_id.asc())
        .limit(limit)
        .all()
    )


def claim_job(queue_id: str, now: int | None = None) -> bool:
    """Atomically move a job from pending to processing.

    Returns
    -------
    bool
        True if this caller won the claim, False if the job was claimed by someone else
        or is no longer pending.
    """
    now = now or epoch_now()
    result = db.session.execute(
        update(QueueJob)
        .where(QueueJob.queue_id == queue_id, QueueJob.status == JOB_STATUS_PENDING)
        .values(status=JOB_STATUS_PROCESSING, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def _update_processing(queue_id: str, **values) -> bool:
    result = db.session.execute(
        update(QueueJob)
        .where(QueueJob.queue_id == queue_id, QueueJob.status == JOB_STATUS_PROCESSING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    if result.rowcount != 1:
        logging.warning(f"Job {queue_id} was no longer processing, update skipped: {values}")
        return False
    return True


def replace_license_key(queue_id: str, license_key: str, now: int | None = None) -> bool:
    """Persist the real key that replaces a job's temporary key."""
    return _update_processing(queue_id, license_key=license_key, updated_at=now or epoch_now())


def mark_completed(
    queue_id: str, subscription_id: str | None, item_id: str | None, now: int | None = None
) -> bool:
    """Mark a processing job completed with the subscription it produced."""
    now = now or epoch_now()
    return _update_processing(
        queue_id,
        status=JOB_STATUS_COMPLETED,
        subscription_id=subscription_id,
        item_id=item_id,
        error_message=None,
        next_retry_at=None,
        processed_at=now,
        updated_at=now,
    )


def record_failure(
    job: QueueJob, error: str, now: int | None = None, permanent: bool = False
) -> str:
    """Count a failed attempt and schedule a retry or fail the job for good.

    Parameters
    ----------
    job : QueueJob
        The job, currently in processing.
    error : str
        Description of the failure, stored in ``error_message``.
    now : int, optional
        Current epoch seconds.
    permanent : bool, optional
        Fail the job immediately regardless of the remaining attempts.

    Returns
    -------
    str
        The status the job was moved to.
    """
    now = now or epoch_now()
    attempts = job.attempts + 1

    if permanent or attempts >= job.max_attempts:
        status = JOB_STATUS_FAILED
        values = {"next_retry_at": None}
    else:
        status = JOB_STATUS_PENDING
        values = {"next_retry_at": now + retry_delay(attempts)}

    _update_processing(
        job.queue_id,
        status=status,
        attempts=attempts,
        error_message=error[:2000],
        updated_at=now,
        **values,
    )
    if status == JOB_STATUS_FAILED:
        logging.error(f"Job {job.queue_id} failed permanently after {attempts} attempt(s): {error}")
    else:
        logging.warning(
            f"Job {job.queue_id} attempt {attempts}/{job.max_attempts} failed, "
            f"retry at {values['next_retry_at']}: {error}"
        )
    return status


def reclaim_stuck_jobs(now: int | None = None, stale_after: int | None = None) -> int:
    """Return jobs stuck in processing for longer than the staleness window to pending.

    Attempts are left unchanged. Safe to run concurrently: a job that another invocation
    already reclaimed is simply not matched again.

    Returns
    -------
    int
        Number of reclaimed jobs.
    """
    now = now or epoch_now()
    if stale_after is None:
        stale_after = setting("QUEUE_STALE_SECONDS", 300)

    result = db.session.execute(
        update(QueueJob)
        .where(
            QueueJob.status == JOB_STATUS_PROCESSING,
            QueueJob.updated_at < now - stale_after,
        )
        .values(status=JOB_STATUS_PENDING, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    if result.rowcount:
        logging.warning(f"Reclaimed {result.rowcount} job(s) stuck in processing")
    return result.rowcount


def has_refund_marker(job: QueueJob) -> bool:
    """Return True if the job's error message carries the refund marker."""
    return REFUND_MARKER in (job.error_message or "")


def select_refundable_jobs(
    limit: int, now: int | None = None, grace: int | None = None
) -> list[QueueJob]:
    """Return failed jobs older than the grace window that have not been refunded yet."""
    now = now or epoch_now()
    if grace is None:
        grace = setting("REFUND_GRACE_SECONDS", 12 * 60 * 60)

    return (
        QueueJob.query.filter(
            QueueJob.status == JOB_STATUS_FAILED,
            QueueJob.created_at < now - grace,
            or_(
                QueueJob.error_message.is_(None),
                ~QueueJob.error_message.contains(REFUND_MARKER),
            ),
        )
        .order_by(QueueJob.created_at.asc())
        .limit(limit)
        .all()
    )


def append_refund_marker(job: QueueJob, refund_id: str, now: int | None = None) -> None:
    """Annotate a failed job with ``REFUNDED:<refund_id>``. The caller commits."""
    marker = f"{REFUND_MARKER}{refund_id}"
    job.error_message = f"{job.error_message} | {marker}" if job.error_message else marker
    job.updated_at = now or epoch_now()
