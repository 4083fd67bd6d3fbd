"""Best-effort payment record dispatch.

Payment records are an audit trail, not part of a job's outcome. They are written by an
RQ task; dispatch errors are logged here and never reach the job result.
"""

import logging

import redis
from flask import current_app
from rq import Queue


def dispatch_payment_record(record: dict) -> str | None:
    """Enqueue the background write of a payment record.

    Parameters
    ----------
    record : dict
        Column values for :class:`app.models.refund.Payment`.

    Returns
    -------
    str | None
        The RQ job id, or None when Redis is not configured or the dispatch failed.
    """
    redis_url = current_app.config.get("REDIS_URL")
    if not redis_url:
        logging.debug(
            f"REDIS_URL not set, skipping payment record for {record.get('payment_intent_id')}"
        )
        return None

    try:
        queue = Queue(
            current_app.config.get("REDIS_QUEUE_DEFAULT", "default"),
            connection=redis.from_url(redis_url),
        )
        job = queue.enqueue("app.tasks.record_payment", record)
        logging.debug("Dispatched payment record job %s", job.id)
        return job.id
    except (redis.RedisError, OSError) as e:
        logging.warning(
            "Could not dispatch payment record for %s: %s", record.get("payment_intent_id"), e
        )
        return None
