"""Contains the tasks that are executed asynchronously by the rq workers."""

import logging
from contextlib import contextmanager

from flask import has_app_context
from rq import get_current_job
from sentry_sdk import capture_exception, set_tag, start_transaction
from sqlalchemy.exc import SQLAlchemyError

from app.database import db
from app.models.refund import Payment
from consentbit.queue.processor import run_processing_cycle
from consentbit.queue.refunds import run_refund_sweep


@contextmanager
def _task_context():
    """Run inside the current application context, creating an app when there is none."""
    if has_app_context():
        yield
        return

    from app.factory import create_app

    app = create_app()
    with app.app_context():
        yield


def _job_id() -> str | None:
    job = get_current_job()
    return job.id if job else None


def process_queue_task(limit: int | None = None) -> dict:
    """Run one processing cycle of the license provisioning queue.

    Returns
    -------
    dict
        The cycle summary.
    """
    with _task_context():
        logging.info(f"Task {_job_id()}: processing provisioning queue (limit={limit})")
        with start_transaction(name="process_queue_task", op="rq.task"):
            summary = run_processing_cycle(limit=limit)
            set_tag("queue.failed", summary.failed)
        return summary.model_dump()


def refund_sweep_task(limit: int | None = None) -> dict:
    """Refund the payments of permanently failed provisioning jobs.

    Returns
    -------
    dict
        The sweep summary.
    """
    with _task_context():
        logging.info(f"Task {_job_id()}: running refund sweep (limit={limit})")
        with start_transaction(name="refund_sweep_task", op="rq.task"):
            summary = run_refund_sweep(limit=limit)
        return summary.model_dump()


def record_payment(record: dict) -> bool:
    """Write the audit row of a provisioned payment.

    Parameters
    ----------
    record : dict
        ``payment_intent_id``, ``customer_id``, ``user_email``, ``subscription_id``,
        ``license_key``, ``site_domain`` and optionally ``amount`` and ``currency``.

    Returns
    -------
    bool
        True if a row was written, False if it already existed or the write failed.
    """
    with _task_context():
        existing = Payment.query.filter_by(
            payment_intent_id=record["payment_intent_id"],
            license_key=record.get("license_key"),
        ).first()
        if existing:
            logging.info(
                f"Payment record for {record['payment_intent_id']} "
                f"license {record.get('license_key')} already exists"
            )
            return False

        try:
            db.session.add(
                Payment(
                    payment_intent_id=record["payment_intent_id"],
                    customer_id=record["customer_id"],
                    user_email=record.get("user_email"),
                    subscription_id=record.get("subscription_id"),
                    license_key=record.get("license_key"),
                    site_domain=record.get("site_domain"),
                    amount=record.get("amount"),
                    currency=record.get("currency"),
                )
            )
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logging.error(f"Failed to write payment record: {str(e)}")
            capture_exception(e)
            return False

        logging.info(f"Recorded payment {record['payment_intent_id']}")
        return True
