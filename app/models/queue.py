"""Provisioning queue model."""

import time
import uuid

from app.database import db

JOB_STATUS_PENDING = "pending"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"

JOB_STATUSES = (
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
)

JOB_TYPE_PER_LICENSE = "per_license"
JOB_TYPE_SITE_BATCH = "site_batch"


def new_queue_id() -> str:
    """Return a fresh queue identifier."""
    return f"q_{uuid.uuid4().hex}"


def epoch_now() -> int:
    """Return the current time in epoch seconds."""
    return int(time.time())


class QueueJob(db.Model):
    """A unit of deferred work: create the subscription(s) and license(s) for a payment.

    Timestamps are stored as epoch seconds so that staleness and retry windows can be
    compared with plain integer arithmetic in SQL.
    """

    __tablename__ = "queue"

    queue_id = db.Column(db.String(64), primary_key=True, default=new_queue_id)
    job_type = db.Column(db.String(32), nullable=False, default=JOB_TYPE_PER_LICENSE)
    status = db.Column(db.String(32), nullable=False, default=JOB_STATUS_PENDING)

    customer_id = db.Column(db.String(255), nullable=False)
    user_email = db.Column(db.String(255), nullable=True)
    payment_intent_id = db.Column(db.String(255), nullable=False)
    price_id = db.Column(db.String(255), nullable=True)
    license_key = db.Column(db.String(64), nullable=True)
    # the temporary key the job was enqueued with, kept after it is replaced
    placeholder_key = db.Column(db.String(64), nullable=True)
    subscription_id = db.Column(db.String(255), nullable=True)
    item_id = db.Column(db.String(255), nullable=True)

    payload = db.Column(db.JSON, nullable=False)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    max_attempts = db.Column(db.Integer, nullable=False, default=3)
    next_retry_at = db.Column(db.Integer, nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.Integer, nullable=False, default=epoch_now)
    updated_at = db.Column(db.Integer, nullable=False, default=epoch_now)
    processed_at = db.Column(db.Integer, nullable=True)

    __table_args__ = (
        db.Index("idx_queue_status_next_retry", "status", "next_retry_at"),
        db.Index("idx_queue_payment_intent", "payment_intent_id"),
        db.Index("idx_queue_license_key", "license_key"),
        db.Index("idx_queue_created_at", "created_at"),
    )

    def __repr__(self):
        """Return a string representation of the queue job."""
        return f"<QueueJob {self.queue_id} {self.job_type} {self.status}>"
