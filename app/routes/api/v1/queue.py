"""API routes for the license provisioning queue.

The trigger endpoints are called by an external scheduler and are guarded by the
``X-Cron-Secret`` header.
"""

import logging

from flask import request
from flask_restx import Namespace, Resource, fields
from sqlalchemy.exc import SQLAlchemyError

from app.helpers.auth import cron_secret_required
from app.models.queue import JOB_STATUSES, QueueJob
from app.models.refund import Refund
from app.schemas.license import RefundSchema
from app.schemas.queue import QueueJobSchema
from consentbit.queue.processor import run_processing_cycle
from consentbit.queue.refunds import run_refund_sweep
from consentbit.queue.store import get_job

queue_ns = Namespace("queue", description="License provisioning queue operations")

summary_model = queue_ns.model(
    "CycleSummary",
    {
        "processed": fields.Integer(description="Jobs claimed and processed"),
        "succeeded": fields.Integer(description="Jobs that succeeded"),
        "failed": fields.Integer(description="Jobs that failed"),
        "skipped": fields.Integer(description="Jobs skipped"),
        "reclaimed": fields.Integer(description="Stuck jobs returned to pending"),
        "reasons": fields.Raw(description="Skipped jobs per reason"),
    },
)

job_model = queue_ns.model(
    "QueueJob",
    {
        "queue_id": fields.String(description="Queue job ID"),
        "job_type": fields.String(description="per_license or site_batch"),
        "status": fields.String(description="pending, processing, completed or failed"),
        "customer_id": fields.String(description="Stripe customer ID"),
        "user_email": fields.String(description="Customer email"),
        "payment_intent_id": fields.String(description="Originating payment"),
        "price_id": fields.String(description="Stripe price ID"),
        "license_key": fields.String(description="License key"),
        "subscription_id": fields.String(description="Created subscription"),
        "item_id": fields.String(description="Created subscription item"),
        "payload": fields.Raw(description="Job payload"),
        "attempts": fields.Integer(description="Failed attempts so far"),
        "max_attempts": fields.Integer(description="Attempts before the job fails"),
        "next_retry_at": fields.Integer(description="Epoch seconds of the next retry"),
        "error_message": fields.String(description="Last error"),
        "created_at": fields.Integer(description="Epoch seconds"),
        "updated_at": fields.Integer(description="Epoch seconds"),
        "processed_at": fields.Integer(description="Epoch seconds"),
    },
)


def _limit_arg() -> int | None:
    limit = request.args.get("limit", type=int)
    return limit if limit and limit > 0 else None


@queue_ns.route("/process")
class ProcessQueueResource(Resource):
    """Resource for running one processing cycle."""

    @queue_ns.doc(params={"limit": "Maximum number of jobs to process"})
    @queue_ns.response(200, "Cycle summary", summary_model)
    @cron_secret_required
    def post(self):
        """Process due provisioning jobs."""
        try:
            summary = run_processing_cycle(limit=_limit_arg())
        except SQLAlchemyError as e:
            logging.error(f"Processing cycle failed: {str(e)}", exc_info=True)
            return {"message": "Processing cycle failed"}, 500
        return summary.model_dump(), 200


@queue_ns.route("/refund-sweep")
class RefundSweepResource(Resource):
    """Resource for running one refund sweep."""

    @queue_ns.doc(params={"limit": "Maximum number of jobs to refund"})
    @queue_ns.response(200, "Cycle summary", summary_model)
    @cron_secret_required
    def post(self):
        """Refund permanently failed jobs."""
        try:
            summary = run_refund_sweep(limit=_limit_arg())
        except SQLAlchemyError as e:
            logging.error(f"Refund sweep failed: {str(e)}", exc_info=True)
            return {"message": "Refund sweep failed"}, 500
        return summary.model_dump(), 200


@queue_ns.route("/jobs/<string:queue_id>")
class QueueJobResource(Resource):
    """Resource for a single queue job."""

    @cron_secret_required
    @queue_ns.marshal_with(job_model)
    def get(self, queue_id):
        """Get a queue job by ID."""
        job = get_job(queue_id)
        if job is None:
            queue_ns.abort(404, f"Queue job {queue_id} not found")
        return QueueJobSchema.model_validate(job).model_dump()


@queue_ns.route("/jobs")
class QueueJobListResource(Resource):
    """Resource for listing queue jobs."""

    @queue_ns.doc(
        params={
            "status": "Filter by job status",
            "payment_intent_id": "Filter by originating payment",
            "limit": "Maximum number of jobs to return (default 100)",
        }
    )
    @cron_secret_required
    @queue_ns.marshal_list_with(job_model)
    def get(self):
        """List queue jobs, newest first."""
        query = QueueJob.query
        status = request.args.get("status")
        if status:
            if status not in JOB_STATUSES:
                queue_ns.abort(400, f"Unknown status {status}")
            query = query.filter(QueueJob.status == status)
        payment_intent_id = request.args.get("payment_intent_id")
        if payment_intent_id:
            query = query.filter(QueueJob.payment_intent_id == payment_intent_id)

        jobs = query.order_by(QueueJob.created_at.desc()).limit(_limit_arg() or 100).all()
        return [QueueJobSchema.model_validate(job).model_dump() for job in jobs]


refund_model = queue_ns.model(
    "Refund",
    {
        "refund_id": fields.String(description="Stripe refund ID"),
        "payment_intent_id": fields.String(description="Refunded payment"),
        "charge_id": fields.String(description="Refunded charge"),
        "amount": fields.Integer(description="Amount in minor currency units"),
        "currency": fields.String(description="Currency"),
        "reason": fields.String(description="Error of the failed job"),
        "queue_id": fields.String(description="Failed queue job"),
        "license_key": fields.String(description="License key of the failed job"),
        "created_at": fields.DateTime(description="When the refund was issued"),
    },
)


@queue_ns.route("/refunds")
class RefundListResource(Resource):
    """Resource for listing issued refunds."""

    @queue_ns.doc(params={"payment_intent_id": "Filter by refunded payment"})
    @cron_secret_required
    @queue_ns.marshal_list_with(refund_model)
    def get(self):
        """List issued refunds, newest first."""
        query = Refund.query
        payment_intent_id = request.args.get("payment_intent_id")
        if payment_intent_id:
            query = query.filter(Refund.payment_intent_id == payment_intent_id)
        refunds = query.order_by(Refund.created_at.desc()).limit(_limit_arg() or 100).all()
        return [RefundSchema.model_validate(refund).model_dump() for refund in refunds]
