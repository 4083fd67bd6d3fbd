"""API routes for listing and activating a customer's licenses."""

import logging

from flask import request
from flask_restx import Namespace, Resource, fields
from pydantic import ValidationError
from sqlalchemy import func

from app.helpers import email_validator
from app.models.license import License
from app.models.queue import (
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    JOB_TYPE_SITE_BATCH,
    QueueJob,
)
from app.schemas.checkout import ActivateLicenseRequest
from app.schemas.license import LicenseSchema
from app.schemas.queue import SiteBatchPayload, parse_job_payload
from consentbit.activation import activate_license
from consentbit.exceptions import (
    InvalidPayloadError,
    LicenseActivationError,
    PersistenceError,
    ProviderError,
)
from consentbit.queue.site_batch import unprovisioned_sites

licenses_ns = Namespace("licenses", description="License operations")


class DateTimeField(fields.Raw):
    """Custom field for datetime serialization."""

    def format(self, value):
        """Format datetime to ISO format string."""
        if value is None:
            return None
        return value.isoformat()


license_model = licenses_ns.model(
    "License",
    {
        "license_key": fields.String(description="License key"),
        "status": fields.String(description="active, available, cancelled or pending"),
        "site_domain": fields.String(description="Bound site, if any"),
        "platform": fields.String(description="Detected site platform"),
        "subscription_id": fields.String(description="Stripe subscription ID"),
        "billing_period": fields.String(description="monthly or yearly"),
        "renewal_date": DateTimeField(description="Next renewal"),
        "queue_id": fields.String(description="Queue job still provisioning this license"),
    },
)


def pending_licenses(email: str) -> list[dict]:
    """Return the licenses of ``email`` that are still waiting in the queue.

    ``email`` must already be lower-case; stored addresses are compared case-insensitively.
    """
    jobs = (
        QueueJob.query.filter(
            func.lower(QueueJob.user_email) == email,
            QueueJob.status.in_((JOB_STATUS_PENDING, JOB_STATUS_PROCESSING)),
        )
        .order_by(QueueJob.created_at.asc())
        .all()
    )

    pending = []
    for job in jobs:
        if job.job_type == JOB_TYPE_SITE_BATCH:
            try:
                payload = parse_job_payload(job.payload)
            except InvalidPayloadError as e:
                logging.warning(f"Skipping unreadable batch {job.queue_id}: {str(e)}")
                continue
            if not isinstance(payload, SiteBatchPayload):
                continue
            # sites bound by an earlier attempt are already listed as licenses
            for site in unprovisioned_sites(job, payload):
                pending.append(
                    {"status": "pending", "site_domain": site, "queue_id": job.queue_id}
                )
        else:
            pending.append(
                {"status": "pending", "license_key": job.license_key, "queue_id": job.queue_id}
            )
    return pending


@licenses_ns.route("")
class LicenseListResource(Resource):
    """Resource for listing licenses."""

    @licenses_ns.doc(params={"email": "Customer email"})
    @licenses_ns.marshal_list_with(license_model)
    def get(self):
        """List the licenses of a customer, including ones still being provisioned."""
        email = (request.args.get("email") or "").strip().lower()
        if not email or not email_validator(email):
            licenses_ns.abort(400, "A valid email is required")

        licenses = (
            License.query.filter(func.lower(License.user_email) == email)
            .order_by(License.created_at.desc())
            .all()
        )
        result = [LicenseSchema.model_validate(lic).model_dump() for lic in licenses]
        return result + pending_licenses(email)


activate_model = licenses_ns.model(
    "ActivateLicense",
    {
        "license_key": fields.String(required=True, description="License to activate"),
        "site_domain": fields.String(required=True, description="Site to bind it to"),
        "email": fields.String(description="Customer email, checked against the owner"),
    },
)


@licenses_ns.route("/activate")
class ActivateLicenseResource(Resource):
    """Resource for binding an unassigned license to a site."""

    @licenses_ns.expect(activate_model)
    @licenses_ns.response(200, "License activated", license_model)
    def post(self):
        """Activate a license on a site."""
        try:
            data = ActivateLicenseRequest.model_validate(request.get_json(silent=True) or {})
        except ValidationError as e:
            errors = e.errors(include_url=False, include_context=False)
            return {"message": "Invalid request", "errors": errors}, 400

        try:
            lic = activate_license(data.license_key, data.site_domain, email=data.email)
        except LicenseActivationError as e:
            return {"message": str(e)}, e.http_status
        except ProviderError as e:
            logging.error(f"Activation of {data.license_key} failed at Stripe: {str(e)}")
            return {"message": "Payment provider unavailable, try again later"}, 502
        except PersistenceError as e:
            logging.error(str(e))
            return {"message": "License could not be saved, try again"}, 500

        return licenses_ns.marshal(LicenseSchema.model_validate(lic).model_dump(), license_model)
