"""Provisioning queue schemas."""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from consentbit.exceptions import InvalidPayloadError

BILLING_PERIODS = ("monthly", "yearly")


def normalize_domain(domain: str) -> str:
    """Lower-case a site domain and strip scheme, path and a leading ``www.``."""
    value = domain.strip().lower()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix) :]
    value = value.split("/", 1)[0]
    if value.startswith("www."):
        value = value[4:]
    return value


class PerLicensePayload(BaseModel):
    """Payload of a job that provisions a single license slot."""

    kind: Literal["per_license"] = "per_license"
    quantity: int = Field(default=1, ge=1)
    # number of licenses bought in the originating payment, used for refunds
    original_quantity: int = Field(default=1, ge=1)
    billing_period: str | None = None


class SiteBatchPayload(BaseModel):
    """Payload of a job that provisions one subscription per site."""

    kind: Literal["site_batch"] = "site_batch"
    sites: list[str] = Field(min_length=1)
    billing_period: str | None = None

    @field_validator("sites")
    @classmethod
    def _normalize_sites(cls, sites: list[str]) -> list[str]:
        normalized = []
        for site in sites:
            domain = normalize_domain(site)
            if domain and domain not in normalized:
                normalized.append(domain)
        if not normalized:
            raise ValueError("at least one site domain is required")
        return normalized


JobPayload = Annotated[PerLicensePayload | SiteBatchPayload, Field(discriminator="kind")]

_job_payload_adapter = TypeAdapter(JobPayload)


def parse_job_payload(data: dict) -> PerLicensePayload | SiteBatchPayload:
    """Parse a stored job payload into its tagged variant.

    Raises
    ------
    InvalidPayloadError
        If the payload does not match either variant.
    """
    try:
        return _job_payload_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid job payload: {e}") from e


class QueueJobSchema(BaseModel):
    """Schema for a queue job as exposed over the API."""

    queue_id: str
    job_type: str
    status: str
    customer_id: str
    user_email: str | None = None
    payment_intent_id: str
    price_id: str | None = None
    license_key: str | None = None
    subscription_id: str | None = None
    item_id: str | None = None
    payload: dict
    attempts: int
    max_attempts: int
    next_retry_at: int | None = None
    error_message: str | None = None
    created_at: int
    updated_at: int
    processed_at: int | None = None

    class Config:
        """Config for the queue job schema."""

        from_attributes = True


class CycleSummary(BaseModel):
    """Result of one processing cycle or refund sweep."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    reclaimed: int = 0
    reasons: dict[str, int] = {}

    def skip(self, reason: str) -> None:
        """Count a skipped job under ``reason``."""
        self.skipped += 1
        self.reasons[reason] = self.reasons.get(reason, 0) + 1


class EnqueueResult(BaseModel):
    """Outcome of classifying and enqueueing a payment event."""

    use_case: str
    queue_ids: list[str] = []
    created: int = 0
    skipped: int = 0
