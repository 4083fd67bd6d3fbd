"""Schemas package initialization."""

from .events import LineItem, PaymentEvent
from .license import LicenseSchema, RefundSchema
from .queue import (
    CycleSummary,
    EnqueueResult,
    JobPayload,
    PerLicensePayload,
    QueueJobSchema,
    SiteBatchPayload,
    parse_job_payload,
)

__all__ = [
    "LineItem",
    "PaymentEvent",
    "LicenseSchema",
    "RefundSchema",
    "CycleSummary",
    "EnqueueResult",
    "JobPayload",
    "PerLicensePayload",
    "QueueJobSchema",
    "SiteBatchPayload",
    "parse_job_payload",
]
