"""Request schemas for creating checkouts and activating licenses."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from app.helpers import email_validator
from app.helpers.stripe_helpers import normalize_email
from app.schemas.queue import normalize_domain

MAX_CHECKOUT_QUANTITY = 100


def _valid_email(value: str) -> str:
    email = normalize_email(value)
    if not email or not email_validator(email):
        raise ValueError("a valid email is required")
    return email


class QuantityCheckoutRequest(BaseModel):
    """Purchase of ``quantity`` unassigned licenses."""

    email: str
    quantity: int = Field(ge=1, le=MAX_CHECKOUT_QUANTITY)
    billing_period: Literal["monthly", "yearly"] = "monthly"

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _valid_email(value)

    @field_validator("billing_period", mode="before")
    @classmethod
    def _lower_period(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class SiteCheckoutRequest(BaseModel):
    """Purchase of one license per listed site."""

    email: str
    sites: list[str] = Field(min_length=1, max_length=MAX_CHECKOUT_QUANTITY)
    billing_period: Literal["monthly", "yearly"] = "monthly"

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _valid_email(value)

    @field_validator("billing_period", mode="before")
    @classmethod
    def _lower_period(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

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


class ActivateLicenseRequest(BaseModel):
    """Binding of an unassigned license to a site."""

    license_key: str = Field(min_length=1)
    site_domain: str
    email: str | None = None

    @field_validator("license_key")
    @classmethod
    def _strip_key(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("a license key is required")
        return value.strip()

    @field_validator("site_domain")
    @classmethod
    def _normalize_site(cls, value: str) -> str:
        domain = normalize_domain(value)
        if not domain or "." not in domain:
            raise ValueError("a site domain such as example.com is required")
        return domain

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str | None) -> str | None:
        return _valid_email(value) if value else None
