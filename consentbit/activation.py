"""Bind unassigned quantity licenses to customer sites."""

import logging

from sqlalchemy.exc import SQLAlchemyError

from app.database import db
from app.helpers.stripe_helpers import normalize_email
from app.models.license import LICENSE_STATUS_ACTIVE, LICENSE_STATUS_CANCELLED, License
from consentbit.exceptions import (
    LicenseConflict,
    LicenseNotFound,
    LicenseOwnershipError,
    PersistenceError,
)
from consentbit.platforms import detect_platform
from consentbit.provider import get_provider
from consentbit.queue.site_batch import find_site_license


def activate_license(
    license_key: str, site_domain: str, email: str | None = None, provider=None
) -> License:
    """Bind ``license_key`` to ``site_domain``.

    The site is written to the subscription metadata at the provider first and to the
    local license second, so a failed provider call leaves the license unassigned.
    Activating a license for the site it is already bound to is a no-op.

    Parameters
    ----------
    license_key : str
        The license to activate.
    site_domain : str
        Normalized site domain.
    email : str, optional
        When given, the license must belong to this customer.
    provider : StripeProvider, optional
        The payment provider, by default the configured Stripe provider.

    Returns
    -------
    License
        The activated license.

    Raises
    ------
    LicenseNotFound
        If no license has this key.
    LicenseOwnershipError
        If ``email`` does not own the license.
    LicenseConflict
        If the license is cancelled, has no subscription yet, is bound to another site,
        or the customer already has a live license for the site.
    ProviderError
        If the subscription metadata could not be updated.
    PersistenceError
        If the provider was updated but the license row could not be written.
    """
    lic = License.query.filter_by(license_key=license_key).first()
    if lic is None:
        raise LicenseNotFound(f"License {license_key} not found")

    if email and normalize_email(lic.user_email) != normalize_email(email):
        logging.warning(f"Rejected activation of {license_key} by {email}")
        raise LicenseOwnershipError(f"License {license_key} does not belong to {email}")

    if lic.status == LICENSE_STATUS_CANCELLED:
        raise LicenseConflict(f"License {license_key} is cancelled")
    if lic.site_domain:
        if lic.site_domain == site_domain:
            logging.info(f"License {license_key} is already active on {site_domain}")
            return lic
        raise LicenseConflict(f"License {license_key} is already bound to {lic.site_domain}")
    if not lic.subscription_id:
        raise LicenseConflict(f"License {license_key} is still being provisioned")

    other = find_site_license(lic.customer_id, site_domain)
    if other is not None:
        raise LicenseConflict(f"{site_domain} is already covered by license {other.license_key}")

    platform = detect_platform(site_domain)
    provider = provider or get_provider()
    provider.update_subscription_metadata(
        lic.subscription_id, {"site": site_domain, "license_key": license_key}
    )

    lic.site_domain = site_domain
    lic.platform = platform
    lic.status = LICENSE_STATUS_ACTIVE
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(
            f"Subscription {lic.subscription_id} names {site_domain} but license "
            f"{license_key} could not be saved: {e}"
        ) from e

    logging.info(f"Activated license {license_key} on {site_domain} ({platform})")
    return lic
