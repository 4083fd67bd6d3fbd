"""Multi-site jobs: one subscription per site, provisioned sequentially.

A retry walks the whole site list again; sites that already have a license bound to a
subscription for the customer are skipped, so reprocessing is idempotent per site.
"""

import logging
import time

from app.models.license import LICENSE_STATUS_CANCELLED, License
from app.models.queue import QueueJob
from app.schemas.queue import SiteBatchPayload
from consentbit.exceptions import InvalidPayloadError, KeyGenerationExhausted, SiteBatchError
from consentbit.license_keys import generate_unique_license_key
from consentbit.platforms import detect_platform
from consentbit.provider import subscription_idempotency_key
from consentbit.queue.records import compute_trial, save_provisioned, send_payment_record
from consentbit.queue.store import OUTCOME_SUCCEEDED, mark_completed, setting


def find_site_license(customer_id: str, site: str) -> License | None:
    """Return the live license that already binds ``site`` to a subscription."""
    return License.query.filter(
        License.customer_id == customer_id,
        License.site_domain == site,
        License.subscription_id.isnot(None),
        License.status != LICENSE_STATUS_CANCELLED,
    ).first()


def unprovisioned_sites(job: QueueJob, payload: SiteBatchPayload) -> list[str]:
    """Return the sites of a batch that have no subscription yet."""
    return [site for site in payload.sites if find_site_license(job.customer_id, site) is None]


def _provision_site(job: QueueJob, site: str, billing_period: str | None, provider) -> str:
    platform = detect_platform(site)
    license_key = generate_unique_license_key()
    trial_end, billing_period = compute_trial(job, billing_period, provider)

    # the key is regenerated on every attempt, so it stays out of the provider request
    subscription = provider.create_subscription(
        customer=job.customer_id,
        price=job.price_id,
        quantity=1,
        trial_end=trial_end,
        metadata={
            "site": site,
            "queue_id": job.queue_id,
            "payment_intent_id": job.payment_intent_id,
            "billing_period": billing_period,
        },
        idempotency_key=subscription_idempotency_key(site, job.payment_intent_id),
    )
    save_provisioned(
        job,
        license_key,
        subscription,
        billing_period,
        trial_end,
        site_domain=site,
        platform=platform,
    )
    logging.info(
        f"Job {job.queue_id}: site {site} ({platform}) provisioned with subscription "
        f"{subscription['id']} and license {license_key}"
    )
    send_payment_record(job, license_key, subscription["id"], site_domain=site)
    return subscription["id"]


def process_site_batch(
    job: QueueJob, payload: SiteBatchPayload, provider, now: int | None = None
) -> str:
    """Provision every site of a multi-site job.

    Raises
    ------
    SiteBatchError
        On the first site that fails; earlier sites stay provisioned.
    KeyGenerationExhausted
        If no license key could be generated for a site.
    """
    if not job.price_id:
        raise InvalidPayloadError(f"Job {job.queue_id} has no price")

    delay = setting("SITE_BATCH_DELAY_SECONDS", 0.5)
    subscription_id = None
    created = 0

    for site in payload.sites:
        existing = find_site_license(job.customer_id, site)
        if existing:
            logging.info(
                f"Job {job.queue_id}: site {site} already has subscription "
                f"{existing.subscription_id}, skipping"
            )
            subscription_id = subscription_id or existing.subscription_id
            continue

        if created and delay:
            time.sleep(delay)

        try:
            site_subscription = _provision_site(job, site, payload.billing_period, provider)
        except KeyGenerationExhausted as e:
            raise KeyGenerationExhausted(f"Site {site}: {e}") from e
        except Exception as e:
            raise SiteBatchError(site, e) from e

        subscription_id = subscription_id or site_subscription
        created += 1

    logging.info(
        f"Job {job.queue_id}: {created} of {len(payload.sites)} site(s) provisioned in this run"
    )
    mark_completed(job.queue_id, subscription_id, None, now=now)
    return OUTCOME_SUCCEEDED
