"""Unit tests for the refund sweep of permanently failed jobs."""

from app.database import db
from app.models.license import License
from app.models.queue import QueueJob
from app.models.refund import Refund
from consentbit.exceptions import ProviderError
from consentbit.queue.refunds import refund_amount, refund_idempotency_key, run_refund_sweep
from fakes import NOW

HOUR = 60 * 60


def failed_job(make_job, **overrides):
    """Insert a job that failed for good 13 hours ago."""
    values = {
        "status": "failed",
        "attempts": 3,
        "error_message": "ProviderError: timeout",
        "created_at": NOW - 13 * HOUR,
        "updated_at": NOW - 13 * HOUR,
    }
    values.update(overrides)
    return make_job(**values)


def reload(job):
    """Return a fresh copy of ``job`` from the database."""
    db.session.expire_all()
    return db.session.get(QueueJob, job.queue_id)


def test_failed_job_is_refunded_once(app, provider, make_job):
    """A failed job past the grace window gets exactly one refund and a marker."""
    job = failed_job(make_job)

    summary = run_refund_sweep(provider=provider, now=NOW)

    assert summary.succeeded == 1
    assert len(provider.refunds) == 1
    refund = provider.refunds[0]
    assert refund["amount"] == 1000
    assert refund["charge_id"] == "ch_pi_1"
    assert refund["idempotency_key"] == refund_idempotency_key(job.queue_id)
    assert refund["metadata"]["queue_id"] == job.queue_id
    assert refund["metadata"]["reason"] == "license_provisioning_failed"

    job = reload(job)
    assert job.status == "failed"
    assert job.error_message == f"ProviderError: timeout | REFUNDED:{refund['id']}"

    row = Refund.query.one()
    assert row.queue_id == job.queue_id
    assert row.amount == 1000
    assert row.attempts == 3

    again = run_refund_sweep(provider=provider, now=NOW + HOUR)
    assert again.processed == 0
    assert len(provider.refunds) == 1


def test_grace_window_is_respected(app, provider, make_job):
    """Jobs that failed recently are left alone."""
    failed_job(make_job, created_at=NOW - 11 * HOUR)

    summary = run_refund_sweep(provider=provider, now=NOW)

    assert summary.processed == 0
    assert provider.refunds == []


def test_pending_and_completed_jobs_are_not_refunded(app, provider, make_job):
    """Only failed jobs are candidates."""
    make_job(created_at=NOW - 13 * HOUR)
    make_job(status="completed", payment_intent_id="pi_2", created_at=NOW - 13 * HOUR)

    assert run_refund_sweep(provider=provider, now=NOW).processed == 0


def test_existing_refund_row_restores_the_marker(app, provider, make_job):
    """A refund recorded before a crash is not paid out again."""
    job = failed_job(make_job)
    db.session.add(
        Refund(
            refund_id="re_earlier",
            payment_intent_id="pi_1",
            amount=1000,
            queue_id=job.queue_id,
        )
    )
    db.session.commit()

    summary = run_refund_sweep(provider=provider, now=NOW)

    assert summary.reasons == {"duplicate": 1}
    assert provider.refunds == []
    assert "REFUNDED:re_earlier" in reload(job).error_message


def test_provider_failure_is_retried_next_sweep(app, provider, make_job):
    """A refund that fails at the provider leaves the job for the next sweep."""
    job = failed_job(make_job)
    provider.fail("create_refund", ProviderError("Stripe refund failed: card_declined"))

    first = run_refund_sweep(provider=provider, now=NOW)

    assert first.failed == 1
    assert "REFUNDED:" not in reload(job).error_message
    assert Refund.query.count() == 0

    second = run_refund_sweep(provider=provider, now=NOW + HOUR)

    assert second.succeeded == 1
    assert Refund.query.count() == 1


def test_unexpected_error_does_not_stop_the_sweep(app, provider, make_job):
    """A job that breaks with an unexpected error is left for later and the sweep goes on."""
    broken = failed_job(make_job, payment_intent_id="pi_broken")
    healthy = failed_job(make_job, payment_intent_id="pi_2", created_at=NOW - 13 * HOUR + 1)
    provider.fail("get_payment_intent", KeyError("latest_charge"))

    summary = run_refund_sweep(provider=provider, now=NOW)

    assert summary.processed == 2
    assert summary.failed == 1
    assert summary.succeeded == 1
    assert "REFUNDED:" not in reload(broken).error_message
    assert "REFUNDED:" in reload(healthy).error_message
    assert [row.payment_intent_id for row in Refund.query.all()] == ["pi_2"]


def test_amount_falls_back_to_the_payment_intent(app, provider, make_job):
    """Without a readable price the intent amount is split over the units bought."""
    job = failed_job(
        make_job,
        payload={"kind": "per_license", "quantity": 1, "original_quantity": 3},
    )
    provider.intent_amount = 2400
    provider.fail("get_price", ProviderError("Stripe price lookup failed"))

    amount = refund_amount(job, provider.get_payment_intent("pi_1"), provider)

    assert amount == 800


def test_site_batch_refunds_only_unprovisioned_sites(app, provider, make_job):
    """Sites that did get a subscription are not refunded."""
    failed_job(
        make_job,
        job_type="site_batch",
        license_key=None,
        placeholder_key=None,
        payload={"kind": "site_batch", "sites": ["a.com", "b.com", "c.com"]},
    )
    db.session.add(
        License(
            license_key="KEY-AAAA-AAAA-AAAA-AAAA",
            customer_id="cus_1",
            subscription_id="sub_a",
            site_domain="a.com",
            status="active",
        )
    )
    db.session.commit()

    run_refund_sweep(provider=provider, now=NOW)

    assert provider.refunds[0]["amount"] == 2000


def test_fully_provisioned_batch_has_nothing_to_refund(app, provider, make_job):
    """A failed batch whose sites all exist is marked without a refund."""
    job = failed_job(
        make_job,
        job_type="site_batch",
        license_key=None,
        placeholder_key=None,
        payload={"kind": "site_batch", "sites": ["a.com"]},
    )
    db.session.add(
        License(
            license_key="KEY-AAAA-AAAA-AAAA-AAAA",
            customer_id="cus_1",
            subscription_id="sub_a",
            site_domain="a.com",
            status="active",
        )
    )
    db.session.commit()

    summary = run_refund_sweep(provider=provider, now=NOW)

    assert summary.reasons == {"nothing_to_refund": 1}
    assert provider.refunds == []
    assert reload(job).error_message.endswith("REFUNDED:none")
    assert run_refund_sweep(provider=provider, now=NOW).processed == 0
