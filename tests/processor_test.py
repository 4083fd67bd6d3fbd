"""Unit tests for the job processor, the retry policy and the stuck-job reclaimer."""

import pytest

from app.database import db
from app.models.license import License
from app.models.queue import QueueJob
from app.models.subscription import Subscription
from consentbit.exceptions import KeyGenerationExhausted, PersistenceError
from consentbit.license_keys import is_temporary
from consentbit.provider import subscription_idempotency_key
from consentbit.queue.processor import run_processing_cycle
from consentbit.queue.records import save_provisioned
from consentbit.queue.store import claim_job, reclaim_stuck_jobs, record_failure, retry_delay
from fakes import NOW, FakeProvider, timeout_error

DAY = 24 * 60 * 60


def reload(job):
    """Return a fresh copy of ``job`` from the database."""
    db.session.expire_all()
    return db.session.get(QueueJob, job.queue_id)


def test_per_license_job_is_provisioned(app, provider, make_job):
    """A placeholder job gets a real key, a subscription and local records."""
    job = make_job()

    summary = run_processing_cycle(provider=provider, now=NOW)

    assert summary.processed == 1
    assert summary.succeeded == 1
    job = reload(job)
    assert job.status == "completed"
    assert job.subscription_id == "sub_1"
    assert job.item_id == "si_1"
    assert job.processed_at == NOW
    assert not is_temporary(job.license_key)
    assert job.placeholder_key == "L1"

    license_row = License.query.one()
    assert license_row.license_key == job.license_key
    assert license_row.subscription_id == "sub_1"
    assert license_row.status == "available"
    assert license_row.billing_period == "monthly"
    assert Subscription.query.filter_by(subscription_id="sub_1").count() == 1

    created = provider.subscriptions[0]
    assert created["quantity"] == 1
    assert created["trial_end"] == NOW + 30 * DAY
    assert created["metadata"]["license_key"] == job.license_key
    assert created["idempotency_key"] == subscription_idempotency_key(job.license_key, "pi_1")


def test_trial_days_from_price_metadata(app, make_job):
    """A trial_days entry on the price overrides the configured trial."""
    provider = FakeProvider(interval="year", price_metadata={"trial_days": "14"})
    job = make_job()

    run_processing_cycle(provider=provider, now=NOW)

    assert provider.subscriptions[0]["trial_end"] == NOW + 14 * DAY
    assert reload(job).status == "completed"
    assert License.query.one().billing_period == "yearly"


@pytest.mark.parametrize("attempts", [1, 2, 3])
def test_backoff_is_exponential(attempts):
    """The retry delay doubles with every attempt, starting at two minutes."""
    assert retry_delay(attempts) == 60 * 2**attempts
    assert retry_delay(attempts) < retry_delay(attempts + 1)


def test_failure_schedules_retry_then_fails(app, make_job):
    """Failures back off until max_attempts, after which the job fails for good."""
    job = make_job(max_attempts=3)

    delays = []
    for attempt in range(1, 4):
        assert claim_job(job.queue_id, now=NOW)
        status = record_failure(reload(job), f"boom {attempt}", now=NOW)
        job = reload(job)
        assert job.attempts == attempt
        assert job.error_message == f"boom {attempt}"
        if attempt < 3:
            assert status == "pending"
            delays.append(job.next_retry_at - NOW)
        else:
            assert status == "failed"
            assert job.next_retry_at is None

    assert delays == [120, 240]


def test_two_timeouts_then_success(app, provider, make_job):
    """Timeouts on the first two passes, success on the third: one license, one subscription."""
    job = make_job(license_key="KEY-AAAA-BBBB-CCCC-DDDD", placeholder_key=None)
    provider.fail("create_subscription", timeout_error(), timeout_error())

    first = run_processing_cycle(provider=provider, now=NOW)
    job = reload(job)
    assert first.failed == 1
    assert (job.status, job.attempts, job.next_retry_at) == ("pending", 1, NOW + 120)

    # not due yet
    early = run_processing_cycle(provider=provider, now=NOW + 60)
    assert early.processed == 0

    second = run_processing_cycle(provider=provider, now=NOW + 120)
    job = reload(job)
    assert second.failed == 1
    assert (job.status, job.attempts, job.next_retry_at) == ("pending", 2, NOW + 120 + 240)

    third = run_processing_cycle(provider=provider, now=NOW + 360)
    job = reload(job)
    assert third.succeeded == 1
    assert job.status == "completed"
    assert job.attempts == 2
    assert job.license_key == "KEY-AAAA-BBBB-CCCC-DDDD"

    assert License.query.count() == 1
    assert Subscription.query.count() == 1
    assert len(provider.subscriptions) == 1


def test_terminal_failure_after_max_attempts(app, provider, make_job):
    """A job that keeps failing ends up failed with the last error recorded."""
    job = make_job()
    provider.fail("create_subscription", timeout_error(), timeout_error(), timeout_error())

    for now in (NOW, NOW + 120, NOW + 360):
        run_processing_cycle(provider=provider, now=now)

    job = reload(job)
    assert job.status == "failed"
    assert job.attempts == 3
    assert "timeout" in job.error_message
    assert run_processing_cycle(provider=provider, now=NOW + 10_000).processed == 0


def test_key_generation_exhausted_fails_immediately(app, provider, make_job, mocker):
    """Running out of key candidates is not retried."""
    job = make_job()
    mocker.patch(
        "consentbit.queue.processor.generate_unique_license_key",
        side_effect=KeyGenerationExhausted("no key"),
    )

    summary = run_processing_cycle(provider=provider, now=NOW)

    job = reload(job)
    assert summary.failed == 1
    assert job.status == "failed"
    assert job.attempts == 1
    assert provider.subscriptions == []


def test_invalid_payload_fails_immediately(app, provider, make_job):
    """A payload matching neither job variant is not retried."""
    job = make_job(payload={"kind": "unknown"})

    run_processing_cycle(provider=provider, now=NOW)

    job = reload(job)
    assert job.status == "failed"
    assert "Invalid job payload" in job.error_message


def test_one_failure_does_not_abort_the_batch(app, provider, make_job):
    """Each job's outcome is isolated."""
    failing = make_job(payment_intent_id="pi_a", created_at=NOW - 10)
    passing = make_job(payment_intent_id="pi_b", created_at=NOW - 5)
    provider.fail("create_subscription", timeout_error())

    summary = run_processing_cycle(provider=provider, now=NOW)

    assert (summary.processed, summary.succeeded, summary.failed) == (2, 1, 1)
    assert reload(failing).status == "pending"
    assert reload(passing).status == "completed"


def test_claim_is_won_by_exactly_one_worker(app, make_job):
    """Only the first conditional claim on a pending job succeeds."""
    job = make_job()

    assert claim_job(job.queue_id, now=NOW) is True
    assert claim_job(job.queue_id, now=NOW) is False
    assert reload(job).status == "processing"


def test_lost_claim_is_skipped(app, provider, make_job, mocker):
    """A job claimed by another worker between select and claim is skipped."""
    job = make_job()
    mocker.patch("consentbit.queue.processor.claim_job", return_value=False)

    summary = run_processing_cycle(provider=provider, now=NOW)

    assert summary.processed == 0
    assert summary.skipped == 1
    assert summary.reasons == {"race_detected": 1}
    assert provider.calls == []
    assert reload(job).status == "pending"


def test_license_with_subscription_is_not_provisioned_twice(app, provider, make_job):
    """A job whose license already has a subscription completes without a new one."""
    key = "KEY-AAAA-BBBB-CCCC-DDDD"
    db.session.add(
        License(license_key=key, customer_id="cus_1", subscription_id="sub_9", item_id="si_9")
    )
    db.session.commit()
    job = make_job(license_key=key, placeholder_key=None)

    summary = run_processing_cycle(provider=provider, now=NOW)

    assert summary.reasons == {"already_completed": 1}
    job = reload(job)
    assert job.status == "completed"
    assert job.subscription_id == "sub_9"
    assert provider.subscriptions == []


def test_partial_write_is_retried_without_a_second_subscription(app, provider, make_job, mocker):
    """A crash after the provider call reuses the same subscription on retry."""
    job = make_job()
    mocker.patch(
        "consentbit.queue.processor.save_provisioned",
        side_effect=_fail_once(PersistenceError("disk full"), save_provisioned),
    )

    run_processing_cycle(provider=provider, now=NOW)
    job = reload(job)
    assert job.status == "pending"
    key = job.license_key
    assert not is_temporary(key)

    run_processing_cycle(provider=provider, now=NOW + 120)
    job = reload(job)
    assert job.status == "completed"
    assert job.license_key == key
    assert len(provider.subscriptions) == 1
    assert License.query.one().subscription_id == job.subscription_id


def _fail_once(error, func):
    calls = []

    def side_effect(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise error
        return func(*args, **kwargs)

    return side_effect


def test_time_budget_stops_claiming(app, provider, make_job):
    """Once the time budget is spent no further jobs are claimed."""
    job = make_job()

    summary = run_processing_cycle(provider=provider, now=NOW, time_budget=-1)

    assert summary.processed == 0
    assert reload(job).status == "pending"


def test_reclaimer_returns_stale_jobs(app, make_job):
    """Jobs stuck in processing past the staleness window go back to pending."""
    stale = make_job(status="processing", updated_at=NOW - 301, attempts=1)
    fresh = make_job(status="processing", updated_at=NOW - 100, payment_intent_id="pi_2")

    assert reclaim_stuck_jobs(now=NOW) == 1
    assert reclaim_stuck_jobs(now=NOW) == 0

    stale = reload(stale)
    assert stale.status == "pending"
    assert stale.attempts == 1
    assert reload(fresh).status == "processing"


def test_cycle_reclaims_and_processes(app, provider, make_job):
    """A processing cycle reclaims a crashed job and provisions it in the same run."""
    job = make_job(status="processing", updated_at=NOW - 600)

    summary = run_processing_cycle(provider=provider, now=NOW)

    assert summary.reclaimed == 1
    assert summary.succeeded == 1
    assert reload(job).status == "completed"
