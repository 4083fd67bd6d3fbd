"""Unit tests for classifying payment events and enqueueing provisioning jobs."""

import pytest

from app.database import db
from app.models.queue import QueueJob
from app.schemas.events import LineItem, PaymentEvent
from consentbit.exceptions import InvalidPayloadError
from consentbit.queue.producer import (
    USE_CASE_DIRECT_LINK,
    USE_CASE_QUANTITY,
    USE_CASE_SITE_BATCH,
    USE_CASE_UNCLASSIFIED,
    classify,
    enqueue,
)


def make_event(**overrides):
    """Build a completed one-time checkout event."""
    values = {
        "event_type": "checkout.session.completed",
        "session_or_intent_id": "cs_1",
        "customer_id": "cus_1",
        "user_email": "buyer@example.com",
        "payment_intent_id": "pi_1",
        "mode": "payment",
        "metadata": {"purchase_type": "quantity", "quantity": "3", "price_id": "price_1"},
        "amount": 3000,
        "currency": "usd",
    }
    values.update(overrides)
    return PaymentEvent(**values)


@pytest.mark.parametrize(
    "overrides,expected",
    [
        ({"mode": "subscription"}, USE_CASE_DIRECT_LINK),
        ({}, USE_CASE_QUANTITY),
        (
            {"metadata": {"purchase_type": "site", "sites": '["a.com", "b.com"]'}},
            USE_CASE_SITE_BATCH,
        ),
        ({"metadata": {"purchase_type": "site", "sites": "a.com, b.com"}}, USE_CASE_SITE_BATCH),
        ({"metadata": {"purchase_type": "site"}}, USE_CASE_UNCLASSIFIED),
        ({"metadata": {}}, USE_CASE_UNCLASSIFIED),
    ],
)
def test_classify(overrides, expected):
    """Events are classified by checkout mode and purchase type, first match wins."""
    assert classify(make_event(**overrides)) == expected


def test_direct_link_queues_nothing(app):
    """Subscription checkouts are not queued."""
    result = enqueue(make_event(mode="subscription"))

    assert result.use_case == USE_CASE_DIRECT_LINK
    assert result.queue_ids == []
    assert QueueJob.query.count() == 0


def test_unclassified_queues_nothing(app):
    """Events matching no use case are logged and dropped."""
    result = enqueue(make_event(metadata={"foo": "bar"}))

    assert result.use_case == USE_CASE_UNCLASSIFIED
    assert QueueJob.query.count() == 0


def test_quantity_purchase_fans_out_one_job_per_unit(app):
    """A purchase of three licenses yields three per-license jobs with placeholders."""
    result = enqueue(make_event())

    assert result.created == 3
    jobs = QueueJob.query.order_by(QueueJob.license_key).all()
    assert [job.license_key for job in jobs] == ["L1", "L2", "L3"]
    for job in jobs:
        assert job.status == "pending"
        assert job.job_type == "per_license"
        assert job.placeholder_key == job.license_key
        assert job.price_id == "price_1"
        assert job.payload["quantity"] == 1
        assert job.payload["original_quantity"] == 3
        assert job.attempts == 0
        assert job.max_attempts == 3
    assert sorted(result.queue_ids) == sorted(job.queue_id for job in jobs)


def test_real_keys_from_metadata_are_used_first(app):
    """Known keys are used before placeholders are issued."""
    metadata = {
        "purchase_type": "quantity",
        "quantity": "3",
        "price_id": "price_1",
        "license_keys": '["KEY-AAAA-BBBB-CCCC-DDDD", "KEY-EEEE-FFFF-GGGG-HHHH"]',
    }
    enqueue(make_event(metadata=metadata))

    keys = {job.license_key: job.placeholder_key for job in QueueJob.query.all()}
    assert keys == {
        "KEY-AAAA-BBBB-CCCC-DDDD": None,
        "KEY-EEEE-FFFF-GGGG-HHHH": None,
        "L3": "L3",
    }


def test_quantity_falls_back_to_line_items(app):
    """Without a quantity in the metadata the line items are summed."""
    event = make_event(
        metadata={"purchase_type": "quantity"},
        line_items=[LineItem(price_id="price_9", quantity=2)],
    )
    result = enqueue(event)

    assert result.created == 2
    assert {job.price_id for job in QueueJob.query.all()} == {"price_9"}


def test_redelivery_is_idempotent(app):
    """Delivering the same event twice does not create more jobs."""
    first = enqueue(make_event())
    second = enqueue(make_event())

    assert second.created == 0
    assert second.skipped == 3
    assert sorted(second.queue_ids) == sorted(first.queue_ids)
    assert QueueJob.query.count() == 3


def test_redelivery_matches_after_key_replacement(app):
    """A job whose placeholder was replaced still counts as a duplicate."""
    enqueue(make_event())
    job = QueueJob.query.filter_by(license_key="L2").one()
    job.license_key = "KEY-REAL-KEYS-HERE-2222"
    job.status = "completed"
    db.session.commit()

    result = enqueue(make_event())

    assert result.created == 0
    assert QueueJob.query.count() == 3


def test_failed_jobs_are_not_duplicates(app):
    """Only pending, processing and completed jobs block a new enqueue."""
    enqueue(make_event(metadata={"purchase_type": "quantity", "quantity": "1"}))
    QueueJob.query.update({"status": "failed"})
    db.session.commit()

    result = enqueue(make_event(metadata={"purchase_type": "quantity", "quantity": "1"}))

    assert result.created == 1
    assert QueueJob.query.count() == 2


def test_site_purchase_creates_one_batch_job(app):
    """A site purchase yields a single job carrying the normalized site list."""
    event = make_event(
        metadata={
            "purchase_type": "site",
            "sites": "https://www.Alpha.com/, beta.io, alpha.com",
            "price_id": "price_site",
            "billing_period": "Yearly",
        }
    )
    result = enqueue(event)

    assert result.use_case == USE_CASE_SITE_BATCH
    assert result.created == 1
    job = QueueJob.query.one()
    assert job.job_type == "site_batch"
    assert job.license_key is None
    assert job.payload["sites"] == ["alpha.com", "beta.io"]
    assert job.payload["billing_period"] == "yearly"

    again = enqueue(event)
    assert again.skipped == 1
    assert again.queue_ids == [job.queue_id]
    assert QueueJob.query.count() == 1


def test_missing_customer_rejects_the_event(app):
    """An event without a customer is rejected and nothing is written."""
    with pytest.raises(InvalidPayloadError):
        enqueue(make_event(customer_id=None))
    assert QueueJob.query.count() == 0


def test_invalid_quantity_rejects_the_event(app):
    """A non-numeric quantity is rejected."""
    with pytest.raises(InvalidPayloadError):
        enqueue(make_event(metadata={"purchase_type": "quantity", "quantity": "many"}))
    assert QueueJob.query.count() == 0


def test_payment_intent_falls_back_to_session_id(app):
    """Jobs of an event without a payment intent are keyed on the session id."""
    enqueue(make_event(payment_intent_id=None))

    assert {job.payment_intent_id for job in QueueJob.query.all()} == {"cs_1"}
