"""Shared fixtures for the provisioning queue tests."""

import pytest

from app.database import db
from app.factory import create_app
from app.models.queue import QueueJob
from config import TestingConfig
from fakes import NOW, FakeProvider


@pytest.fixture
def app(mocker):
    """Create the Flask app with an in-memory database."""
    mocker.patch("consentbit.queue.site_batch.detect_platform", return_value="webflow")
    mocker.patch("consentbit.activation.detect_platform", return_value="webflow")
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Return a test client for the app."""
    return app.test_client()


@pytest.fixture
def provider():
    """Return a fake payment provider."""
    return FakeProvider()


@pytest.fixture
def make_job(app):
    """Insert a queue job directly and return it."""

    def _make_job(**overrides):
        values = {
            "job_type": "per_license",
            "status": "pending",
            "customer_id": "cus_1",
            "user_email": "buyer@example.com",
            "payment_intent_id": "pi_1",
            "price_id": "price_1",
            "license_key": "L1",
            "placeholder_key": "L1",
            "payload": {"kind": "per_license", "quantity": 1, "original_quantity": 1},
            "attempts": 0,
            "max_attempts": 3,
            "created_at": NOW,
            "updated_at": NOW,
        }
        values.update(overrides)
        job = QueueJob(**values)
        db.session.add(job)
        db.session.commit()
        return job

    return _make_job
