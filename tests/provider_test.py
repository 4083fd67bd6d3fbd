"""Unit tests for the Stripe provider, platform detection and health checks."""

import pytest
import redis
import requests
import stripe

from app.helpers.database import check_redis, perform_health_checks
from consentbit.exceptions import ProviderError
from consentbit.platforms import MAX_BODY_BYTES, detect_platform
from consentbit.provider import StripeProvider, subscription_idempotency_key


def test_idempotency_key_is_stable():
    """The same license and payment always map to the same key."""
    key = subscription_idempotency_key("KEY-AAAA-BBBB-CCCC-DDDD", "pi_1")

    assert key == subscription_idempotency_key("KEY-AAAA-BBBB-CCCC-DDDD", "pi_1")
    assert key != subscription_idempotency_key("KEY-AAAA-BBBB-CCCC-DDDD", "pi_2")
    assert key.startswith("sub-")
    assert len(key) == 36


def test_create_subscription(app, mocker):
    """Subscriptions are created with the trial, metadata and idempotency key."""
    create = mocker.patch(
        "stripe.Subscription.create",
        return_value={
            "id": "sub_1",
            "status": "trialing",
            "customer": "cus_1",
            "current_period_start": 10,
            "current_period_end": 20,
            "items": {"data": [{"id": "si_1"}]},
        },
    )

    result = StripeProvider().create_subscription(
        customer="cus_1",
        price="price_1",
        quantity=1,
        trial_end=20,
        metadata={"license_key": "KEY-1", "attempt": 2},
        idempotency_key="sub-abc",
    )

    assert result == {
        "id": "sub_1",
        "item_id": "si_1",
        "status": "trialing",
        "customer": "cus_1",
        "current_period_start": 10,
        "current_period_end": 20,
    }
    create.assert_called_once_with(
        api_key="sk_test_dummy",
        customer="cus_1",
        items=[{"price": "price_1", "quantity": 1}],
        metadata={"license_key": "KEY-1", "attempt": "2"},
        trial_end=20,
        idempotency_key="sub-abc",
    )


def test_stripe_errors_become_provider_errors(app, mocker):
    """Stripe failures are raised as provider errors."""
    mocker.patch(
        "stripe.Refund.create",
        side_effect=stripe.APIConnectionError("timeout", http_status=None),
    )

    with pytest.raises(ProviderError, match="refund creation failed"):
        StripeProvider().create_refund("ch_1", 1000, {"queue_id": "q1"})


def test_payment_intent_charge(app, mocker):
    """The latest charge is reported whether or not it was expanded."""
    mocker.patch(
        "stripe.PaymentIntent.retrieve",
        return_value={"id": "pi_1", "amount": 3000, "latest_charge": {"id": "ch_1"}},
    )

    assert StripeProvider().get_payment_intent("pi_1")["charge_id"] == "ch_1"


def test_create_checkout_session(app, mocker):
    """Checkouts are one-time payments that always create a customer."""
    create = mocker.patch(
        "stripe.checkout.Session.create",
        return_value={"id": "cs_1", "url": "https://checkout.stripe.com/c/pay/cs_1"},
    )

    session = StripeProvider().create_checkout_session(
        customer_email="buyer@example.com",
        price="price_1",
        quantity=2,
        metadata={"purchase_type": "quantity", "quantity": 2},
        success_url="https://app.example.com/ok",
        cancel_url="https://app.example.com/cancel",
    )

    assert session == {"id": "cs_1", "url": "https://checkout.stripe.com/c/pay/cs_1"}
    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "payment"
    assert kwargs["customer_creation"] == "always"
    assert kwargs["line_items"] == [{"price": "price_1", "quantity": 2}]
    assert kwargs["metadata"] == {"purchase_type": "quantity", "quantity": "2"}
    assert kwargs["payment_intent_data"] == {"metadata": kwargs["metadata"]}


def test_update_subscription_metadata(app, mocker):
    """Metadata updates go through Subscription.modify with string values."""
    modify = mocker.patch(
        "stripe.Subscription.modify",
        return_value={"id": "sub_1", "status": "active", "metadata": {"site": "shop.com"}},
    )

    result = StripeProvider().update_subscription_metadata("sub_1", {"site": "shop.com"})

    assert result["metadata"] == {"site": "shop.com"}
    modify.assert_called_once_with("sub_1", api_key="sk_test_dummy", metadata={"site": "shop.com"})


def test_missing_secret_key(app):
    """The provider cannot be built without a secret key."""
    app.config["STRIPE_SECRET_KEY"] = None

    with pytest.raises(ValueError):
        StripeProvider()


def streamed_page(mocker, *chunks, headers=None):
    """Build a streamed response whose body arrives as ``chunks``."""
    response = mocker.MagicMock(headers=headers or {}, encoding="utf-8")
    response.__enter__.return_value = response
    response.iter_content.return_value = iter(chunks)
    return response


@pytest.mark.parametrize(
    "body,expected",
    [
        ('<html data-wf-site="123">', "webflow"),
        ('<script src="https://framerusercontent.com/x.js">', "framer"),
        ("<html></html>", "unknown"),
    ],
)
def test_detect_platform(app, mocker, body, expected):
    """Site builders are recognized by the markers in their pages."""
    get = mocker.patch(
        "consentbit.platforms.requests.get", return_value=streamed_page(mocker, body.encode())
    )

    assert detect_platform("example.com") == expected
    assert get.call_args.kwargs["stream"] is True


def test_detect_platform_from_header(app, mocker):
    """A builder that announces itself in X-Powered-By is recognized without markers."""
    page = streamed_page(mocker, b"<html></html>", headers={"x-powered-by": "Framer"})
    mocker.patch("consentbit.platforms.requests.get", return_value=page)

    assert detect_platform("example.com") == "framer"


def test_detect_platform_reads_only_the_page_head(app, mocker):
    """Downloading stops at the size limit, so markers further down are not seen."""
    filler = b"x" * 16_384
    chunks = [filler] * (MAX_BODY_BYTES // len(filler) + 1) + [b"data-wf-site"]
    page = streamed_page(mocker, *chunks)
    mocker.patch("consentbit.platforms.requests.get", return_value=page)

    assert detect_platform("example.com") == "unknown"
    assert next(page.iter_content.return_value) == b"data-wf-site"


def test_detect_platform_network_error(app, mocker):
    """Unreachable sites are reported as unknown."""
    mocker.patch(
        "consentbit.platforms.requests.get", side_effect=requests.ConnectionError("refused")
    )

    assert detect_platform("example.com") == "unknown"


def test_health_checks_pass(app):
    """A reachable database and no Redis configuration is healthy."""
    assert perform_health_checks() == []


def test_redis_check_reports_outages(app, mocker):
    """An unreachable Redis fails the check."""
    app.config["REDIS_URL"] = "redis://localhost:6379/0"
    client = mocker.patch("app.helpers.database.redis.Redis.from_url").return_value
    client.ping.side_effect = redis.ConnectionError("refused")

    ok, message = check_redis()

    assert ok is False
    assert "refused" in message
