"""Unit tests for license key generation."""

import re

import pytest
from sqlalchemy.exc import OperationalError

from app.database import db
from app.models.license import License
from consentbit.exceptions import KeyGenerationExhausted
from consentbit.license_keys import (
    KEY_ALPHABET,
    _license_key_exists,
    build_license_key,
    generate_unique_license_key,
    is_temporary,
    temporary_key,
)

KEY_RE = re.compile(r"^KEY-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")


def test_key_format_and_alphabet():
    """Generated keys have four groups drawn from the unambiguous alphabet."""
    for _ in range(200):
        key = build_license_key()
        assert KEY_RE.match(key)
        for char in key[4:].replace("-", ""):
            assert char in KEY_ALPHABET
            assert char not in "0O1IL"


@pytest.mark.parametrize(
    "key,expected",
    [
        ("L1", True),
        ("l12", True),
        ("TEMP-3", True),
        ("temp-44", True),
        ("", True),
        (None, True),
        ("KEY-ABCD-EFGH-JKMN-PQRS", False),
        ("L1X", False),
        ("TEMP-", False),
    ],
)
def test_is_temporary(key, expected):
    """Placeholders and empty keys are temporary, generated keys are not."""
    assert is_temporary(key) is expected


def test_temporary_key_is_recognised():
    """Keys issued by the producer are detected as temporary."""
    assert temporary_key(3) == "L3"
    assert is_temporary(temporary_key(3))


def test_collisions_are_retried():
    """A colliding candidate is replaced by a fresh one."""
    seen = []

    def exists(key):
        seen.append(key)
        return len(seen) < 3

    key = generate_unique_license_key(exists=exists)
    assert key == seen[-1]
    assert len(seen) == 3


def test_exhausted_after_max_attempts():
    """Fifty collisions in a row raise KeyGenerationExhausted."""
    calls = []

    def exists(key):
        calls.append(key)
        return True

    with pytest.raises(KeyGenerationExhausted):
        generate_unique_license_key(exists=exists)
    assert len(calls) == 50


def test_store_unavailable_returns_unchecked_key():
    """A database error during the lookup yields the candidate without a check."""

    def exists(key):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    key = generate_unique_license_key(exists=exists)
    assert KEY_RE.match(key)


def test_ten_thousand_keys_unique_against_existing(app):
    """10,000 generated keys are pairwise distinct and avoid the 100 stored keys."""
    existing = {build_license_key() for _ in range(100)}
    for n, key in enumerate(existing):
        db.session.add(License(license_key=key, customer_id=f"cus_{n}"))
    db.session.commit()

    generated = set()

    def exists(key):
        return key in generated or _license_key_exists(key)

    for _ in range(10_000):
        key = generate_unique_license_key(exists=exists)
        generated.add(key)

    assert len(generated) == 10_000
    assert not generated & existing


def test_default_lookup_uses_license_table(app, mocker):
    """Without a lookup the generator checks the licenses table."""
    db.session.add(License(license_key="KEY-AAAA-AAAA-AAAA-AAAA", customer_id="cus_1"))
    db.session.commit()
    mocker.patch(
        "consentbit.license_keys.build_license_key",
        side_effect=["KEY-AAAA-AAAA-AAAA-AAAA", "KEY-BBBB-BBBB-BBBB-BBBB"],
    )

    assert generate_unique_license_key() == "KEY-BBBB-BBBB-BBBB-BBBB"
