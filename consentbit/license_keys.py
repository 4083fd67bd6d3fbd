"""License key generation.

Keys look like ``KEY-7QXH-M4RA-29VC-PEWN``: four groups of four characters drawn with
``secrets`` from an alphabet that leaves out characters which are easy to misread
(``0``/``O``, ``1``/``I``/``L``).

Uniqueness is checked against the ``licenses`` table with a read-then-retry loop. When the
table cannot be read the generator returns the unchecked key instead of failing; the unique
constraint on ``licenses.license_key`` still rejects a duplicate at insert time.
"""

import logging
import re
import secrets
from collections.abc import Callable

from sqlalchemy.exc import SQLAlchemyError

from consentbit.exceptions import KeyGenerationExhausted

KEY_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
KEY_PREFIX = "KEY"
KEY_GROUPS = 4
KEY_GROUP_SIZE = 4
MAX_KEY_ATTEMPTS = 50

_TEMPORARY_KEY_RE = re.compile(r"^(L|TEMP-)\d+$", re.IGNORECASE)


def build_license_key() -> str:
    """Return a random key without checking it for uniqueness."""
    groups = [
        "".join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_GROUP_SIZE))
        for _ in range(KEY_GROUPS)
    ]
    return "-".join([KEY_PREFIX, *groups])


def is_temporary(key: str | None) -> bool:
    """Return True for placeholder keys such as ``L3`` or ``TEMP-7``.

    Placeholders are issued by the producer when the real keys are not known yet; the
    processor swaps them for generated keys before creating the subscription. A missing
    key is treated as temporary too.
    """
    if not key:
        return True
    return bool(_TEMPORARY_KEY_RE.match(key.strip()))


def temporary_key(index: int) -> str:
    """Return the placeholder key for the ``index``-th license of a payment (1-based)."""
    return f"L{index}"


def _license_key_exists(key: str) -> bool:
    from app.models.license import License

    return License.query.filter_by(license_key=key).first() is not None


def generate_unique_license_key(
    exists: Callable[[str], bool] | None = None,
    max_attempts: int = MAX_KEY_ATTEMPTS,
) -> str:
    """Generate a license key that is not yet present in the license store.

    Parameters
    ----------
    exists : Callable[[str], bool], optional
        Lookup used to detect collisions, by default a query on the ``licenses`` table.
    max_attempts : int, optional
        How many candidates to try before giving up, by default 50.

    Returns
    -------
    str
        The generated key.

    Raises
    ------
    KeyGenerationExhausted
        If every candidate collided with an existing key.
    """
    exists = exists or _license_key_exists

    for attempt in range(1, max_attempts + 1):
        key = build_license_key()
        try:
            if not exists(key):
                return key
        except SQLAlchemyError as e:
            logging.warning(
                "License store unavailable while checking key uniqueness, "
                "returning unchecked key: %s",
                e,
            )
            return key
        logging.debug("License key collision on attempt %s/%s", attempt, max_attempts)

    raise KeyGenerationExhausted(
        f"Could not generate a unique license key after {max_attempts} attempts"
    )
