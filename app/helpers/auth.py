"""Authentication helpers for machine-to-machine endpoints."""

import hmac
import logging
from functools import wraps

from flask import current_app, request

CRON_SECRET_HEADER = "X-Cron-Secret"


def cron_secret_required(f):
    """Reject the request unless it carries the configured cron secret.

    Endpoints are disabled (403) when no ``CRON_SECRET`` is configured.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("CRON_SECRET")
        if not expected:
            logging.error("Cron trigger called but CRON_SECRET is not configured")
            return {"message": "Cron triggers are disabled"}, 403

        provided = request.headers.get(CRON_SECRET_HEADER, "")
        if not hmac.compare_digest(provided.encode(), expected.encode()):
            logging.warning(f"Rejected cron trigger from {request.remote_addr}")
            return {"message": "Unauthorized"}, 401
        return f(*args, **kwargs)

    return decorated_function
