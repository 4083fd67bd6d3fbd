"""Detect the hosting platform of a customer site."""

import logging

import requests
from flask import current_app

PLATFORM_WEBFLOW = "webflow"
PLATFORM_FRAMER = "framer"
PLATFORM_UNKNOWN = "unknown"

MAX_BODY_BYTES = 200_000

_MARKERS = {
    PLATFORM_WEBFLOW: ("data-wf-site", "data-wf-page", "webflow.js", "website-files.com"),
    PLATFORM_FRAMER: ("framerusercontent.com", "framer.com/m/", "data-framer"),
}


def _read_head(response: requests.Response, limit: int = MAX_BODY_BYTES) -> str:
    """Read at most ``limit`` bytes of a streamed response body as lower-case text."""
    received = bytearray()
    for chunk in response.iter_content(chunk_size=16_384):
        received.extend(chunk)
        if len(received) >= limit:
            break
    return bytes(received[:limit]).decode(response.encoding or "utf-8", errors="ignore").lower()


def detect_platform(domain: str, timeout: float | None = None) -> str:
    """Guess which site builder serves ``domain``.

    Only the first ``MAX_BODY_BYTES`` of the page are downloaded; the builders put
    their markers in the document head.

    Parameters
    ----------
    domain : str
        The bare site domain.
    timeout : float, optional
        Request timeout in seconds, by default ``PLATFORM_DETECTION_TIMEOUT``.

    Returns
    -------
    str
        ``webflow``, ``framer`` or ``unknown``. Network errors yield ``unknown``.
    """
    if timeout is None:
        timeout = current_app.config.get("PLATFORM_DETECTION_TIMEOUT", 5)

    try:
        with requests.get(f"https://{domain}", timeout=timeout, stream=True) as response:
            generator = response.headers.get("x-powered-by", "").lower()
            body = _read_head(response)
    except requests.RequestException as e:
        logging.info(f"Platform detection for {domain} failed: {e}")
        return PLATFORM_UNKNOWN

    for platform, markers in _MARKERS.items():
        if platform in generator or any(marker in body for marker in markers):
            return platform
    return PLATFORM_UNKNOWN
