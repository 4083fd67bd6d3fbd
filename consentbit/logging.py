"""Logging setup shared by the web app, the CLI commands and the RQ workers.

Every record carries a ``queue_id`` attribute so that the lines written while a job is
provisioned or refunded can be grepped together::

    with queue_context(job.queue_id):
        process_job(job, provider)

Outside such a block the attribute is ``-``.
"""

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from logging.config import dictConfig

NO_QUEUE_ID = "-"

LOG_FORMAT = (
    "%(levelname)-8s %(asctime)s %(name)s [%(queue_id)s] %(module)s:%(lineno)d - %(message)s"
)

# third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("werkzeug", "stripe", "urllib3")

_current_queue_id: ContextVar[str] = ContextVar("queue_id", default=NO_QUEUE_ID)


@contextmanager
def queue_context(queue_id: str | None):
    """Tag the log records emitted inside the block with ``queue_id``."""
    token = _current_queue_id.set(queue_id or NO_QUEUE_ID)
    try:
        yield
    finally:
        _current_queue_id.reset(token)


def current_queue_id() -> str:
    return _current_queue_id.get()


class QueueContextFilter(logging.Filter):
    """Copy the active queue id onto each record; never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "queue_id"):
            record.queue_id = current_queue_id()
        return True


def resolve_log_level(log_level=None, app=None) -> str:
    """Pick the log level name from the argument, the app config or ``LOG_LEVEL``.

    Unknown names fall back to ``INFO``.
    """
    if log_level is None and app is not None:
        log_level = app.config.get("LOG_LEVEL")
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    name = str(log_level).upper()
    return name if isinstance(logging.getLevelName(name), int) else "INFO"


def configure_logging(app=None, log_level=None) -> dict:
    """Configure the root logger and the worker loggers.

    Parameters
    ----------
    app : Flask, optional
        Application whose ``LOG_LEVEL`` setting is used.
    log_level : str, optional
        Explicit level name, overriding the app and the environment.

    Returns
    -------
    dict
        The ``dictConfig`` that was applied.
    """
    level = resolve_log_level(log_level, app)

    handler = {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": "queue",
        "filters": ["queue_context"],
        "stream": sys.stdout,
    }
    loggers = {
        name: {"handlers": ["console"], "level": "WARNING", "propagate": False}
        for name in QUIET_LOGGERS
    }
    loggers["rq.worker"] = {"handlers": ["console"], "level": level, "propagate": False}

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"queue_context": {"()": QueueContextFilter}},
        "formatters": {"queue": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"}},
        "handlers": {"console": handler},
        "root": {"handlers": ["console"], "level": level},
        "loggers": loggers,
    }
    dictConfig(logging_config)

    logging.debug(f"Logging configured with level {level}")
    return logging_config
