"""Unit tests for the logging setup and the per-job log context."""

import logging

from consentbit.logging import (
    NO_QUEUE_ID,
    QueueContextFilter,
    configure_logging,
    current_queue_id,
    queue_context,
    resolve_log_level,
)
from consentbit.queue.processor import run_processing_cycle
from fakes import NOW


class RecordingHandler(logging.Handler):
    """Keep the records that reach it, tagged like the console handler."""

    def __init__(self):
        super().__init__()
        self.addFilter(QueueContextFilter())
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_queue_context_is_restored():
    """The queue id is only set inside the block, nested blocks included."""
    assert current_queue_id() == NO_QUEUE_ID

    with queue_context("q-outer"):
        with queue_context("q-inner"):
            assert current_queue_id() == "q-inner"
        assert current_queue_id() == "q-outer"

    assert current_queue_id() == NO_QUEUE_ID


def test_filter_keeps_an_explicit_queue_id():
    """A record logged with ``extra={"queue_id": ...}`` is left alone."""
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
    record.queue_id = "q-explicit"

    with queue_context("q-active"):
        assert QueueContextFilter().filter(record) is True

    assert record.queue_id == "q-explicit"


def test_resolve_log_level(app, monkeypatch):
    """Unknown level names fall back to INFO; explicit levels win over the config."""
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    app.config["LOG_LEVEL"] = None

    assert resolve_log_level() == "INFO"
    assert resolve_log_level("debug", app) == "DEBUG"

    app.config["LOG_LEVEL"] = "warning"
    assert resolve_log_level(app=app) == "WARNING"


def test_configure_logging_tags_the_console_handler(app):
    """The console handler carries the queue context filter and quiets chatty libraries."""
    config = configure_logging(app, log_level="DEBUG")

    assert config["handlers"]["console"]["filters"] == ["queue_context"]
    assert "%(queue_id)s" in config["formatters"]["queue"]["format"]
    assert logging.getLogger("stripe").level == logging.WARNING
    assert logging.getLogger().level == logging.DEBUG


def test_processing_logs_carry_the_job_id(app, provider, make_job, caplog):
    """Lines written while a job is provisioned name that job; the summary does not."""
    caplog.set_level(logging.INFO)
    handler = RecordingHandler()
    logging.getLogger().addHandler(handler)
    queue_id = make_job().queue_id
    try:
        run_processing_cycle(provider=provider, now=NOW)
    finally:
        logging.getLogger().removeHandler(handler)

    created = [r for r in handler.records if "created subscription" in r.getMessage()]
    assert [r.queue_id for r in created] == [queue_id]
    summary = [r for r in handler.records if r.getMessage().startswith("Processing cycle done")]
    assert [r.queue_id for r in summary] == [NO_QUEUE_ID]
