"""Tests for logging setup, formatters and structured-logging helpers."""

import asyncio
import io
import json
import logging

import pytest

from core.errors import NotFoundError
from core.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LoggedClass,
    get_log_context,
    log_exception,
    log_with_context,
    logged_operation,
    set_log_context,
    setup_logging,
)


@pytest.fixture
def capture():
    """Attach a JSON handler to a dedicated logger and return (logger, stream)."""
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    logger = logging.getLogger("tests.structured")
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield logger, stream
    logger.handlers = []


def records(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def cleanup(self):
        yield
        logging.getLogger().handlers.clear()

    def test_console_only(self):
        stream = io.StringIO()
        setup_logging(stream=stream)

        logging.getLogger("spooled.test").info("hello")

        assert "hello" in stream.getvalue()
        assert len(logging.getLogger().handlers) == 1

    def test_adds_rotating_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "worker.log"
        setup_logging(log_file=log_file, stream=io.StringIO())

        logging.getLogger("spooled.test").warning("to file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().splitlines()[-1])
        assert entry["msg"] == "to file"
        assert entry["level"] == "WARNING"

    def test_suppresses_noisy_loggers(self):
        setup_logging(stream=io.StringIO())
        assert logging.getLogger("aiohttp").level == logging.WARNING

    def test_sets_worker_context(self):
        setup_logging(stream=io.StringIO(), worker_id="w-1")
        assert get_log_context()["worker_id"] == "w-1"


class TestFormatters:
    def test_json_includes_extras_and_context(self, capture):
        logger, stream = capture
        set_log_context(worker_id="w-9", queue_name="emails")

        log_with_context(logger, logging.INFO, "Job completed", job_id="job-1", duration_ms=12.5)

        entry = records(stream)[0]
        assert entry["msg"] == "Job completed"
        assert entry["worker_id"] == "w-9"
        assert entry["queue_name"] == "emails"
        assert entry["job_id"] == "job-1"
        assert entry["duration_ms"] == 12.5

    def test_console_format(self):
        formatter = ConsoleFormatter()
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "started", None, None)
        record.worker_id = "w-2"
        assert formatter.format(record).endswith("[w-2] - started")

    def test_context_is_per_task(self):
        async def job(name):
            set_log_context(job_id=name)
            await asyncio.sleep(0)
            return get_log_context()["job_id"]

        async def main():
            return await asyncio.gather(job("a"), job("b"))

        assert asyncio.run(main()) == ["a", "b"]


class TestLogException:
    def test_adds_classification(self, capture):
        logger, stream = capture
        error = NotFoundError("missing", status_code=404)

        log_exception(logger, error, "Lookup failed", include_traceback=False)

        entry = records(stream)[0]
        assert entry["error_category"] == "permanent"
        assert entry["error_kind"] == "not_found"
        assert entry["http_status"] == 404
        assert "missing" in entry["error_message"]
        assert "exception" not in entry

    def test_truncates_long_messages(self, capture):
        logger, stream = capture
        log_exception(logger, ValueError("x" * 1000), "Boom")
        entry = records(stream)[0]
        assert len(entry["error_message"]) == 503
        assert "exception" in entry


class Widget(LoggedClass):
    log_component = "widget"

    def __init__(self):
        self.queue_name = "q"
        super().__init__()

    @logged_operation(level=logging.INFO)
    async def work(self, fail=False):
        if fail:
            raise ValueError("nope")
        return 42


class TestLoggedClass:
    def test_logger_name_includes_component(self):
        assert Widget()._logger.name == f"{__name__}.widget"

    @pytest.mark.asyncio
    async def test_logged_operation(self, caplog):
        widget = Widget()
        with caplog.at_level(logging.INFO):
            assert await widget.work() == 42
            with pytest.raises(ValueError):
                await widget.work(fail=True)

        messages = [r.getMessage() for r in caplog.records]
        assert "Widget.work completed" in messages
        assert "Widget.work failed" in messages

    def test_log_adds_instance_context(self, caplog):
        widget = Widget()
        with caplog.at_level(logging.INFO):
            widget._log(logging.INFO, "hello")
        assert caplog.records[-1].queue_name == "q"
