"""Tests for structured logging and the access-log middleware."""

import json
import logging
import sys

from fastapi import FastAPI
from fastapi.responses import StreamingResponse
from fastapi.testclient import TestClient

from symlight.middleware.logging import (
    JsonFormatter,
    LoggingMiddleware,
    TextFormatter,
    configure_logging,
    request_id_var,
)
from symlight.middleware.request_id import RequestIdMiddleware


def make_record(msg="Test message", level=logging.INFO, exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_log_format(self):
        """Test the JSON line has timestamp, level, message and logger."""
        data = json.loads(JsonFormatter().format(make_record()))
        assert data["level"] == "INFO"
        assert data["message"] == "Test message"
        assert data["logger"] == "test"
        assert data["timestamp"].endswith("Z")

    def test_includes_request_id_from_context(self):
        """Test the request ID is read from the context var."""
        token = request_id_var.set("test-request-id")
        try:
            data = json.loads(JsonFormatter().format(make_record()))
            assert data["request_id"] == "test-request-id"
        finally:
            request_id_var.reset(token)

    def test_includes_extra_fields(self):
        """Test known extra fields are copied into the JSON line."""
        record = make_record()
        record.method = "POST"
        record.path = "/explain"
        record.status_code = 200
        record.duration_ms = 12
        record.error_kind = "SERVICE_ERROR"

        data = json.loads(JsonFormatter().format(record))

        assert data["method"] == "POST"
        assert data["path"] == "/explain"
        assert data["status_code"] == 200
        assert data["duration_ms"] == 12
        assert data["error_kind"] == "SERVICE_ERROR"

    def test_includes_exception_info(self):
        """Test exception tracebacks are included."""
        try:
            raise ValueError("Test error")
        except ValueError:
            record = make_record("Error occurred", logging.ERROR, sys.exc_info())

        data = json.loads(JsonFormatter().format(record))
        assert "ValueError" in data["exception"]


class TestTextFormatter:
    """Tests for TextFormatter."""

    def test_basic_format(self):
        """Test the text formatter output."""
        output = TextFormatter().format(make_record())
        assert "INFO" in output
        assert "Test message" in output

    def test_includes_request_id_prefix(self):
        """Test the short request ID prefixes text lines."""
        token = request_id_var.set("abc12345-1234-1234-1234-123456789012")
        try:
            record = make_record()
            output = TextFormatter().format(record)
            assert output.startswith("[abc12345] ")
            assert record.msg == "Test message"
        finally:
            request_id_var.reset(token)


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_format(self):
        """Test JSON logging setup quiets noisy libraries."""
        configure_logging(level="DEBUG", format="json")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_text_format(self):
        """Test text logging setup."""
        configure_logging(level="INFO", format="text")
        assert isinstance(logging.getLogger().handlers[0].formatter, TextFormatter)


class TestLoggingMiddleware:
    """Tests for LoggingMiddleware."""

    def test_logs_request_with_timing(self, caplog):
        """Test each request is logged with status and duration."""
        app = FastAPI()

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        app.add_middleware(LoggingMiddleware)
        app.add_middleware(RequestIdMiddleware)

        with caplog.at_level(logging.INFO, logger="symlight.access"):
            response = TestClient(app).get("/ping")

        assert response.status_code == 200
        completed = [r for r in caplog.records if r.getMessage() == "Request completed"]
        assert len(completed) == 1
        assert completed[0].path == "/ping"
        assert completed[0].status_code == 200
        assert completed[0].request_id == response.headers["X-Request-ID"]

    def test_health_probes_logged_at_debug(self, caplog):
        """Test health probes are logged at debug level."""
        app = FastAPI()

        @app.get("/health/live")
        async def live():
            return {"status": "alive"}

        app.add_middleware(LoggingMiddleware)

        with caplog.at_level(logging.DEBUG, logger="symlight.access"):
            TestClient(app).get("/health/live")

        completed = [r for r in caplog.records if r.getMessage() == "Request completed"]
        assert [r.levelno for r in completed] == [logging.DEBUG]

    def test_marks_event_streams(self, caplog):
        """Test event-stream responses are flagged in the access log."""
        app = FastAPI()

        @app.get("/events")
        async def events():
            async def body():
                yield "data: [DONE]\n\n"

            return StreamingResponse(body(), media_type="text/event-stream")

        app.add_middleware(LoggingMiddleware)

        with caplog.at_level(logging.INFO, logger="symlight.access"):
            TestClient(app).get("/events")

        completed = [r for r in caplog.records if r.getMessage() == "Request completed"]
        assert completed[0].stream is True
