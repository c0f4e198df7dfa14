"""
Unit tests for logging and tracing setup.
"""

import json
import logging

import pytest
from opentelemetry.sdk.trace import TracerProvider

from placement_realtime.core.config import Settings
from placement_realtime.observability import (
    TEXT_LOG_FORMAT,
    StructuredJsonFormatter,
    configure_logging,
    setup_tracing,
)


@pytest.fixture
def restore_root_logger():
    """Put the root logger back after configure_logging replaces its handlers."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(**extra) -> logging.LogRecord:
    return logging.makeLogRecord({
        "name": "placement_realtime.realtime.manager",
        "levelname": "INFO",
        "levelno": logging.INFO,
        "msg": "Channel active",
        **extra,
    })


class TestStructuredJsonFormatter:
    """Tests for StructuredJsonFormatter."""

    def test_includes_standard_and_extra_fields(self):
        """Test output carries level, logger, service and extra fields."""
        formatter = StructuredJsonFormatter(service_name="placement-realtime-test")

        data = json.loads(formatter.format(
            make_record(channel="students:*", table="students", error="timeout"),
        ))

        assert data["message"] == "Channel active"
        assert data["level"] == "INFO"
        assert data["logger"] == "placement_realtime.realtime.manager"
        assert data["service"] == "placement-realtime-test"
        assert data["realtime"] == {"channel": "students:*", "table": "students"}
        assert data["error"] == "timeout"
        assert "channel" not in data
        assert "timestamp" in data
        assert "trace_id" not in data

    def test_omits_realtime_group_without_channel_context(self):
        """Test records without channel fields carry no realtime object."""
        formatter = StructuredJsonFormatter(service_name="svc")

        data = json.loads(formatter.format(make_record(app_name="Placement Realtime")))

        assert "realtime" not in data
        assert data["app_name"] == "Placement Realtime"
        assert "taskName" not in data

    def test_includes_trace_context_inside_span(self):
        """Test trace and span IDs are added while a span is recording."""
        formatter = StructuredJsonFormatter(service_name="svc")
        tracer = TracerProvider().get_tracer(__name__)

        with tracer.start_as_current_span("realtime.dispatch"):
            data = json.loads(formatter.format(make_record()))

        assert len(data["trace_id"]) == 32
        assert len(data["span_id"]) == 16


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_output(self, restore_root_logger):
        """Test JSON mode installs the structured formatter."""
        handler = configure_logging(json_output=True, level="DEBUG", service_name="svc")

        assert restore_root_logger.handlers == [handler]
        assert restore_root_logger.level == logging.DEBUG
        assert isinstance(handler.formatter, StructuredJsonFormatter)
        assert handler.formatter.service_name == "svc"

    def test_text_output(self, restore_root_logger):
        """Test text mode uses the plain format."""
        handler = configure_logging(json_output=False, level="WARNING")

        assert restore_root_logger.level == logging.WARNING
        assert not isinstance(handler.formatter, StructuredJsonFormatter)
        assert handler.formatter._fmt == TEXT_LOG_FORMAT


class TestSetupTracing:
    """Tests for setup_tracing."""

    def test_disabled_returns_none(self):
        """Test nothing is installed when tracing is off."""
        assert setup_tracing(Settings(OTEL_ENABLED=False, _env_file=None)) is None
