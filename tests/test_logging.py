"""Logging setup: formatter choice, JSON extras, request/case tagging."""

import json
import logging

import pytest
from flask import Flask, g

from docket.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    RequestContextFilter,
    configure_logging,
)


def _record(msg="Phase 1 completed", **extra):
    record = logging.LogRecord("docket.services.phase_engine", logging.INFO,
                               __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture()
def restore_logging(app):
    yield
    configure_logging(app)


class TestFormatters:
    def test_json_carries_case_extras(self):
        line = JSONFormatter().format(_record(case_id=42, activity_type="PHASE_COMPLETED"))
        data = json.loads(line)
        assert data["message"] == "Phase 1 completed"
        assert data["case_id"] == 42
        assert data["activity_type"] == "PHASE_COMPLETED"
        assert "request_id" not in data

    def test_readable_tags_case(self):
        line = ReadableFormatter().format(_record(case_id=42, duration_ms=12.4))
        assert "[case 42]" in line
        assert line.endswith("[12ms]")


class TestRequestContextFilter:
    def test_fills_case_and_request_id(self, app):
        with app.test_request_context("/api/v1/cases/9/timeline"):
            g.request_id = "abc123"
            record = _record()
            assert RequestContextFilter().filter(record)
        assert record.case_id == 9
        assert record.request_id == "abc123"

    def test_explicit_extra_wins(self, app):
        with app.test_request_context("/api/v1/cases/9/timeline"):
            record = _record(case_id=3)
            RequestContextFilter().filter(record)
        assert record.case_id == 3

    def test_outside_request_untouched(self):
        record = _record()
        assert RequestContextFilter().filter(record)
        assert getattr(record, "case_id", None) is None


class TestConfigureLogging:
    @pytest.mark.parametrize("overrides,formatter", [
        ({"TESTING": True}, ReadableFormatter),
        ({"DEBUG": False, "TESTING": False}, JSONFormatter),
        ({"TESTING": True, "LOG_FORMAT": "json"}, JSONFormatter),
    ])
    def test_format_selection(self, restore_logging, overrides, formatter):
        flask_app = Flask("logging-test")
        flask_app.config.update(overrides)
        configure_logging(flask_app)
        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, formatter)

    def test_level_from_config(self, restore_logging):
        flask_app = Flask("logging-test")
        flask_app.config.update({"TESTING": True, "LOG_LEVEL": "warning"})
        configure_logging(flask_app)
        assert logging.getLogger().level == logging.WARNING
