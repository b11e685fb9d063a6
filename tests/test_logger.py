import json
import logging

import pytest

from utils.logger import JsonFormatter, get_logger

pytestmark = pytest.mark.unit


def _record(extra_fields=None):
    record = logging.LogRecord("research.test", logging.INFO, __file__, 10, "Agent started", None, None)
    if extra_fields is not None:
        record.extra_fields = extra_fields
    return record


def test_correlation_fields_are_promoted():
    payload = json.loads(
        JsonFormatter().format(_record({"session_id": "s1", "role": "analyst", "duration_ms": 12}))
    )

    assert payload["message"] == "Agent started"
    assert payload["level"] == "INFO"
    assert payload["session_id"] == "s1"
    assert payload["role"] == "analyst"
    assert payload["fields"] == {"duration_ms": 12}
    assert payload["timestamp"].endswith("Z")


def test_records_without_extra_fields_still_format():
    payload = json.loads(JsonFormatter().format(_record()))
    assert "fields" not in payload


def test_loggers_share_the_package_namespace():
    assert get_logger("orchestrator.pipeline").name == "research.orchestrator.pipeline"
