"""
Tests for logging configuration
"""

import json
import logging

from grazesim.utils.logging_config import (
    HumanReadableFormatter,
    JSONFormatter,
    get_request_id,
    request_id_context,
    set_request_id,
)


def _record(**extra):
    record = logging.LogRecord("grazesim.test", logging.WARNING, __file__, 1, "Flow failed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extras():
    """Test that extra fields and the request ID reach JSON output"""
    token = request_id_context.set(None)
    try:
        set_request_id("req-1")
        payload = json.loads(JSONFormatter().format(_record(flow="big_grazing", count=3)))
    finally:
        request_id_context.reset(token)

    assert payload["level"] == "WARNING"
    assert payload["message"] == "Flow failed"
    assert payload["request_id"] == "req-1"
    assert payload["flow"] == "big_grazing"
    assert payload["count"] == 3


def test_human_readable_formatter():
    """Test request ID tagging in plain output"""
    token = request_id_context.set(None)
    try:
        line = HumanReadableFormatter().format(_record(request_id="req-2"))
    finally:
        request_id_context.reset(token)

    assert "[request_id=req-2]" in line
    assert line.endswith("Flow failed")


def test_set_request_id_generates_uuid():
    """Test a fresh ID when none is supplied"""
    token = request_id_context.set(None)
    try:
        request_id = set_request_id()
        assert get_request_id() == request_id
        assert len(request_id) == 36
    finally:
        request_id_context.reset(token)
