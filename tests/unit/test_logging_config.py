"""Unit tests for log correlation and JSON formatting."""

import json
import logging

from codegate.logging_config import ContextFilter, JsonFormatter, conversation_id_var, request_id_var


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("codegate.test", logging.INFO, __file__, 1, "Gate passed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelation:

    def test_context_ids_injected(self):
        req_token = request_id_var.set("req-1")
        conv_token = conversation_id_var.set("conv-1")
        try:
            record = _record()
            ContextFilter().filter(record)
        finally:
            request_id_var.reset(req_token)
            conversation_id_var.reset(conv_token)

        assert record.request_id == "req-1"
        assert record.conversation_id == "conv-1"

    def test_defaults_outside_context(self):
        record = _record()
        ContextFilter().filter(record)
        assert record.request_id == "-"
        assert record.conversation_id == "-"


class TestJsonFormatter:

    def test_extra_fields_serialized(self):
        record = _record(artifact_id="abc-0", unlock_level=1, request_id="req-1", conversation_id="-")
        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "Gate passed"
        assert payload["level"] == "INFO"
        assert payload["artifact_id"] == "abc-0"
        assert payload["unlock_level"] == 1
        assert payload["request_id"] == "req-1"
        assert "conversation_id" not in payload

    def test_unserializable_extra_stringified(self):
        record = _record(blob=object())
        payload = json.loads(JsonFormatter().format(record))
        assert payload["blob"].startswith("<object object")
