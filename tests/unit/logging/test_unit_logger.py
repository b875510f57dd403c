# tests/unit/logging/test_unit_logger.py — v2
"""Tests for logging/logger.py — formatters and setup."""

from __future__ import annotations

import json
import logging
import sys

from galley.logging.context import clear_context, set_agent_context, set_report_context
from galley.logging.logger import JsonFormatter, TextFormatter, chunk_ordinal, setup_logging


def _record(msg: str = "Hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="galley.test", level=logging.INFO, pathname="", lineno=0,
        msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Hello"
        assert "timestamp" in parsed
        assert "report_id" not in parsed and "agent_kind" not in parsed

    def test_run_fields_are_top_level(self):
        set_report_context("r1", "m1")
        set_agent_context("line_edit", step="chunk_002")
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["report_id"] == "r1"
        assert parsed["manuscript_id"] == "m1"
        assert parsed["agent_kind"] == "line_edit"
        assert parsed["chunk"] == 1
        assert parsed["step"] == "chunk_002"

    def test_repair_step_has_no_chunk(self):
        set_agent_context("copy_edit", step="repair")
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["step"] == "repair"
        assert "chunk" not in parsed

    def test_call_fields(self):
        call = {"call_id": "c1", "model": "m", "attempt": 2, "price": 0.0123}
        parsed = json.loads(JsonFormatter().format(_record(call=call)))
        assert parsed["call"] == call

    def test_extra_data(self):
        parsed = json.loads(JsonFormatter().format(_record(data={"calls": 3})))
        assert parsed["data"] == {"calls": 3}

    def test_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()
        parsed = json.loads(JsonFormatter().format(record))
        assert "ValueError: boom" in parsed["exception"]


class TestTextFormatter:
    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        output = TextFormatter().format(_record("Hello text"))
        assert "Hello text" in output
        assert "INFO" in output

    def test_includes_short_report_id_and_agent(self):
        set_report_context("abcdef1234567890", "m1")
        set_agent_context("copy_edit")
        output = TextFormatter().format(_record())
        assert "<abcdef12>" in output
        assert "[copy_edit]" in output

    def test_appends_call_price(self):
        output = TextFormatter().format(_record(call={"price": 0.5}))
        assert output.endswith("$0.500000")


class TestChunkOrdinal:
    def test_labels(self):
        assert chunk_ordinal("chunk_001") == 0
        assert chunk_ordinal("chunk_012.repair") == 11
        assert chunk_ordinal("repair") is None
        assert chunk_ordinal(None) is None


class TestSetupLogging:
    def teardown_method(self):
        logging.getLogger("galley").handlers.clear()

    def test_setup_json(self):
        setup_logging(level="DEBUG", log_format="json")
        root = logging.getLogger("galley")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_setup_text_is_idempotent(self):
        setup_logging(level="INFO", log_format="text")
        setup_logging(level="INFO", log_format="text")
        root = logging.getLogger("galley")
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, TextFormatter)

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "galley.log"
        setup_logging(log_file=str(log_file))
        logging.getLogger("galley.pipeline.runner").warning("written")
        for handler in logging.getLogger("galley").handlers:
            handler.flush()
        assert "written" in log_file.read_text(encoding="utf-8")
