# tests/unit/parsing/test_unit_structured_output.py — v1
"""Tests for parsing/structured_output.py."""

from __future__ import annotations

import json

import pytest

from galley.parsing.structured_output import (
    JsonNotFoundError,
    extract_json,
    make_validator,
    parse_structured,
    repair_prompt,
    validate_payload,
)
from galley.prompts.library import OutputSchema, render
from galley.prompts.templates import default_library

SCHEMA = OutputSchema(
    required={"hooks": "array", "tagline": "string"},
    optional={"elevator_pitch": "string"},
)


class TestExtractJson:
    def test_plain_object(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_code_fence_and_prose(self):
        text = 'Sure! Here it is:\n```json\n{"a": [1, 2]}\n```\nHope that helps.'
        assert extract_json(text) == {"a": [1, 2]}

    def test_braces_inside_strings(self):
        assert extract_json('x {"a": "}{"} y') == {"a": "}{"}

    def test_skips_undecodable_candidate(self):
        assert extract_json('{not json} then {"ok": true}') == {"ok": True}

    def test_array(self):
        assert extract_json("result: [1, 2, 3]") == [1, 2, 3]

    def test_nothing_found(self):
        with pytest.raises(JsonNotFoundError):
            extract_json("no json here")


class TestValidatePayload:
    def test_valid(self):
        assert validate_payload({"hooks": [], "tagline": "t"}, SCHEMA) == []

    def test_missing_and_wrong_type(self):
        failing = validate_payload({"hooks": "not a list"}, SCHEMA)
        assert failing == ["hooks", "tagline"]

    def test_optional_type_checked_when_present(self):
        payload = {"hooks": [], "tagline": "t", "elevator_pitch": 3}
        assert validate_payload(payload, SCHEMA) == ["elevator_pitch"]

    def test_wrong_root(self):
        assert validate_payload([1], SCHEMA) == ["$"]

    def test_array_root_reports_element_keys(self):
        schema = OutputSchema(root="array", required={"title": "string"})
        assert validate_payload([{"title": "a"}, {}], schema) == ["[1].title"]

    def test_bool_is_not_integer(self):
        schema = OutputSchema(required={"n": "integer"})
        assert validate_payload({"n": True}, schema) == ["n"]


class TestParseStructured:
    def test_success(self):
        outcome = parse_structured('{"hooks": ["a"], "tagline": "b"}', SCHEMA)
        assert outcome.ok
        assert outcome.payload["tagline"] == "b"

    def test_schema_violation_keeps_payload(self):
        outcome = parse_structured('{"hooks": ["a"]}', SCHEMA)
        assert not outcome.ok
        assert outcome.error.kind == "parse_error"
        assert outcome.failing_keys == ["tagline"]
        assert outcome.payload == {"hooks": ["a"]}

    def test_no_json(self):
        outcome = parse_structured("I cannot help with that.", SCHEMA)
        assert outcome.error.kind == "parse_error"
        assert outcome.payload is None

    def test_validator_adapter(self):
        validate = make_validator(SCHEMA)
        assert validate('{"hooks": [], "tagline": "x"}') == ({"hooks": [], "tagline": "x"}, None)
        parsed, error = validate("nope")
        assert parsed is None and error

    def test_render_then_parse_echo(self):
        template = default_library().resolve("marketing_hooks")
        prompt = render(template, {
            "title": "Tide", "genre": "literary", "word_count": 10,
            "manuscript_text": "Text.", "market_analysis": None,
        })
        echo = json.dumps({"hooks": [prompt[:20]], "tagline": "Tide"})
        outcome = parse_structured(echo, template.output_schema)
        assert outcome.ok
        assert outcome.payload["hooks"] == [prompt[:20]]


class TestRepairPrompt:
    def test_mentions_shape_and_error(self):
        text = repair_prompt(SCHEMA, "Schema violation on key(s): tagline")
        assert SCHEMA.describe() in text
        assert "tagline" in text
        assert "No prose" in text
