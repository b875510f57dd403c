# src/parsing/structured_output.py — v1
"""Extract and validate JSON payloads from model text.

The first balanced JSON object or array that decodes is taken; prose and
code fences around it are ignored. Validation checks the declared root
type, required keys and key types. Failures are returned as values.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, Field

from galley.core.errors import ErrorDescriptor
from galley.prompts.library import OutputSchema

logger = logging.getLogger(__name__)

_OPENERS = {"{": "}", "[": "]"}


class JsonNotFoundError(ValueError):
    """No decodable JSON object or array in the text."""


class ParseOutcome(BaseModel):
    payload: Any = None
    error: ErrorDescriptor | None = None
    failing_keys: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


def extract_json(text: str) -> Any:
    """Return the first balanced JSON object/array in ``text`` that decodes.

    Raises:
        JsonNotFoundError: If no candidate decodes.
    """
    start = _next_opener(text, 0)
    while start != -1:
        end = _balanced_end(text, start)
        if end != -1:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                pass
        start = _next_opener(text, start + 1)
    raise JsonNotFoundError("No JSON object or array found in response")


def _next_opener(text: str, pos: int) -> int:
    for i in range(pos, len(text)):
        if text[i] in _OPENERS:
            return i
    return -1


def _balanced_end(text: str, start: int) -> int:
    """Index of the bracket closing the one at ``start``, or -1."""
    stack = [_OPENERS[text[start]]]
    in_string = False
    escaped = False
    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in ("}", "]"):
            if ch != stack.pop():
                return -1
            if not stack:
                return i
    return -1


def _type_ok(value: Any, expected: str) -> bool:
    if expected == "any":
        return True
    if expected == "string":
        return isinstance(value, str)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "array":
        return isinstance(value, list)
    if expected == "object":
        return isinstance(value, dict)
    return False


def _check_object(obj: Any, schema: OutputSchema, path: str) -> list[str]:
    if not isinstance(obj, dict):
        return [path or "$"]
    failing: list[str] = []
    for key, expected in schema.required.items():
        if key not in obj or not _type_ok(obj[key], expected):
            failing.append(f"{path}{key}")
    for key, expected in schema.optional.items():
        if obj.get(key) is not None and not _type_ok(obj[key], expected):
            failing.append(f"{path}{key}")
    return failing


def validate_payload(payload: Any, schema: OutputSchema) -> list[str]:
    """Return the failing keys (empty when valid). ``$`` marks the root."""
    if schema.root == "array":
        if not isinstance(payload, list):
            return ["$"]
        failing: list[str] = []
        for i, item in enumerate(payload):
            failing.extend(_check_object(item, schema, f"[{i}]."))
        return failing
    return _check_object(payload, schema, "")


def parse_structured(text: str, schema: OutputSchema) -> ParseOutcome:
    """Extract and validate; never raises."""
    try:
        payload = extract_json(text)
    except JsonNotFoundError as e:
        return ParseOutcome(error=ErrorDescriptor(kind="parse_error", message=str(e)))

    failing = validate_payload(payload, schema)
    if failing:
        message = f"Schema violation on key(s): {', '.join(failing)}"
        return ParseOutcome(
            payload=payload,
            error=ErrorDescriptor(kind="parse_error", message=message, details={"keys": failing}),
            failing_keys=failing,
        )
    return ParseOutcome(payload=payload)


def make_validator(schema: OutputSchema):
    """Adapt ``parse_structured`` to the gateway's validate callback."""

    def validate(text: str) -> tuple[Any, str | None]:
        outcome = parse_structured(text, schema)
        if outcome.ok:
            return outcome.payload, None
        return None, outcome.error.message if outcome.error else "parse_error"

    return validate


def repair_prompt(schema: OutputSchema, error: str | None = None) -> str:
    """Fixed reprompt asking for JSON only."""
    reason = f"Your previous reply could not be used ({error}). " if error else ""
    return (
        f"{reason}Return only valid JSON matching {schema.describe()}. "
        "No prose, no code fences."
    )
