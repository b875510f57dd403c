# src/prompts/library.py — v1
"""Versioned prompt registry: (AgentKind, version) -> PromptTemplate.

Pure data. Exactly one version per agent kind is active; resolving without
a version returns it. Rendering substitutes ``{slot}`` placeholders and
fails on any unbound slot.
"""

from __future__ import annotations

import hashlib
import json
import logging
import string
from typing import Any, Iterable, Literal

from pydantic import BaseModel, Field

from galley.core.errors import TemplateSlotMissingError, UnknownTemplateError

logger = logging.getLogger(__name__)

JsonType = Literal["string", "number", "integer", "boolean", "array", "object", "any"]


class OutputSchema(BaseModel):
    """Declared structured output of an agent.

    ``required``/``optional`` map top-level keys to JSON types. For an
    ``array`` root, the keys apply to every object element.
    """

    root: Literal["object", "array"] = "object"
    required: dict[str, JsonType] = Field(default_factory=dict)
    optional: dict[str, JsonType] = Field(default_factory=dict)

    def describe(self) -> str:
        """Compact shape description used in instructions and repair prompts."""
        fields = [f'"{k}": {t}' for k, t in self.required.items()]
        fields += [f'"{k}"?: {t}' for k, t in self.optional.items()]
        body = "{" + ", ".join(fields) + "}"
        return f"[{body}, ...]" if self.root == "array" else body

    def instruction(self) -> str:
        """Answer-format instruction appended to every rendered prompt."""
        return (
            "Respond with a single JSON "
            f"{'array' if self.root == 'array' else 'object'} and nothing else. "
            f"Shape ('?' marks optional keys): {self.describe()}"
        )

    @property
    def keys(self) -> list[str]:
        return [*self.required, *self.optional]


class PromptTemplate(BaseModel):
    """One version of an agent prompt plus its generation parameters."""

    agent_kind: str
    version: str
    system: str
    template: str
    output_schema: OutputSchema
    model: str | None = None  # None = settings.llm_default_model
    temperature: float = 0.5
    max_output_tokens: int = 4096
    expected_input_tokens: int = 4000
    can_summarize: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.agent_kind, self.version)

    @property
    def slots(self) -> list[str]:
        return slot_names(self.template)

    @property
    def fingerprint(self) -> str:
        raw = json.dumps(self.model_dump(), sort_keys=True)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def slot_names(text: str) -> list[str]:
    """Return the named ``{slot}`` placeholders of a template, in order."""
    names: list[str] = []
    for _, field_name, _, _ in string.Formatter().parse(text):
        if field_name and field_name not in names:
            names.append(field_name)
    return names


def render(template: PromptTemplate, slots: dict[str, Any]) -> str:
    """Substitute slot values into a template.

    Raises:
        TemplateSlotMissingError: If any slot is unbound.
    """
    missing = [name for name in template.slots if name not in slots]
    if missing:
        raise TemplateSlotMissingError(
            f"{template.agent_kind}@{template.version}: unbound slots {missing}",
            slots=missing,
        )
    values = {name: _slot_text(slots[name]) for name in template.slots}
    return template.template.format_map(values)


def _slot_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, indent=2, default=str)


class PromptLibrary:
    """In-memory registry of prompt templates with one active version per agent."""

    def __init__(self, templates: Iterable[PromptTemplate] = ()) -> None:
        self._templates: dict[tuple[str, str], PromptTemplate] = {}
        self._active: dict[str, str] = {}
        for template in templates:
            self.register(template, activate=template.agent_kind not in self._active)

    def register(self, template: PromptTemplate, activate: bool = False) -> None:
        """Add a template version. Keys (agent_kind, version) are unique."""
        if template.key in self._templates:
            raise ValueError(f"Template already registered: {template.key}")
        self._templates[template.key] = template
        if activate or template.agent_kind not in self._active:
            self._active[template.agent_kind] = template.version
        logger.debug("Registered prompt %s@%s", template.agent_kind, template.version)

    def activate(self, agent_kind: str, version: str) -> None:
        if (agent_kind, version) not in self._templates:
            raise UnknownTemplateError(f"No template {agent_kind}@{version}")
        self._active[agent_kind] = version

    def resolve(self, agent_kind: str, version: str | None = None) -> PromptTemplate:
        """Return the requested version, or the active one when omitted."""
        if version is None:
            version = self._active.get(agent_kind)
            if version is None:
                raise UnknownTemplateError(f"No active template for {agent_kind!r}")
        template = self._templates.get((agent_kind, version))
        if template is None:
            raise UnknownTemplateError(f"No template {agent_kind}@{version}")
        return template

    def render(
        self, agent_kind: str, slots: dict[str, Any], version: str | None = None
    ) -> str:
        return render(self.resolve(agent_kind, version), slots)

    def active_versions(self) -> dict[str, str]:
        return dict(self._active)

    def templates(self) -> list[PromptTemplate]:
        return [self._templates[k] for k in sorted(self._templates)]

    def __contains__(self, agent_kind: object) -> bool:
        return agent_kind in self._active
