# src/prompts/templates.py — v1
"""Built-in prompt templates, one active version per AgentKind.

Common slots bound by the agent runner: ``title``, ``genre``,
``word_count``, ``manuscript_text``, ``chunk_number``, ``chunk_count``.
Slots named after an agent kind receive that agent's payload as JSON.
The JSON answer instruction is appended from the output schema at call
time, so template text never contains literal braces.
"""

from __future__ import annotations

from galley.prompts.library import OutputSchema, PromptLibrary, PromptTemplate

_EDITOR_SYSTEM = (
    "You are a senior book editor at a professional publishing house. "
    "You give specific, actionable feedback grounded in the text."
)
_MARKET_SYSTEM = (
    "You are a publishing market analyst who knows current retail "
    "categories, reader expectations and comparable titles."
)
_MARKETING_SYSTEM = (
    "You are a book marketing strategist writing copy for retailer pages, "
    "advertising and social media."
)

_HEADER = "Title: {title}\nGenre: {genre}\nDeclared word count: {word_count}\n"


DEVELOPMENTAL_EDIT = PromptTemplate(
    agent_kind="developmental_edit",
    version="v1",
    system=_EDITOR_SYSTEM,
    template=(
        "Perform a developmental edit of the following manuscript excerpt.\n"
        + _HEADER
        + "Excerpt {chunk_number} of {chunk_count}:\n---\n{manuscript_text}\n---\n"
        "Assess structure, pacing, character arcs, point of view and stakes. "
        "Name concrete scenes when you point at a problem."
    ),
    output_schema=OutputSchema(
        required={
            "summary": "string",
            "strengths": "array",
            "issues": "array",
            "pacing": "string",
        },
        optional={"character_notes": "array"},
    ),
    temperature=0.4,
    max_output_tokens=4096,
    expected_input_tokens=24_000,
    can_summarize=True,
)

LINE_EDIT = PromptTemplate(
    agent_kind="line_edit",
    version="v1",
    system=_EDITOR_SYSTEM,
    template=(
        "Line edit the following passage for prose rhythm, clarity, word "
        "choice and voice consistency.\n"
        + _HEADER
        + "Excerpt {chunk_number} of {chunk_count}:\n---\n{manuscript_text}\n---\n"
        "Quote the original sentence and give the revised version for each "
        "suggestion."
    ),
    output_schema=OutputSchema(
        required={"overall": "string", "suggestions": "array"},
        optional={"voice_notes": "string"},
    ),
    temperature=0.3,
    expected_input_tokens=6_000,
)

COPY_EDIT = PromptTemplate(
    agent_kind="copy_edit",
    version="v1",
    system=(
        "You are a meticulous copy editor applying Chicago Manual of Style "
        "conventions."
    ),
    template=(
        "Copy edit the following passage. Flag spelling, grammar, "
        "punctuation and consistency errors.\n"
        + _HEADER
        + "Excerpt {chunk_number} of {chunk_count}:\n---\n{manuscript_text}\n---"
    ),
    output_schema=OutputSchema(
        required={"error_count": "integer", "corrections": "array"},
        optional={"style_notes": "array"},
    ),
    temperature=0.0,
    expected_input_tokens=6_000,
)

MARKET_ANALYSIS = PromptTemplate(
    agent_kind="market_analysis",
    version="v1",
    system=_MARKET_SYSTEM,
    template=(
        "Analyse the commercial market for this book.\n"
        + _HEADER
        + "Opening pages:\n---\n{manuscript_text}\n---\n"
        "Describe the target audience, the size and health of the market, "
        "relevant trends and where this book should be positioned."
    ),
    output_schema=OutputSchema(
        required={
            "target_audience": "string",
            "market_size": "string",
            "trends": "array",
            "positioning": "string",
        },
        optional={"competitive_landscape": "string"},
    ),
    temperature=0.5,
    expected_input_tokens=4_000,
)

COMP_TITLES = PromptTemplate(
    agent_kind="comp_titles",
    version="v1",
    system=_MARKET_SYSTEM,
    template=(
        "Identify comparable titles published in the last five years.\n"
        + _HEADER
        + "Opening pages:\n---\n{manuscript_text}\n---\n"
        "Market analysis, if available:\n{market_analysis}\n"
        "For each comparable give title, author, year and why it compares."
    ),
    output_schema=OutputSchema(
        required={"comparables": "array", "rationale": "string"},
    ),
    temperature=0.5,
    expected_input_tokens=4_000,
)

MARKETING_HOOKS = PromptTemplate(
    agent_kind="marketing_hooks",
    version="v1",
    system=_MARKETING_SYSTEM,
    template=(
        "Write marketing hooks for this book.\n"
        + _HEADER
        + "Market analysis:\n{market_analysis}\n"
        "Opening pages:\n---\n{manuscript_text}\n---\n"
        "Give short hooks suitable for ads and social posts, plus one tagline."
    ),
    output_schema=OutputSchema(
        required={"hooks": "array", "tagline": "string"},
        optional={"elevator_pitch": "string"},
    ),
    temperature=0.8,
    expected_input_tokens=3_000,
)

COVER_BRIEF = PromptTemplate(
    agent_kind="cover_brief",
    version="v1",
    system=(
        "You are an art director briefing a cover designer for a commercially "
        "published book."
    ),
    template=(
        "Write a cover design brief.\n"
        + _HEADER
        + "Opening pages:\n---\n{manuscript_text}\n---\n"
        "Market analysis, if available:\n{market_analysis}\n"
        "Cover mood, key imagery, typography and palette must match genre "
        "conventions."
    ),
    output_schema=OutputSchema(
        required={
            "mood": "string",
            "imagery": "array",
            "typography": "string",
            "color_palette": "array",
        },
    ),
    temperature=0.7,
    expected_input_tokens=3_000,
)

BACK_MATTER = PromptTemplate(
    agent_kind="back_matter",
    version="v1",
    system=_MARKETING_SYSTEM,
    template=(
        "Write the back cover copy and retailer keywords for this book.\n"
        + _HEADER
        + "Opening pages:\n---\n{manuscript_text}\n---"
    ),
    output_schema=OutputSchema(
        required={"blurb": "string", "keywords": "array"},
        optional={"categories": "array"},
    ),
    temperature=0.7,
    expected_input_tokens=3_000,
)

AUTHOR_BIO = PromptTemplate(
    agent_kind="author_bio",
    version="v1",
    system=_MARKETING_SYSTEM,
    template=(
        "Draft an author biography in the third person that suits the "
        "voice and genre of this book. Use placeholders for facts you do "
        "not know.\n"
        + _HEADER
        + "Opening pages:\n---\n{manuscript_text}\n---"
    ),
    output_schema=OutputSchema(
        required={"short_bio": "string", "long_bio": "string"},
    ),
    temperature=0.7,
    max_output_tokens=1024,
    expected_input_tokens=2_000,
)

POSITIONING_REPORT = PromptTemplate(
    agent_kind="positioning_report",
    version="v1",
    system=_MARKET_SYSTEM,
    template=(
        "Combine the market analysis and the comparable titles into a "
        "positioning report.\n"
        + _HEADER
        + "Market analysis:\n{market_analysis}\n"
        "Comparable titles:\n{comp_titles}\n"
    ),
    output_schema=OutputSchema(
        required={
            "positioning_statement": "string",
            "differentiators": "array",
            "recommended_categories": "array",
        },
        optional={"price_point": "string"},
    ),
    temperature=0.4,
    expected_input_tokens=2_000,
)

DEFAULT_TEMPLATES: tuple[PromptTemplate, ...] = (
    DEVELOPMENTAL_EDIT,
    LINE_EDIT,
    COPY_EDIT,
    MARKET_ANALYSIS,
    COMP_TITLES,
    MARKETING_HOOKS,
    COVER_BRIEF,
    BACK_MATTER,
    AUTHOR_BIO,
    POSITIONING_REPORT,
)


def default_library() -> PromptLibrary:
    """Build a fresh library holding every built-in template as active."""
    return PromptLibrary(DEFAULT_TEMPLATES)
