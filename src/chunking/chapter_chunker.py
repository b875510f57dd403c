# src/chunking/chapter_chunker.py — v1
"""Chapter-aligned chunking and manuscript structure detection.

Headings are whole lines matching a regex family over the common forms:
"Chapter 12", "CHAPTER XII: The Storm", "Chapter Twenty-One", "Part II",
"Prologue", "Epilogue", "Interlude", and bare numeral lines. Text before
the first heading becomes its own chunk. Chapters above the size limit
fall back to paragraph packing inside the chapter.
"""

from __future__ import annotations

import re

from galley.chunking.base_chunker import BaseChunker, Piece
from galley.chunking.paragraph_chunker import pack_paragraphs
from galley.core.models import ManuscriptStructure

_NUMBER_WORDS = (
    r"(?:one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve|"
    r"thirteen|fourteen|fifteen|sixteen|seventeen|eighteen|nineteen|"
    r"twenty|thirty|forty|fifty|sixty|seventy|eighty|ninety)"
    r"(?:[- ](?:one|two|three|four|five|six|seven|eight|nine))?"
)

HEADING_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        rf"^[ \t]*(?:chapter|part|book)[ \t]+(?:\d+|[ivxlcdm]+|{_NUMBER_WORDS})\b[^\n]*$",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(r"^[ \t]*(?:prologue|epilogue|interlude)\b[^\n]*$", re.IGNORECASE | re.MULTILINE),
    # Bare numerals on their own line: "7", "12.", "XIV"
    re.compile(r"^[ \t]*(?:\d{1,3}|[IVXLC]{1,7})\.?[ \t]*$", re.MULTILINE),
)

MAX_HEADING_CHARS = 80


def find_headings(text: str) -> list[tuple[int, str]]:
    """Return (char offset of the heading line, heading text), in order."""
    found: dict[int, str] = {}
    for pattern in HEADING_PATTERNS:
        for match in pattern.finditer(text):
            heading = match.group().strip()
            if heading and len(heading) <= MAX_HEADING_CHARS:
                found.setdefault(match.start(), heading)
    return sorted(found.items())


def describe_structure(text: str) -> ManuscriptStructure:
    """Chapter count and average chapter length in words."""
    headings = find_headings(text)
    total_words = len(text.split())
    if not headings:
        return ManuscriptStructure(total_words=total_words, chapter_count=0, avg_chapter_words=0)

    chapter_words = 0
    for i, (start, _) in enumerate(headings):
        end = headings[i + 1][0] if i + 1 < len(headings) else len(text)
        chapter_words += len(text[start:end].split())
    return ManuscriptStructure(
        total_words=total_words,
        chapter_count=len(headings),
        avg_chapter_words=round(chapter_words / len(headings)),
        headings=[h for _, h in headings],
    )


class ChapterChunker(BaseChunker):
    """Chunk text on chapter headings, one chunk per chapter."""

    @property
    def strategy_name(self) -> str:
        return "chapter"

    def split(self, text: str) -> list[Piece]:
        headings = find_headings(text)
        if not headings:
            return pack_paragraphs(text, self.max_chars)

        spans: list[tuple[int, int, str | None]] = []
        first = headings[0][0]
        if first > 0:
            if text[:first].strip():
                spans.append((0, first, None))
            else:
                # Leading whitespace joins the first chapter
                headings[0] = (0, headings[0][1])
        for i, (start, heading) in enumerate(headings):
            end = headings[i + 1][0] if i + 1 < len(headings) else len(text)
            spans.append((start, end, heading))

        pieces: list[Piece] = []
        for start, end, heading in spans:
            segment = text[start:end]
            if len(segment) <= self.max_chars:
                pieces.append(Piece(segment, "chapter", heading))
            else:
                pieces.extend(pack_paragraphs(segment, self.max_chars, heading))
        return pieces
