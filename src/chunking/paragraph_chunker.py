# src/chunking/paragraph_chunker.py — v1
"""Greedy paragraph packing.

Paragraphs (blank-line separated, separator kept with the paragraph
before it) are packed into chunks up to the size limit. A paragraph is
only cut when it alone exceeds the limit: first at sentence boundaries,
and as a last resort with a hard split marked ``fallback``.
"""

from __future__ import annotations

import re

from galley.chunking.base_chunker import BaseChunker, Piece

_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
_SENTENCE_END = re.compile(r"[.!?…][\"'”’)\]]*\s+")


def split_units(text: str, pattern: re.Pattern[str]) -> list[str]:
    """Cut after every match of ``pattern``; the match stays with the left unit."""
    units: list[str] = []
    pos = 0
    for match in pattern.finditer(text):
        if match.end() > pos:
            units.append(text[pos:match.end()])
            pos = match.end()
    if pos < len(text):
        units.append(text[pos:])
    return units


def _hard_split(text: str, max_chars: int) -> list[Piece]:
    return [
        Piece(text[i:i + max_chars], "fallback")
        for i in range(0, len(text), max_chars)
    ]


def _split_sentences(paragraph: str, max_chars: int) -> list[Piece]:
    """Pack sentences of an oversized paragraph; hard-split any oversized sentence."""
    pieces: list[Piece] = []
    current = ""
    for sentence in split_units(paragraph, _SENTENCE_END):
        if len(sentence) > max_chars:
            if current:
                pieces.append(Piece(current, "paragraph"))
                current = ""
            pieces.extend(_hard_split(sentence, max_chars))
            continue
        if current and len(current) + len(sentence) > max_chars:
            pieces.append(Piece(current, "paragraph"))
            current = ""
        current += sentence
    if current:
        pieces.append(Piece(current, "paragraph"))
    return pieces


def pack_paragraphs(text: str, max_chars: int, heading: str | None = None) -> list[Piece]:
    """Greedy paragraph packing of ``text``; ``heading`` labels the first piece."""
    pieces: list[Piece] = []
    current = ""
    for paragraph in split_units(text, _PARAGRAPH_BREAK):
        if len(paragraph) > max_chars:
            if current:
                pieces.append(Piece(current, "paragraph"))
                current = ""
            pieces.extend(_split_sentences(paragraph, max_chars))
            continue
        if current and len(current) + len(paragraph) > max_chars:
            pieces.append(Piece(current, "paragraph"))
            current = ""
        current += paragraph
    if current:
        pieces.append(Piece(current, "paragraph"))

    if heading is not None and pieces:
        pieces[0] = pieces[0]._replace(heading=heading)
    return pieces


class ParagraphChunker(BaseChunker):
    """Chunk text by packing whole paragraphs up to the token limit."""

    @property
    def strategy_name(self) -> str:
        return "paragraph"

    def split(self, text: str) -> list[Piece]:
        return pack_paragraphs(text, self.max_chars)
