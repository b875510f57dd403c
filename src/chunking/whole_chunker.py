# src/chunking/whole_chunker.py — v1
"""Single-chunk strategy for templates that can summarize a whole manuscript."""

from __future__ import annotations

from galley.chunking.base_chunker import BaseChunker, Piece


class WholeChunker(BaseChunker):
    """Emit the whole text as one chunk regardless of size."""

    @property
    def strategy_name(self) -> str:
        return "whole"

    def split(self, text: str) -> list[Piece]:
        return [Piece(text, "whole")]
