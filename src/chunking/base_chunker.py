# src/chunking/base_chunker.py — v2
"""Abstract chunker interface and Chunk assembly.

Chunkers only decide where to cut: they return contiguous pieces whose
concatenation is exactly the input. Offsets, ordinals and token
estimates are derived here, so every strategy shares the coverage
invariant.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import NamedTuple

from galley.core.models import Chunk, ChunkBoundary

CHARS_PER_TOKEN = 4


class Piece(NamedTuple):
    content: str
    boundary: ChunkBoundary
    heading: str | None = None


def estimate_tokens(text: str) -> int:
    """Approximate token count (~4 chars per token)."""
    return -(-len(text) // CHARS_PER_TOKEN)


def build_chunks(pieces: list[Piece], manuscript_id: str = "") -> list[Chunk]:
    """Number pieces and compute their char and utf-8 byte ranges."""
    chunks: list[Chunk] = []
    char_offset = 0
    byte_offset = 0
    for ordinal, piece in enumerate(p for p in pieces if p.content):
        char_end = char_offset + len(piece.content)
        byte_end = byte_offset + len(piece.content.encode("utf-8"))
        chunks.append(
            Chunk(
                manuscript_id=manuscript_id,
                ordinal=ordinal,
                byte_start=byte_offset,
                byte_end=byte_end,
                char_start=char_offset,
                char_end=char_end,
                token_count_est=estimate_tokens(piece.content),
                boundary=piece.boundary,
                heading=piece.heading,
                content=piece.content,
            )
        )
        char_offset, byte_offset = char_end, byte_end
    return chunks


class BaseChunker(ABC):
    """Unified interface for chunking strategies. CPU-only, never suspends."""

    def __init__(self, max_tokens_per_chunk: int = 24_000) -> None:
        if max_tokens_per_chunk < 1:
            raise ValueError("max_tokens_per_chunk must be >= 1")
        self.max_tokens = max_tokens_per_chunk

    @property
    def max_chars(self) -> int:
        return self.max_tokens * CHARS_PER_TOKEN

    @property
    @abstractmethod
    def strategy_name(self) -> str:
        """Strategy identifier (whole, chapter, paragraph)."""

    @abstractmethod
    def split(self, text: str) -> list[Piece]:
        """Cut non-empty text into contiguous pieces."""

    def chunk(self, text: str, manuscript_id: str = "") -> list[Chunk]:
        """Split text into ordered chunks covering it exactly."""
        if not text:
            return []
        return build_chunks(self.split(text), manuscript_id)
