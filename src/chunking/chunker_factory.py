# src/chunking/chunker_factory.py — v2
"""Factory for chunker instantiation by strategy name."""

from __future__ import annotations

from galley.chunking.base_chunker import BaseChunker
from galley.chunking.chapter_chunker import ChapterChunker
from galley.chunking.paragraph_chunker import ParagraphChunker
from galley.chunking.whole_chunker import WholeChunker
from galley.core.models import Chunk, ChunkStrategy

_STRATEGIES: dict[str, type[BaseChunker]] = {
    "whole": WholeChunker,
    "chapter": ChapterChunker,
    "paragraph": ParagraphChunker,
}


def create_chunker(strategy: ChunkStrategy, max_tokens_per_chunk: int = 24_000) -> BaseChunker:
    """Instantiate the chunker for a strategy.

    Raises:
        ValueError: If the strategy is unknown.
    """
    try:
        chunker_cls = _STRATEGIES[strategy]
    except KeyError:
        raise ValueError(
            f"Unknown chunking strategy: {strategy!r}. Available: {', '.join(_STRATEGIES)}"
        ) from None
    return chunker_cls(max_tokens_per_chunk=max_tokens_per_chunk)


def chunk(
    text: str,
    max_tokens_per_chunk: int,
    strategy: ChunkStrategy,
    manuscript_id: str = "",
) -> list[Chunk]:
    """Split a manuscript into ordered, size-bounded chunks."""
    return create_chunker(strategy, max_tokens_per_chunk).chunk(text, manuscript_id)
