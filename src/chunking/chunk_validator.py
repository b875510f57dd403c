# src/chunking/chunk_validator.py — v2
"""Chunk validation ensuring integrity constraints.

Validates:
- Ordinals are 0..n-1 in order
- Ranges are contiguous, non-overlapping and cover the text
- Concatenated contents reproduce the text byte for byte
- Chunk size within the token limit (warning only: whole chunks and
  single-piece fallbacks may exceed it)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from galley.core.models import Chunk


@dataclass
class ValidationResult:
    """Result of chunk validation."""

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def validate_chunks(
    text: str,
    chunks: list[Chunk],
    max_tokens_per_chunk: int | None = None,
) -> ValidationResult:
    """Validate a chunk list against the text it was cut from."""
    result = ValidationResult()

    if not chunks:
        if text:
            result.valid = False
            result.errors.append("Empty chunk list for non-empty text")
        return result

    data = text.encode("utf-8")
    byte_pos = 0
    char_pos = 0
    for i, chunk in enumerate(chunks):
        if chunk.ordinal != i:
            result.valid = False
            result.errors.append(f"Chunk at index {i} has ordinal {chunk.ordinal}")
        if chunk.byte_start != byte_pos or chunk.char_start != char_pos:
            result.valid = False
            result.errors.append(
                f"Chunk {chunk.ordinal} starts at byte {chunk.byte_start}, expected {byte_pos}"
            )
        if data[chunk.byte_start:chunk.byte_end] != chunk.content.encode("utf-8"):
            result.valid = False
            result.errors.append(f"Chunk {chunk.ordinal} content does not match its byte range")
        if max_tokens_per_chunk and chunk.token_count_est > max_tokens_per_chunk:
            result.warnings.append(
                f"Chunk {chunk.ordinal} exceeds max size: "
                f"{chunk.token_count_est} > {max_tokens_per_chunk} tokens"
            )
        byte_pos, char_pos = chunk.byte_end, chunk.char_end

    if byte_pos != len(data):
        result.valid = False
        result.errors.append(f"Chunks cover {byte_pos} of {len(data)} bytes")
    if "".join(c.content for c in chunks) != text:
        result.valid = False
        result.errors.append("Reassembled chunks differ from the text")

    return result
