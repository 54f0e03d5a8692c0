"""
Block chunking for streamed model output.

Streamed text arrives in arbitrary fragments.  ``BlockChunker`` buffers it and
cuts it into blocks that read well as individual chat messages:

  - Low bound: nothing is emitted until the buffer holds ``min_chars``.
  - High bound: below ``max_chars`` a block is only cut at a natural break;
    at or above it a cut is forced, at a break inside the first ``max_chars``
    characters if there is one, otherwise exactly at ``max_chars``.
  - Break preference: paragraph, then newline, then sentence end, then
    plain space.  A break type only counts if it leaves at least
    ``min_chars`` in the block.

Leading whitespace is dropped from whatever follows a cut, so a block never
starts with the space or newline it was split on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from cadence.config import ChunkingConfig

_PARAGRAPH_RE = re.compile(r"\n\n")
_SENTENCE_END_RE = re.compile(r"[.!?]\s")


@dataclass(frozen=True)
class BreakPoint:
    index: int
    priority: int


class BlockChunker:
    """Incremental text segmenter with min/max bounds."""

    def __init__(self, min_chars: int, max_chars: int) -> None:
        if min_chars < 0:
            raise ValueError(f"min_chars must be non-negative, got {min_chars}")
        if max_chars <= min_chars:
            raise ValueError(
                f"max_chars ({max_chars}) must exceed min_chars ({min_chars})"
            )
        self._min_chars = min_chars
        self._max_chars = max_chars
        self._buffer = ""

    @classmethod
    def from_config(cls, config: ChunkingConfig) -> "BlockChunker":
        return cls(config.min_chars, config.max_chars)

    @property
    def min_chars(self) -> int:
        return self._min_chars

    @property
    def max_chars(self) -> int:
        return self._max_chars

    def push(self, text: str) -> list[str]:
        """Append *text* and return every block that is now ready."""
        self._buffer += text
        chunks: list[str] = []
        while len(self._buffer) >= self._min_chars:
            chunk = self._extract_chunk()
            if not chunk:
                break
            chunks.append(chunk)
        return chunks

    def flush(self) -> Optional[str]:
        """Return and clear whatever remains, regardless of size."""
        if not self._buffer:
            return None
        chunk, self._buffer = self._buffer, ""
        return chunk

    def peek(self) -> str:
        return self._buffer

    def _extract_chunk(self) -> Optional[str]:
        buffer = self._buffer
        if len(buffer) < self._min_chars:
            return None

        if len(buffer) < self._max_chars:
            # Under the high bound: only cut at a natural break.
            point = self.find_break_point(buffer, len(buffer))
            if point is None or point.index < self._min_chars:
                return None
            split_index = point.index
        else:
            point = self.find_break_point(buffer, self._max_chars)
            split_index = point.index if point is not None else self._max_chars

        chunk = buffer[:split_index]
        self._buffer = buffer[split_index:].lstrip()
        return chunk

    def find_break_point(self, text: str, max_index: int) -> Optional[BreakPoint]:
        """Best break point in ``text[:max_index]``, or None."""
        window = text[:max_index]
        floor = self._min_chars

        last_paragraph = -1
        for match in _PARAGRAPH_RE.finditer(window):
            if match.start() >= floor:
                last_paragraph = match.start() + 2
        if last_paragraph > 0:
            return BreakPoint(index=last_paragraph, priority=1)

        last_newline = window.rfind("\n")
        if last_newline >= floor:
            return BreakPoint(index=last_newline + 1, priority=2)

        last_sentence = -1
        for match in _SENTENCE_END_RE.finditer(window):
            if match.end() >= floor:
                last_sentence = match.end()
        if last_sentence > 0:
            return BreakPoint(index=last_sentence, priority=3)

        last_space = window.rfind(" ")
        if last_space >= floor:
            return BreakPoint(index=last_space + 1, priority=4)

        return None
