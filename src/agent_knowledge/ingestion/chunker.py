"""Recursive, separator-aware text chunking with guaranteed overlap.

Splits text into chunks of at most ``chunk_size`` characters. Each chunk
ends on the best available boundary, trying separator tiers in priority
order (paragraphs, lines, sentences, clauses, words) before falling back to
a raw character cut. Each new chunk starts at least ``overlap`` characters
before the previous chunk ended, snapped back to a word start when one is
close, so consecutive chunks always share context and no text is skipped.
"""

from __future__ import annotations

from collections.abc import Iterator

import structlog

logger = structlog.get_logger(__name__)

# Highest priority first. Separators stay attached to the preceding piece,
# so a boundary is the offset right after the separator.
SEPARATOR_TIERS: tuple[tuple[str, ...], ...] = (
    ("\n\n",),
    ("\n",),
    (". ", "! ", "? "),
    ("; ", ": ", ", "),
    (" ", "\t"),
)


class RecursiveChunker:
    """Character-budget chunker producing overlapping chunks.

    Args:
        chunk_size: Maximum characters per chunk.
        overlap: Minimum characters shared by consecutive chunks.

    Raises:
        ValueError: If chunk_size is not positive or overlap is not in
            [0, chunk_size).

    Usage:
        chunker = RecursiveChunker(chunk_size=800, overlap=200)
        chunks = list(chunker.chunk(text))
    """

    def __init__(self, chunk_size: int = 800, overlap: int = 200) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not 0 <= overlap < chunk_size:
            raise ValueError(
                f"overlap must be >= 0 and smaller than chunk_size ({chunk_size}), got {overlap}"
            )
        self.chunk_size = chunk_size
        self.overlap = overlap
        stride = chunk_size - overlap
        # A chunk end is never searched for closer than this to its start,
        # which bounds the number of chunks to about twice the optimum.
        self._min_extent = overlap + stride // 2
        # How far back from the exact overlap point a word start may be used.
        self._snap_window = stride // 4

    def chunk(self, text: str) -> Iterator[str]:
        """Yield chunks of text in order.

        Whitespace-only chunks are skipped. The iterator is single pass.
        """
        emitted = 0
        for start, end in self.spans(text):
            piece = text[start:end]
            if piece.strip():
                emitted += 1
                yield piece
        logger.debug(
            "chunker.text_chunked",
            text_length=len(text),
            chunk_count=emitted,
            chunk_size=self.chunk_size,
            overlap=self.overlap,
        )

    def spans(self, text: str) -> Iterator[tuple[int, int]]:
        """Yield (start, end) offsets of every chunk, including blank ones."""
        length = len(text)
        if not text.strip():
            return

        start = 0
        while True:
            end = self._find_end(text, start)
            yield start, end
            if end >= length:
                return
            start = self._find_next_start(text, start, end)

    def _find_end(self, text: str, start: int) -> int:
        """Latest boundary of the highest-priority tier within the budget."""
        limit = start + self.chunk_size
        if limit >= len(text):
            return len(text)

        floor = start + self._min_extent
        for tier in SEPARATOR_TIERS:
            best = -1
            for separator in tier:
                # Boundary (idx + len) must land in (floor, limit]
                idx = text.rfind(separator, floor - len(separator) + 1, limit)
                if idx != -1:
                    best = max(best, idx + len(separator))
            if best > floor:
                return best

        return limit

    def _find_next_start(self, text: str, start: int, end: int) -> int:
        """Start of the next chunk: at least ``overlap`` characters before end."""
        ceiling = end - self.overlap
        lower = max(start + 1, ceiling - self._snap_window)
        for pos in range(ceiling, lower - 1, -1):
            if text[pos - 1].isspace() and not text[pos].isspace():
                return pos
        return ceiling
