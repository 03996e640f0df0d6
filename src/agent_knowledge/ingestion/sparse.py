"""Hashed term-frequency sparse vectors for hybrid search.

Tokens are hashed into a fixed bucket space so no vocabulary has to be
stored or shared between ingestion and query time. The same builder must
be used on both sides for lexical scores to line up.
"""

from __future__ import annotations

import re
from collections import Counter

from src.agent_knowledge.models import SparseVector

DEFAULT_BUCKETS = 30000
MIN_TOKEN_LENGTH = 3

# Everything that is not a letter (accented letters included) or whitespace.
_NON_LETTER_RE = re.compile(r"[^\w\s]|[\d_]")

STOPWORDS: frozenset[str] = frozenset(
    [
        # English
        "the", "and", "for", "with", "are", "that", "this", "from", "not",
        "was", "were", "but", "have", "has", "had", "you", "your", "our",
        "their", "they", "them", "its", "can", "will", "would", "should",
        "there", "here", "what", "which", "who", "when", "where", "how",
        "all", "any", "been", "into", "than", "then", "also", "about",
        # Portuguese
        "para", "com", "não", "são", "está", "uma", "uns", "umas", "por",
        "que", "dos", "das", "nos", "nas", "pelo", "pela", "como", "mais",
        "mas", "seu", "sua", "seus", "suas", "ele", "ela", "eles", "elas",
        "isso", "este", "esta", "esse", "essa", "também", "quando", "muito",
        # Spanish
        "los", "las", "del", "con", "son", "una", "esto", "esta", "pero",
        "sus", "muy", "cuando", "donde", "porque", "también",
        # German
        "der", "die", "das", "und", "mit", "für", "von", "ist", "sind",
        "den", "dem", "des", "oder", "nicht", "ein", "eine", "einen",
        "einer", "auf", "auch", "sich", "wie", "bei", "aus", "nach",
    ]
)


def term_hash(term: str) -> int:
    """Deterministic 31-multiplier string hash, 32-bit wrapped, non-negative."""
    value = 0
    for char in term:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    return value & 0x7FFFFFFF


def tokenize(text: str) -> list[str]:
    """Lower-case, keep letters only, drop short tokens and stopwords."""
    cleaned = _NON_LETTER_RE.sub(" ", text.lower())
    return [
        token
        for token in cleaned.split()
        if len(token) >= MIN_TOKEN_LENGTH and token not in STOPWORDS
    ]


class SparseVectorBuilder:
    """Builds normalised term-frequency sparse vectors over hashed buckets.

    Args:
        buckets: Size of the index space.
    """

    def __init__(self, buckets: int = DEFAULT_BUCKETS) -> None:
        if buckets <= 0:
            raise ValueError(f"buckets must be positive, got {buckets}")
        self.buckets = buckets

    def build(self, text: str) -> SparseVector:
        tokens = tokenize(text)
        if not tokens:
            return SparseVector()

        total = len(tokens)
        weights: dict[int, float] = {}
        for term, count in Counter(tokens).items():
            bucket = term_hash(term) % self.buckets
            weights[bucket] = weights.get(bucket, 0.0) + count / total

        indices = sorted(weights)
        return SparseVector(indices=indices, values=[weights[i] for i in indices])

    def build_batch(self, texts: list[str]) -> list[SparseVector]:
        return [self.build(text) for text in texts]
