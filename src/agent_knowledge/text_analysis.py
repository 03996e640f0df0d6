"""Lightweight text analysis used to enrich knowledge chunks.

Heuristics only, no models: stopword-based language detection, regex
keyword extraction, numerical/table structure detection and page
estimation. Results are stored on every chunk and copied into the
vector payload for filtering.
"""

from __future__ import annotations

import math
import re
from collections import Counter

import structlog
from pydantic import BaseModel, Field

from src.agent_knowledge.models import Language

logger = structlog.get_logger(__name__)

SAMPLE_SIZE = 500
CHARS_PER_PAGE = 3000
MAX_PHRASE_KEYWORDS = 10

# Order matters: ties are resolved in favour of the earlier language.
LANGUAGE_STOPWORDS: dict[str, frozenset[str]] = {
    "pt": frozenset(
        ["o", "a", "de", "para", "com", "em", "os", "as", "do", "da", "no",
         "na", "por", "que", "não", "são", "está", "um", "uma"]
    ),
    "en": frozenset(
        ["the", "and", "to", "for", "with", "in", "is", "are", "of", "that",
         "this", "from", "or", "not", "was", "were"]
    ),
    "de": frozenset(
        ["der", "die", "das", "und", "mit", "für", "von", "ist", "sind", "den",
         "dem", "des", "oder", "nicht", "ein", "eine"]
    ),
    "es": frozenset(
        ["el", "la", "de", "para", "con", "en", "los", "las", "del", "al",
         "por", "que", "no", "son", "está", "es"]
    ),
}

_WORD_RE = re.compile(r"\w+")

KEYWORD_PATTERNS: list[re.Pattern[str]] = [
    # Measurements and dimensions
    re.compile(r"\d+[.,]\d+\s*(?:m|cm|mm|km|ft|in|meters?|centimeters?|millimeters?)\b", re.IGNORECASE),
    re.compile(r"\d+\s*x\s*\d+\s*(?:m|cm|mm|meters?|centimeters?)\b", re.IGNORECASE),
    # Space and distance
    re.compile(r"required\s+space", re.IGNORECASE),
    re.compile(r"minimum\s+space", re.IGNORECASE),
    re.compile(r"distance\s+(?:between|from|to)", re.IGNORECASE),
    re.compile(r"dimensions?", re.IGNORECASE),
    re.compile(r"measurements?", re.IGNORECASE),
    # Installation and setup
    re.compile(r"installation", re.IGNORECASE),
    re.compile(r"setup", re.IGNORECASE),
    re.compile(r"configuration", re.IGNORECASE),
    re.compile(r"requirements?", re.IGNORECASE),
    re.compile(r"specifications?", re.IGNORECASE),
    # Technical vocabulary
    re.compile(r"technical", re.IGNORECASE),
    re.compile(r"equipment", re.IGNORECASE),
    re.compile(r"device", re.IGNORECASE),
    re.compile(r"system", re.IGNORECASE),
    re.compile(r"platform", re.IGNORECASE),
    # Portuguese
    re.compile(r"espaço\s+necessário", re.IGNORECASE),
    re.compile(r"distância", re.IGNORECASE),
    re.compile(r"dimensões", re.IGNORECASE),
    re.compile(r"instalação", re.IGNORECASE),
    re.compile(r"configuração", re.IGNORECASE),
    re.compile(r"requisitos", re.IGNORECASE),
    re.compile(r"especificações", re.IGNORECASE),
    # German
    re.compile(r"platzbedarf", re.IGNORECASE),
    re.compile(r"abstand", re.IGNORECASE),
    re.compile(r"maße", re.IGNORECASE),
    re.compile(r"aufbau", re.IGNORECASE),
    re.compile(r"anforderungen", re.IGNORECASE),
    # Percentages and currency
    re.compile(r"\d+\s*%"),
    re.compile(r"\$\d+"),
    re.compile(r"€\d+"),
    re.compile(r"R\$\s*\d+"),
]

PHRASE_PATTERN = re.compile(
    r"\b[A-ZÀ-Ý][a-zà-ÿ]+\s+(?:[A-ZÀ-Ý][a-zà-ÿ]+\s+)?[A-ZÀ-Ý][a-zà-ÿ]+\b"
)

NUMERICAL_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\d+[.,]\d+"),
    re.compile(r"\d+\s*%"),
    re.compile(r"\$\d+"),
    re.compile(r"€\d+"),
    re.compile(r"R\$\s*\d+"),
    re.compile(r"\d+\s*(?:m|cm|mm|km|kg|g|l|ml)\b", re.IGNORECASE),
]

TABLE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\|.*\|.*\|"),  # pipe-delimited rows
    re.compile(r"\t.*\t.*\t"),  # tab-separated
    re.compile(r" {3,}\S+ {3,}"),  # aligned columns
]


class TextAnalysis(BaseModel):
    """Summary of the heuristics applied to a piece of text."""

    language: Language = "unknown"
    keywords: list[str] = Field(default_factory=list)
    has_numbers: bool = False
    has_table: bool = False
    estimated_pages: int = 0
    char_count: int = 0


def _sample(text: str) -> str:
    middle = len(text) // 2
    return f"{text[:SAMPLE_SIZE]} {text[middle:middle + SAMPLE_SIZE]}".lower()


def detect_language(text: str) -> Language:
    """Detect the language of text by stopword frequency.

    Samples the beginning and the middle of the text, counts occurrences of
    each language's stopwords and returns the best-scoring language.

    Returns:
        "pt", "en", "de", "es", or "unknown" when no stopword matched.
    """
    counts = Counter(_WORD_RE.findall(_sample(text)))
    scores = {
        lang: sum(counts[word] for word in words)
        for lang, words in LANGUAGE_STOPWORDS.items()
    }

    best = max(scores.values(), default=0)
    if best == 0:
        return "unknown"

    # max() over an ordered dict returns the first language with the top score
    detected = max(scores, key=lambda lang: scores[lang])
    logger.debug("text_analysis.language_detected", detected=detected, scores=scores)
    return detected  # type: ignore[return-value]


def extract_keywords(text: str) -> list[str]:
    """Extract important keywords from text.

    Focuses on measurements, space and installation vocabulary in several
    languages, currency and percentages, plus capitalised multi-word phrases
    (at most ten).

    Returns:
        De-duplicated, lower-cased keywords in order of first appearance
        per pattern.
    """
    keywords: dict[str, None] = {}

    for pattern in KEYWORD_PATTERNS:
        for match in pattern.finditer(text):
            normalized = match.group(0).lower().strip()
            if len(normalized) > 1:
                keywords.setdefault(normalized, None)

    phrases = [m.group(0) for m in PHRASE_PATTERN.finditer(text)]
    for phrase in phrases[:MAX_PHRASE_KEYWORDS]:
        keywords.setdefault(phrase.lower(), None)

    result = list(keywords)
    logger.debug("text_analysis.keywords_extracted", count=len(result), sample=result[:5])
    return result


def has_numerical_data(text: str) -> bool:
    """Check for decimals, percentages, currency or numbers with units."""
    return any(pattern.search(text) for pattern in NUMERICAL_PATTERNS)


def has_table_structure(text: str) -> bool:
    """Check for pipe- or tab-delimited rows or space-aligned columns."""
    return any(pattern.search(text) for pattern in TABLE_PATTERNS)


def estimate_pages(text: str) -> int:
    """Estimate page count assuming ~3000 characters per page."""
    return math.ceil(len(text) / CHARS_PER_PAGE)


def analyze(text: str) -> TextAnalysis:
    """Run every heuristic over text."""
    return TextAnalysis(
        language=detect_language(text),
        keywords=extract_keywords(text),
        has_numbers=has_numerical_data(text),
        has_table=has_table_structure(text),
        estimated_pages=estimate_pages(text),
        char_count=len(text),
    )
