# =============================================================================
# Local Feature-Hash Embedding — Offline Last Resort
# =============================================================================
#
# Builds a 768-dimensional vector from hand-picked text features. It is the
# final tier of the embedding chain and runs with no network and no model
# files, so ingestion always completes and every chunk gets a vector.
#
# VECTOR LAYOUT (768 dims):
#   0-3      document statistics (word, sentence, char counts; avg word len)
#   50-299   relative frequencies of the 250 most frequent words
#   300-499  relative frequencies of the 200 most frequent bigrams
#   500-580  keyword-category match ratios (every 20th slot, 5 categories)
#   600-609  hashes of the first 10 words
#   650-659  hashes of the last 10 words
#   700-703  structural flags: digits / uppercase / bullets / question marks
#   704-767  hash filler derived from the full text
#   (all other slots stay 0)
#
# The whole vector is L2-normalised to unit length.
#
# Determinism: identical text gives a bit-identical vector. Frequency ties
# keep first-occurrence order (dict insertion order + stable sort), and the
# hash is the shared rolling hash in services/hashing.py.
#
# Local vectors are only meaningful when compared with other local vectors;
# they live in a different space from the remote models' embeddings.
# =============================================================================

from __future__ import annotations

import math
import re
from collections import Counter

from research_rag.services.hashing import hash_to_unit_float

DEFAULT_DIMENSIONS = 768

# ASCII \w, matching the browser client's regex semantics
_NON_WORD = re.compile(r"[^\w\s]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")

_HAS_DIGIT = re.compile(r"\d", re.ASCII)
_HAS_UPPER = re.compile(r"[A-Z]")
_HAS_BULLET = re.compile(r"[•\-*]")
_HAS_QUESTION = re.compile(r"\?")

_TOP_WORDS = 250
_TOP_BIGRAMS = 200
_POSITIONAL_WORDS = 10

# Keyword categories, in slot order
SEMANTIC_CATEGORIES: dict[str, list[str]] = {
    "financial": [
        "money", "investment", "stock", "market", "finance", "profit",
        "revenue", "cost",
    ],
    "technical": [
        "algorithm", "system", "data", "analysis", "technology", "software",
        "compute",
    ],
    "research": [
        "study", "research", "analysis", "findings", "conclusion",
        "methodology", "results",
    ],
    "business": [
        "company", "business", "management", "strategy", "operations",
        "customers",
    ],
    "academic": [
        "paper", "journal", "citation", "abstract", "hypothesis",
        "experiment",
    ],
}


def _tokenize(text: str) -> list[str]:
    cleaned = _NON_WORD.sub(" ", text.lower())
    return [word for word in _WHITESPACE.split(cleaned) if len(word) > 2]


def _top_frequencies(counts: Counter, limit: int) -> list[tuple[str, int]]:
    # sorted() is stable, so equal counts keep first-occurrence order
    return sorted(counts.items(), key=lambda item: -item[1])[:limit]


def local_embedding(text: str, dimensions: int = DEFAULT_DIMENSIONS) -> list[float]:
    """
    Compute the deterministic local embedding of `text`.

    Args:
        text: Any string, including the empty string.
        dimensions: Vector length. The feature layout assumes 768; other
            sizes are accepted for completeness (features past the end are
            dropped, extra slots receive hash filler).

    Returns:
        A unit-length list of `dimensions` floats.
    """
    vector = [0.0] * dimensions

    def put(index: int, value: float) -> None:
        if index < dimensions:
            vector[index] = value

    words = _tokenize(text)
    sentences = [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    word_count = len(words)

    # --- Document statistics ---
    put(0, min(word_count / 100, 1.0))
    put(1, min(len(sentences) / 20, 1.0))
    put(2, min(len(text) / 5000, 1.0))
    put(3, min(len(text) / word_count / 10, 1.0) if word_count else 0.0)

    # --- Word frequencies ---
    word_counts = Counter(words)
    for offset, (_, freq) in enumerate(_top_frequencies(word_counts, _TOP_WORDS)):
        put(50 + offset, min(freq / word_count, 1.0))

    # --- Bigram frequencies ---
    bigram_counts = Counter(
        f"{first} {second}" for first, second in zip(words, words[1:])
    )
    for offset, (_, freq) in enumerate(
        _top_frequencies(bigram_counts, _TOP_BIGRAMS)
    ):
        put(300 + offset, min(freq / (word_count - 1), 1.0))

    # --- Keyword categories ---
    for slot, keywords in enumerate(SEMANTIC_CATEGORIES.values()):
        matches = sum(
            1 for keyword in keywords if any(keyword in word for word in words)
        )
        put(500 + slot * 20, matches / len(keywords))

    # --- Positional hashes ---
    for offset, word in enumerate(words[:_POSITIONAL_WORDS]):
        put(600 + offset, hash_to_unit_float(word))
    for offset, word in enumerate(words[-_POSITIONAL_WORDS:]):
        put(650 + offset, hash_to_unit_float(word))

    # --- Structural flags ---
    put(700, 1.0 if _HAS_DIGIT.search(text) else 0.0)
    put(701, 1.0 if _HAS_UPPER.search(text) else 0.0)
    put(702, 1.0 if _HAS_BULLET.search(text) else 0.0)
    put(703, 1.0 if _HAS_QUESTION.search(text) else 0.0)

    # --- Hash filler ---
    for index in range(704, dimensions):
        vector[index] = hash_to_unit_float(f"{text}{index}")

    magnitude = math.sqrt(sum(value * value for value in vector))
    if magnitude > 0:
        vector = [value / magnitude for value in vector]
    return vector


class LocalEmbedder:
    """
    Embedding tier backed by local_embedding().

    Exposes the same async `embed()` shape as the remote tiers so the chain
    can treat it uniformly. It never raises.
    """

    name = "local"

    def __init__(self, dimensions: int = DEFAULT_DIMENSIONS) -> None:
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        return local_embedding(text, self.dimensions)
