"""Keyword extraction and lexical vectors shared by the indexer and router."""

import re
from collections import Counter

from breslov_rag.ingestion.heuristics import QUERY_THEME_MAP, STOP_WORDS

PUNCTUATION = ".,;:!?()[]{}<>\"'`״׳“”‘’-–—…/\\|*"
HEBREW_WORD = re.compile(r"[\u0590-\u05FF]+")
QUERY_WORD = re.compile(r"\w+")
MIN_WORD_LENGTH = 3


def normalize_word(word: str) -> str:
    """Lower-case a word and strip surrounding punctuation."""
    return word.strip(PUNCTUATION).lower()


def tokenize(text: str) -> list[str]:
    """Split text on whitespace into normalised, non-empty words."""
    words = (normalize_word(w) for w in text.split())
    return [w for w in words if w]


def is_keyword(word: str) -> bool:
    return len(word) >= MIN_WORD_LENGTH and word not in STOP_WORDS


def extract_keywords(text: str, limit: int) -> list[str]:
    """Most frequent non-stop-words of ``text``, ties broken by first occurrence."""
    counts = Counter(w for w in tokenize(text) if is_keyword(w))
    return [word for word, _ in counts.most_common(limit)]


def term_vector(text: str) -> dict[str, float]:
    """Term frequencies normalised by the most frequent term."""
    counts = Counter(w for w in tokenize(text) if len(w) >= MIN_WORD_LENGTH)
    if not counts:
        return {}
    top = max(counts.values())
    return {word: count / top for word, count in counts.items()}


def overlap_ratio(a: list[str], b: list[str]) -> float:
    """Shared items relative to the larger of the two lists."""
    larger = max(len(a), len(b))
    if larger == 0:
        return 0.0
    other = set(b)
    return len([item for item in a if item in other]) / larger


def extract_query_keywords(query: str) -> list[str]:
    """Keywords of a user query, expanded with the Hebrew themes it names.

    Combines normalised words, Hebrew word runs (so that Hebrew glued to
    punctuation or Latin letters is still found) and the Hebrew theme plus
    transliteration for every theme name mentioned in the query.
    """
    keywords = [w for w in tokenize(query) if is_keyword(w)]
    keywords.extend(w for w in HEBREW_WORD.findall(query) if is_keyword(w))

    # Whole words only, so "foi" does not fire inside "parfois".
    words = set(QUERY_WORD.findall(query.lower()))
    for name, expansions in QUERY_THEME_MAP.items():
        if name in words:
            keywords.extend(expansions)

    return list(dict.fromkeys(keywords))
