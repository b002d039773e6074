"""Book ingestion: loading, unit detection and chunking."""

from breslov_rag.ingestion.chunker import SemanticChunker
from breslov_rag.ingestion.heuristics import (
    BookProfile,
    estimate_tokens,
    get_profile,
    register_profile,
)
from breslov_rag.ingestion.loader import BookLoader

__all__ = [
    "BookLoader",
    "BookProfile",
    "SemanticChunker",
    "estimate_tokens",
    "get_profile",
    "register_profile",
]
