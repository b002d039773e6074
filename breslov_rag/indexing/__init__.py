"""Index building: chunk, book and master tiers."""

from breslov_rag.indexing.builder import (
    IndexBuilder,
    compress_book_index,
    compress_master_index,
    estimate_index_size,
)
from breslov_rag.indexing.keywords import extract_keywords, extract_query_keywords

__all__ = [
    "IndexBuilder",
    "compress_book_index",
    "compress_master_index",
    "estimate_index_size",
    "extract_keywords",
    "extract_query_keywords",
]
