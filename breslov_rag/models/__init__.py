"""Data models for the Breslov RAG engine."""

from breslov_rag.models.book import Book, BookType, Section
from breslov_rag.models.chunk import (
    Chunk,
    ChunkContent,
    ChunkContext,
    Citation,
    SemanticUnit,
)
from breslov_rag.models.indexes import (
    BookIndex,
    BookReference,
    BookSummary,
    ChunkIndexEntry,
    ChunkReference,
    CrossReference,
    HierarchyNode,
    IndexSet,
    KeywordPosting,
    MasterIndex,
    SectionInfo,
)
from breslov_rag.models.route_result import (
    STRATEGY_HIERARCHICAL,
    STRATEGY_NO_RESULTS,
    BookScore,
    RouteResult,
    SectionCandidate,
)

__all__ = [
    "STRATEGY_HIERARCHICAL",
    "STRATEGY_NO_RESULTS",
    "Book",
    "BookIndex",
    "BookReference",
    "BookScore",
    "BookSummary",
    "BookType",
    "Chunk",
    "ChunkContent",
    "ChunkContext",
    "ChunkIndexEntry",
    "ChunkReference",
    "Citation",
    "CrossReference",
    "HierarchyNode",
    "IndexSet",
    "KeywordPosting",
    "MasterIndex",
    "RouteResult",
    "Section",
    "SectionCandidate",
    "SectionInfo",
    "SemanticUnit",
]
