"""Route result data models."""

from pydantic import BaseModel, Field

from breslov_rag.models.chunk import Chunk

STRATEGY_HIERARCHICAL = "HierarchicalRouting"
STRATEGY_NO_RESULTS = "NoResults"


class BookScore(BaseModel):
    """A Level 1 candidate book."""

    book_id: str
    title: str
    score: float
    reason: str = ""


class SectionCandidate(BaseModel):
    """A Level 2 candidate section."""

    book_id: str
    section_id: str
    score: float
    chunk_ids: list[str] = Field(default_factory=list)


class RouteResult(BaseModel):
    """The token-bounded answer context assembled for one query."""

    query: str
    books: list[BookScore] = Field(default_factory=list)
    sections: list[SectionCandidate] = Field(default_factory=list)
    chunks: list[Chunk] = Field(default_factory=list)
    total_tokens: int = 0
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    from_cache: bool = False
    strategy: str = STRATEGY_HIERARCHICAL
    degraded: bool = False
    duration_ms: int = 0

    @classmethod
    def empty(cls, query: str) -> "RouteResult":
        """A valid zero-confidence result for a query that matched nothing."""
        return cls(query=query, strategy=STRATEGY_NO_RESULTS)
