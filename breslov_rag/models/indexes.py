"""Data models for the three index tiers (master, book, chunk)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from breslov_rag.models.book import BookType
from breslov_rag.models.chunk import Citation

# Fields excluded when comparing two builds for structural equality.
TIMESTAMP_FIELDS = {"created"}


class ChunkIndexEntry(BaseModel):
    """Level 3: search metadata for one chunk."""

    chunk_id: str
    book_id: str
    created: datetime = Field(default_factory=datetime.now)
    reference: str
    token_count: int
    themes: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)
    related_chunks: list[str] = Field(default_factory=list)
    term_vector: dict[str, float] = Field(default_factory=dict)
    embedding: list[float] | None = None


class SectionInfo(BaseModel):
    """Per-section aggregate inside a book index."""

    id: str
    title: str
    themes: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    summary: str = ""
    chunk_ids: list[str] = Field(default_factory=list)
    token_count: int = 0
    embedding: list[float] | None = None


class HierarchyNode(BaseModel):
    """A node of the book-type-specific structure tree."""

    id: str
    node_type: str  # "section", "torah", "story", "prayer"
    title: str
    chunk_ids: list[str] = Field(default_factory=list)
    children: list["HierarchyNode"] = Field(default_factory=list)


class ChunkReference(BaseModel):
    """Compact view of a chunk kept in its book index."""

    id: str
    section_id: str
    reference: str
    summary: str
    keywords: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    token_count: int = 0


class CrossReference(BaseModel):
    """A link between two sections of the same book."""

    from_section: str
    to_section: str
    ref_type: str  # "theme", "quote"
    strength: float


class BookIndex(BaseModel):
    """Level 2: structure and lookup tables of one book."""

    book_id: str
    title: str
    hebrew_title: str = ""
    book_type: BookType = BookType.GENERAL
    created: datetime = Field(default_factory=datetime.now)
    sections: list[SectionInfo] = Field(default_factory=list)
    hierarchy: list[HierarchyNode] = Field(default_factory=list)
    chunks: list[ChunkReference] = Field(default_factory=list)
    thematic_map: dict[str, list[str]] = Field(default_factory=dict)
    cross_references: list[CrossReference] = Field(default_factory=list)
    total_tokens: int = 0

    def structural_dump(self) -> dict:
        """Dump without build timestamps, for idempotence checks."""
        return self.model_dump(mode="json", exclude=TIMESTAMP_FIELDS)


class BookSummary(BaseModel):
    """One line of the master index describing a whole book."""

    id: str
    title: str
    hebrew_title: str = ""
    sections: int = 0
    chunks: int = 0
    total_tokens: int = 0
    themes: list[str] = Field(default_factory=list)
    summary: str = ""
    keyword_embeddings: list[list[float]] = Field(default_factory=list)


class KeywordPosting(BaseModel):
    """Occurrence count of a keyword (or theme) within one book."""

    book_id: str
    count: int


class BookReference(BaseModel):
    """Weighted membership of a book in a theme."""

    book_id: str
    weight: float


class MasterIndex(BaseModel):
    """Level 1: corpus-wide router over all books."""

    version: str = "1.0.0"
    created: datetime = Field(default_factory=datetime.now)
    total_books: int = 0
    total_tokens: int = 0
    books: list[BookSummary] = Field(default_factory=list)
    search_index: dict[str, list[KeywordPosting]] = Field(default_factory=dict)
    thematic_map: dict[str, list[BookReference]] = Field(default_factory=dict)
    embedding_dimensions: int | None = None

    def structural_dump(self) -> dict:
        """Dump without build timestamps, for idempotence checks."""
        return self.model_dump(mode="json", exclude=TIMESTAMP_FIELDS)

    def get_book(self, book_id: str) -> BookSummary | None:
        for book in self.books:
            if book.id == book_id:
                return book
        return None


class IndexSet(BaseModel):
    """A complete, self-consistent snapshot of all three tiers.

    The router only ever holds whole snapshots; a rebuild produces a new
    one instead of mutating the served instance.
    """

    model_config = ConfigDict(frozen=True)

    master: MasterIndex
    book_indexes: dict[str, BookIndex] = Field(default_factory=dict)
    chunk_indexes: dict[str, ChunkIndexEntry] = Field(default_factory=dict)
