"""Chunk data models."""

from pydantic import BaseModel, ConfigDict, Field

from breslov_rag.models.book import Section


class Citation(BaseModel):
    """A scriptural source quoted inside a chunk."""

    model_config = ConfigDict(frozen=True)

    source: str
    text: str


class ChunkContent(BaseModel):
    """Concatenated section text of a chunk, per language."""

    model_config = ConfigDict(frozen=True)

    hebrew: str
    english: str | None = None
    french: str | None = None


class ChunkContext(BaseModel):
    """Overlap text borrowed from the neighbouring chunks."""

    model_config = ConfigDict(frozen=True)

    before: str | None = None
    after: str | None = None


class Chunk(BaseModel):
    """The unit of retrieval: a token-bounded span of one book."""

    model_config = ConfigDict(frozen=True)

    id: str
    book_id: str
    section_id: str
    content: ChunkContent
    reference: str
    start_index: int
    end_index: int
    token_count: int
    themes: list[str] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)
    context: ChunkContext = Field(default_factory=ChunkContext)
    embedding: list[float] | None = None

    @property
    def text(self) -> str:
        """The searchable text of the chunk (Hebrew first)."""
        return self.content.hebrew or self.content.english or self.content.french or ""


class SemanticUnit(BaseModel):
    """A coherent run of sections (one teaching, story or prayer).

    Only exists while a book is being chunked.
    """

    id: str
    unit_type: str  # "torah", "story", "prayer", "section"
    sections: list[Section]
    token_count: int = 0
    themes: list[str] = Field(default_factory=list)
