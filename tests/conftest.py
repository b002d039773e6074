"""Shared fixtures: a two-book corpus small enough to reason about by hand."""

import pytest

from breslov_rag.config import ChunkingConfig, IndexingConfig
from breslov_rag.indexing.builder import IndexBuilder
from breslov_rag.ingestion.chunker import SemanticChunker
from breslov_rag.models import Book, Chunk, IndexSet, Section

# ~63 estimated tokens each, so two never share a 100-token chunk.
JOY_TEXT = "שמחה גדולה היא מצוה תמיד " * 10
STORY_TEXT = "מעשה במלך אחד שהיה לו בן " * 10


@pytest.fixture
def small_chunking() -> ChunkingConfig:
    return ChunkingConfig(max_tokens=100, min_tokens=10, overlap_ratio=0.1, sections_per_unit=1)


@pytest.fixture
def torah_book() -> Book:
    return Book(
        id="likutey_moharan",
        title="Likutey Moharan",
        hebrew_title="ליקוטי מוהר״ן",
        sections=[
            Section(
                id=f"lm_{n}",
                title=f"תורה {letter}",
                hebrew_text=JOY_TEXT,
                reference=f"Likutey Moharan {n}",
                index=n,
            )
            for n, letter in enumerate(["א", "ב", "ג"], start=1)
        ],
    )


@pytest.fixture
def story_book() -> Book:
    return Book(
        id="sippurei_maasiyot",
        title="Sippurei Maasiyot",
        hebrew_title="סיפורי מעשיות",
        sections=[
            Section(
                id=f"sm_{n}",
                title=f"Story {n}",
                hebrew_text=STORY_TEXT,
                reference=f"Sippurei Maasiyot {n}",
                index=n,
            )
            for n in range(1, 4)
        ],
    )


@pytest.fixture
def corpus(torah_book: Book, story_book: Book) -> list[Book]:
    return [torah_book, story_book]


@pytest.fixture
def corpus_chunks(corpus: list[Book], small_chunking: ChunkingConfig) -> dict[str, list[Chunk]]:
    chunker = SemanticChunker(small_chunking)
    return {book.id: chunker.chunk_book(book) for book in corpus}


@pytest.fixture
def corpus_indexes(corpus: list[Book], corpus_chunks: dict[str, list[Chunk]]) -> IndexSet:
    return IndexBuilder(IndexingConfig()).build_all_indexes(corpus, corpus_chunks)
