"""Tests for the three-tier index builder."""

import math

import pytest

from breslov_rag.config import IndexingConfig
from breslov_rag.indexing.builder import (
    IndexBuilder,
    compress_book_index,
    estimate_index_size,
)
from breslov_rag.models import (
    Book,
    BookIndex,
    Chunk,
    ChunkContent,
    ChunkReference,
    Citation,
    IndexSet,
)


class FakeEmbedder:
    def __init__(self) -> None:
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        return [1.0, float(len(text) % 7), 0.5]


class FailingEmbedder:
    def embed(self, text: str) -> list[float]:
        raise ConnectionError("embedding service unavailable")


class BatchEmbedder:
    def __init__(self) -> None:
        self.batches: list[int] = []

    def embed(self, text: str) -> list[float]:
        return [1.0, 0.0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(len(texts))
        return [[0.0, 1.0] for _ in texts]


def _chunk(chunk_id: str, section_id: str, text: str, **kwargs: object) -> Chunk:
    return Chunk(
        id=chunk_id,
        book_id="likutey_moharan",
        section_id=section_id,
        content=ChunkContent(hebrew=text),
        reference=f"LM {section_id}",
        start_index=0,
        end_index=0,
        token_count=math.ceil(len(text) / 4),
        **kwargs,
    )


# ── Level 3 ─────────────────────────────────────────────────────────────────


class TestChunkIndexes:
    def test_one_entry_per_chunk(
        self, corpus_indexes: IndexSet, corpus_chunks: dict[str, list[Chunk]]
    ) -> None:
        all_ids = {c.id for chunks in corpus_chunks.values() for c in chunks}
        assert set(corpus_indexes.chunk_indexes) == all_ids

    def test_keywords_ranked_without_stop_words(
        self, corpus_indexes: IndexSet, corpus_chunks: dict[str, list[Chunk]]
    ) -> None:
        first = corpus_chunks["likutey_moharan"][0]
        entry = corpus_indexes.chunk_indexes[first.id]
        assert entry.keywords == ["שמחה", "גדולה", "מצוה", "תמיד"]
        assert entry.term_vector["שמחה"] == 1.0
        assert entry.themes == ["שמחה"]

    def test_related_chunks_within_book(
        self, corpus_indexes: IndexSet, corpus_chunks: dict[str, list[Chunk]]
    ) -> None:
        torah_ids = [c.id for c in corpus_chunks["likutey_moharan"]]
        entry = corpus_indexes.chunk_indexes[torah_ids[0]]
        assert entry.related_chunks == torah_ids[1:]

        for chunk_id in torah_ids:
            related = corpus_indexes.chunk_indexes[chunk_id].related_chunks
            assert chunk_id not in related
            assert all(r in torah_ids for r in related)

    def test_related_chunks_respect_threshold(self) -> None:
        chunks = {
            "likutey_moharan": [
                _chunk("a", "torah_1", "אמונה פשוטה מאד"),
                _chunk("b", "torah_2", "התבודדות בשדה בלילה"),
            ]
        }
        entries = IndexBuilder(IndexingConfig()).build_chunk_indexes(chunks)
        assert entries["a"].related_chunks == []

    def test_related_chunks_capped(self) -> None:
        chunks = {"likutey_moharan": [_chunk(f"c{n}", f"s{n}", "שמחה תמיד") for n in range(8)]}
        entries = IndexBuilder(IndexingConfig(related_top_k=5)).build_chunk_indexes(chunks)
        assert len(entries["c0"].related_chunks) == 5


# ── Level 2 ─────────────────────────────────────────────────────────────────


class TestBookIndex:
    def test_sections_and_hierarchy(self, corpus_indexes: IndexSet) -> None:
        book_index = corpus_indexes.book_indexes["likutey_moharan"]

        assert [s.id for s in book_index.sections] == ["torah_1", "torah_2", "torah_3"]
        assert book_index.sections[0].title == "Likutey Moharan 1"
        assert [n.node_type for n in book_index.hierarchy] == ["torah"] * 3
        assert book_index.total_tokens == 189

    def test_section_aggregates(self, corpus_indexes: IndexSet) -> None:
        section = corpus_indexes.book_indexes["likutey_moharan"].sections[0]
        assert section.themes == ["שמחה"]
        assert section.keywords[0] == "שמחה"
        assert section.summary == "Likutey Moharan 1: שמחה"
        assert len(section.chunk_ids) == 1

    def test_thematic_map(
        self, corpus_indexes: IndexSet, corpus_chunks: dict[str, list[Chunk]]
    ) -> None:
        book_index = corpus_indexes.book_indexes["likutey_moharan"]
        assert book_index.thematic_map == {
            "שמחה": [c.id for c in corpus_chunks["likutey_moharan"]]
        }

    def test_theme_cross_references(self, corpus_indexes: IndexSet) -> None:
        refs = corpus_indexes.book_indexes["likutey_moharan"].cross_references
        assert [(r.from_section, r.to_section) for r in refs] == [
            ("torah_1", "torah_2"),
            ("torah_1", "torah_3"),
            ("torah_2", "torah_3"),
        ]
        assert all(r.ref_type == "theme" and r.strength == 1.0 for r in refs)

    def test_quote_cross_reference(self) -> None:
        source = _chunk(
            "a",
            "torah_1",
            "כמו שכתוב (תהלים קיח) בענין זה",
            citations=[Citation(source="תהלים קיח", text="תהלים קיח")],
        )
        target = _chunk("b", "torah_2", "ועוד נאמר תהלים קיח בזה")
        book = Book(id="likutey_moharan", title="LM")

        book_index = IndexBuilder(IndexingConfig()).build_book_index(book, [source, target], {})
        quotes = [r for r in book_index.cross_references if r.ref_type == "quote"]

        assert [(r.from_section, r.to_section, r.strength) for r in quotes] == [
            ("torah_1", "torah_2", 0.8)
        ]

    def test_chunk_references(self, corpus_indexes: IndexSet) -> None:
        refs = corpus_indexes.book_indexes["sippurei_maasiyot"].chunks
        assert len(refs) == 3
        assert refs[0].summary.startswith("Sippurei Maasiyot 1: מעשה")
        assert len(refs[0].keywords) <= 10


# ── Level 1 ─────────────────────────────────────────────────────────────────


class TestMasterIndex:
    def test_book_summaries(self, corpus_indexes: IndexSet) -> None:
        master = corpus_indexes.master
        assert master.total_books == 2
        assert master.total_tokens == 378

        summary = master.get_book("likutey_moharan")
        assert summary.themes == ["שמחה"]
        assert summary.summary == "ליקוטי מוהר״ן: 3 sections, 3 chunks. Main themes: שמחה"

    def test_search_index_keeps_themes_and_frequent_keywords(
        self, corpus_indexes: IndexSet
    ) -> None:
        search_index = corpus_indexes.master.search_index
        postings = search_index["שמחה"]
        assert [(p.book_id, p.count) for p in postings] == [("likutey_moharan", 6)]
        # Only three occurrences, below the corpus-wide minimum
        assert "גדולה" not in search_index
        assert "מעשה" not in search_index

    def test_search_index_minimum_configurable(
        self, corpus: list[Book], corpus_chunks: dict[str, list[Chunk]]
    ) -> None:
        builder = IndexBuilder(IndexingConfig(global_keyword_min_count=2))
        master = builder.build_all_indexes(corpus, corpus_chunks).master
        assert master.search_index["מעשה"][0].book_id == "sippurei_maasiyot"

    def test_thematic_map_weights(self, corpus_indexes: IndexSet) -> None:
        refs = corpus_indexes.master.thematic_map["שמחה"]
        assert [(r.book_id, r.weight) for r in refs] == [("likutey_moharan", 1.0)]


# ── Properties ──────────────────────────────────────────────────────────────


class TestBuildProperties:
    def test_rebuild_is_structurally_identical(
        self, corpus: list[Book], corpus_chunks: dict[str, list[Chunk]]
    ) -> None:
        builder = IndexBuilder(IndexingConfig())
        first = builder.build_all_indexes(corpus, corpus_chunks)
        second = builder.build_all_indexes(corpus, corpus_chunks)

        assert first.master.structural_dump() == second.master.structural_dump()
        for book_id, book_index in first.book_indexes.items():
            assert book_index.structural_dump() == second.book_indexes[book_id].structural_dump()
        for chunk_id, entry in first.chunk_indexes.items():
            assert entry.model_dump(exclude={"created"}) == second.chunk_indexes[
                chunk_id
            ].model_dump(exclude={"created"})

    def test_estimate_index_size(self, corpus_indexes: IndexSet) -> None:
        master = corpus_indexes.master
        assert estimate_index_size(master) == math.ceil(len(master.model_dump_json()) / 4)

    def test_over_budget_indexes_compressed(
        self, corpus: list[Book], corpus_chunks: dict[str, list[Chunk]]
    ) -> None:
        config = IndexingConfig(book_token_budget=1, master_token_budget=1)
        index_set = IndexBuilder(config).build_all_indexes(corpus, corpus_chunks)

        for book_index in index_set.book_indexes.values():
            assert all(len(ref.summary) <= 50 for ref in book_index.chunks)
            assert all(len(ref.keywords) <= 5 for ref in book_index.chunks)
        assert all(len(book.summary) <= 100 for book in index_set.master.books)
        assert all(len(book.themes) <= 5 for book in index_set.master.books)

    def test_compression_does_not_mutate_input(self) -> None:
        original = BookIndex(
            book_id="b",
            title="B",
            chunks=[
                ChunkReference(
                    id="c", section_id="s", reference="R", summary="x" * 200, keywords=["k"] * 9
                )
            ],
        )
        compressed = compress_book_index(original)
        assert len(compressed.chunks[0].summary) == 50
        assert len(original.chunks[0].summary) == 200


class TestEmbeddings:
    def test_embeddings_added_when_provider_given(
        self, corpus: list[Book], corpus_chunks: dict[str, list[Chunk]]
    ) -> None:
        embedder = FakeEmbedder()
        index_set = IndexBuilder(IndexingConfig(), embedder=embedder).build_all_indexes(
            corpus, corpus_chunks
        )

        assert embedder.calls > 0
        assert index_set.master.embedding_dimensions == 3
        assert index_set.master.books[0].keyword_embeddings
        assert all(
            s.embedding is not None for s in index_set.book_indexes["likutey_moharan"].sections
        )
        assert all(e.embedding is not None for e in index_set.chunk_indexes.values())

    def test_no_embeddings_without_provider(self, corpus_indexes: IndexSet) -> None:
        assert corpus_indexes.master.embedding_dimensions is None
        assert all(e.embedding is None for e in corpus_indexes.chunk_indexes.values())

    def test_failing_provider_does_not_break_build(
        self, corpus: list[Book], corpus_chunks: dict[str, list[Chunk]]
    ) -> None:
        builder = IndexBuilder(IndexingConfig(), embedder=FailingEmbedder())
        index_set = builder.build_all_indexes(corpus, corpus_chunks)

        assert index_set.master.total_books == 2
        assert index_set.master.embedding_dimensions is None
        assert all(s.embedding is None for s in index_set.book_indexes["likutey_moharan"].sections)


@pytest.mark.parametrize("book_id", ["likutey_moharan", "sippurei_maasiyot"])
def test_every_book_has_an_index(corpus_indexes: IndexSet, book_id: str) -> None:
    assert corpus_indexes.book_indexes[book_id].book_id == book_id


def test_section_and_keyword_embeddings_batched(
    corpus: list[Book], corpus_chunks: dict[str, list[Chunk]]
) -> None:
    embedder = BatchEmbedder()
    index_set = IndexBuilder(IndexingConfig(), embedder=embedder).build_all_indexes(
        corpus, corpus_chunks
    )

    # One batch of sections per book, one batch of keywords per book
    assert len(embedder.batches) == 4
    assert embedder.batches[:2] == [3, 3]
    sections = index_set.book_indexes["likutey_moharan"].sections
    assert all(s.embedding == [0.0, 1.0] for s in sections)
    assert index_set.master.books[0].keyword_embeddings[0] == [0.0, 1.0]
