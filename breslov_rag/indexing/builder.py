"""Builder for the three index tiers: chunk, book and master."""

import logging
import math

from pydantic import BaseModel

from breslov_rag.config import IndexingConfig
from breslov_rag.embeddings import EmbeddingProvider
from breslov_rag.indexing.keywords import extract_keywords, overlap_ratio, term_vector
from breslov_rag.ingestion.heuristics import get_profile
from breslov_rag.models.book import Book
from breslov_rag.models.chunk import Chunk
from breslov_rag.models.indexes import (
    BookIndex,
    BookReference,
    BookSummary,
    ChunkIndexEntry,
    ChunkReference,
    CrossReference,
    IndexSet,
    KeywordPosting,
    MasterIndex,
    SectionInfo,
)

logger = logging.getLogger(__name__)

CHUNK_SUMMARY_PREVIEW_CHARS = 100
SECTION_SUMMARY_THEMES = 3
KEYWORD_EMBEDDING_COUNT = 10
# Leading characters of a chunk embedded when the chunk carries no vector.
CHUNK_EMBEDDING_CHARS = 2000


def estimate_index_size(index: BaseModel) -> int:
    """Estimated token size of an index, from its JSON serialisation."""
    return math.ceil(len(index.model_dump_json()) / 4)


class IndexBuilder:
    """Derives the master, book and chunk indexes from chunked books.

    Every tier is a pure function of the chunks: building twice from the
    same input gives structurally identical indexes (timestamps aside).
    Indexes are built bottom-up: chunk entries first, then one book index
    per book, then the master index over the book indexes.

    Args:
        config: IndexingConfig with keyword caps, similarity weights and
                tier token budgets.
        embedder: Optional embedding provider for section and book vectors.
    """

    def __init__(self, config: IndexingConfig, embedder: EmbeddingProvider | None = None) -> None:
        self._config = config
        self._embedder = embedder

    def build_all_indexes(
        self, books: list[Book], chunks_per_book: dict[str, list[Chunk]]
    ) -> IndexSet:
        """Build all three tiers.

        Args:
            books: Books to index, in corpus order.
            chunks_per_book: Chunks of each book, keyed by book id.

        Returns:
            A complete IndexSet snapshot.
        """
        logger.info("Building 3-level index hierarchy for %d books", len(books))

        chunk_indexes = self.build_chunk_indexes(chunks_per_book)
        book_indexes = self.build_book_indexes(books, chunks_per_book, chunk_indexes)
        master = self.build_master_index(books, book_indexes)

        logger.info(
            "All indexes built: %d books, %d chunks, %d tokens",
            master.total_books,
            len(chunk_indexes),
            master.total_tokens,
        )
        return IndexSet(master=master, book_indexes=book_indexes, chunk_indexes=chunk_indexes)

    # ── Level 3: chunks ─────────────────────────────────────────────────────

    def build_chunk_indexes(
        self, chunks_per_book: dict[str, list[Chunk]]
    ) -> dict[str, ChunkIndexEntry]:
        """Build one entry per chunk, then link related chunks within each book."""
        chunk_indexes: dict[str, ChunkIndexEntry] = {}

        for book_id, chunks in chunks_per_book.items():
            entries = [self._build_chunk_entry(chunk) for chunk in chunks]
            self._link_related_chunks(entries)
            for entry in entries:
                chunk_indexes[entry.chunk_id] = entry
            logger.debug("Indexed %d chunks of %s", len(entries), book_id)

        logger.info("Built %d chunk indexes", len(chunk_indexes))
        return chunk_indexes

    def _build_chunk_entry(self, chunk: Chunk) -> ChunkIndexEntry:
        text = chunk.text
        return ChunkIndexEntry(
            chunk_id=chunk.id,
            book_id=chunk.book_id,
            reference=chunk.reference,
            token_count=chunk.token_count,
            themes=list(chunk.themes),
            keywords=extract_keywords(text, self._config.max_keywords),
            citations=list(chunk.citations),
            term_vector=term_vector(text),
            embedding=(
                chunk.embedding
                if chunk.embedding is not None
                else self._safe_embed(text[:CHUNK_EMBEDDING_CHARS])
            ),
        )

    def _link_related_chunks(self, entries: list[ChunkIndexEntry]) -> None:
        """Pairwise theme/keyword similarity within one book.

        Quadratic in the number of chunks, which the chunk token budget
        keeps small per book.
        """
        cfg = self._config
        for entry in entries:
            scored: list[tuple[float, str]] = []
            for other in entries:
                if other.chunk_id == entry.chunk_id:
                    continue
                score = cfg.related_theme_weight * overlap_ratio(
                    entry.themes, other.themes
                ) + cfg.related_keyword_weight * overlap_ratio(entry.keywords, other.keywords)
                if score > cfg.related_threshold:
                    scored.append((score, other.chunk_id))
            scored.sort(key=lambda item: item[0], reverse=True)
            entry.related_chunks = [chunk_id for _, chunk_id in scored[: cfg.related_top_k]]

    # ── Level 2: books ──────────────────────────────────────────────────────

    def build_book_indexes(
        self,
        books: list[Book],
        chunks_per_book: dict[str, list[Chunk]],
        chunk_indexes: dict[str, ChunkIndexEntry],
    ) -> dict[str, BookIndex]:
        """Build and size-check one book index per book."""
        book_indexes: dict[str, BookIndex] = {}

        for book in books:
            chunks = chunks_per_book.get(book.id, [])
            book_index = self.build_book_index(book, chunks, chunk_indexes)

            size = estimate_index_size(book_index)
            if size > self._config.book_token_budget:
                logger.warning(
                    "Book index for %s (%d tokens) exceeds target of %d tokens",
                    book.id,
                    size,
                    self._config.book_token_budget,
                )
                book_index = compress_book_index(book_index)
            book_indexes[book.id] = book_index

        logger.info("Built %d book indexes", len(book_indexes))
        return book_indexes

    def build_book_index(
        self,
        book: Book,
        chunks: list[Chunk],
        chunk_indexes: dict[str, ChunkIndexEntry],
    ) -> BookIndex:
        keywords_by_chunk = {
            chunk.id: (
                chunk_indexes[chunk.id].keywords
                if chunk.id in chunk_indexes
                else extract_keywords(chunk.text, self._config.max_keywords)
            )
            for chunk in chunks
        }

        sections = self._build_sections(chunks, keywords_by_chunk)
        return BookIndex(
            book_id=book.id,
            title=book.title,
            hebrew_title=book.hebrew_title,
            book_type=book.book_type,
            sections=sections,
            hierarchy=get_profile(book.book_type).build_hierarchy(sections),
            chunks=[
                ChunkReference(
                    id=chunk.id,
                    section_id=chunk.section_id,
                    reference=chunk.reference,
                    summary=f"{chunk.reference}: {chunk.text[:CHUNK_SUMMARY_PREVIEW_CHARS]}...",
                    keywords=keywords_by_chunk[chunk.id][: self._config.chunk_reference_keyword_cap],
                    themes=list(chunk.themes),
                    token_count=chunk.token_count,
                )
                for chunk in chunks
            ],
            thematic_map=self._build_thematic_map(chunks),
            cross_references=self._find_cross_references(sections, chunks),
            total_tokens=sum(chunk.token_count for chunk in chunks),
        )

    def _build_sections(
        self, chunks: list[Chunk], keywords_by_chunk: dict[str, list[str]]
    ) -> list[SectionInfo]:
        sections: dict[str, SectionInfo] = {}

        for chunk in chunks:
            section = sections.get(chunk.section_id)
            if section is None:
                section = SectionInfo(id=chunk.section_id, title=chunk.reference)
                sections[chunk.section_id] = section
            section.chunk_ids.append(chunk.id)
            section.token_count += chunk.token_count
            section.themes.extend(t for t in chunk.themes if t not in section.themes)
            section.keywords.extend(
                k for k in keywords_by_chunk[chunk.id] if k not in section.keywords
            )

        for section in sections.values():
            section.keywords = section.keywords[: self._config.section_keyword_cap]
            section.summary = (
                f"{section.title}: {', '.join(section.themes[:SECTION_SUMMARY_THEMES])}"
            )
        if self._embedder is not None:
            texts = [
                " ".join([s.title, *s.themes, *s.keywords]) for s in sections.values()
            ]
            for section, vector in zip(sections.values(), self._safe_embed_many(texts)):
                section.embedding = vector

        return list(sections.values())

    def _build_thematic_map(self, chunks: list[Chunk]) -> dict[str, list[str]]:
        thematic_map: dict[str, list[str]] = {}
        for chunk in chunks:
            for theme in chunk.themes:
                thematic_map.setdefault(theme, []).append(chunk.id)
        return thematic_map

    def _find_cross_references(
        self, sections: list[SectionInfo], chunks: list[Chunk]
    ) -> list[CrossReference]:
        """Theme links between every pair of sections, plus quote links.

        A quote link goes from a chunk's section to every other section whose
        text contains one of the chunk's citations verbatim.
        """
        cross_refs: list[CrossReference] = []

        for i, first in enumerate(sections):
            for second in sections[i + 1 :]:
                common = [t for t in first.themes if t in second.themes]
                if common:
                    cross_refs.append(
                        CrossReference(
                            from_section=first.id,
                            to_section=second.id,
                            ref_type="theme",
                            strength=len(common) / max(len(first.themes), len(second.themes)),
                        )
                    )

        seen: set[tuple[str, str]] = set()
        for chunk in chunks:
            for citation in chunk.citations:
                for other in chunks:
                    if other.section_id == chunk.section_id or citation.source not in other.text:
                        continue
                    link = (chunk.section_id, other.section_id)
                    if link in seen:
                        continue
                    seen.add(link)
                    cross_refs.append(
                        CrossReference(
                            from_section=chunk.section_id,
                            to_section=other.section_id,
                            ref_type="quote",
                            strength=self._config.quote_strength,
                        )
                    )

        return cross_refs

    # ── Level 1: master ─────────────────────────────────────────────────────

    def build_master_index(
        self, books: list[Book], book_indexes: dict[str, BookIndex]
    ) -> MasterIndex:
        """Summarise every book and build the corpus-wide lookup tables."""
        logger.info("Building master index")

        summaries: list[BookSummary] = []
        term_counts: dict[str, dict[str, int]] = {}
        thematic_map: dict[str, list[BookReference]] = {}
        total_tokens = 0
        dimensions: int | None = None

        for book in books:
            book_index = book_indexes.get(book.id)
            if book_index is None:
                continue

            top_themes = self._top_themes(book_index)
            summary = BookSummary(
                id=book.id,
                title=book.title,
                hebrew_title=book.hebrew_title,
                sections=len(book_index.sections),
                chunks=len(book_index.chunks),
                total_tokens=book_index.total_tokens,
                themes=top_themes,
                summary=(
                    f"{book.hebrew_title or book.title}: {len(book_index.sections)} sections, "
                    f"{len(book_index.chunks)} chunks. Main themes: {', '.join(top_themes)}"
                ),
            )
            if self._embedder is not None:
                summary.keyword_embeddings = self._keyword_embeddings(book_index, top_themes)
                if summary.keyword_embeddings and dimensions is None:
                    dimensions = len(summary.keyword_embeddings[0])
            summaries.append(summary)
            total_tokens += book_index.total_tokens

            self._count_terms(term_counts, book.id, book_index)
            for theme, chunk_ids in book_index.thematic_map.items():
                thematic_map.setdefault(theme, []).append(
                    BookReference(book_id=book.id, weight=len(chunk_ids) / len(book_index.chunks))
                )

        master = MasterIndex(
            total_books=len(summaries),
            total_tokens=total_tokens,
            books=summaries,
            search_index=self._build_search_index(term_counts, set(thematic_map)),
            thematic_map=thematic_map,
            embedding_dimensions=dimensions,
        )

        size = estimate_index_size(master)
        if size > self._config.master_token_budget:
            logger.warning(
                "Master index size (%d tokens) exceeds target of %d tokens",
                size,
                self._config.master_token_budget,
            )
            master = compress_master_index(master)

        logger.info("Master index built: %d books, %d total tokens", len(summaries), total_tokens)
        return master

    def _top_themes(self, book_index: BookIndex) -> list[str]:
        ranked = sorted(
            book_index.thematic_map.items(), key=lambda item: len(item[1]), reverse=True
        )
        return [theme for theme, _ in ranked[: self._config.top_themes]]

    def _count_terms(
        self, term_counts: dict[str, dict[str, int]], book_id: str, book_index: BookIndex
    ) -> None:
        """Accumulate per-book occurrence counts of themes and chunk keywords."""
        for theme, chunk_ids in book_index.thematic_map.items():
            per_book = term_counts.setdefault(theme, {})
            per_book[book_id] = per_book.get(book_id, 0) + len(chunk_ids)
        for chunk_ref in book_index.chunks:
            for keyword in chunk_ref.keywords:
                per_book = term_counts.setdefault(keyword, {})
                per_book[book_id] = per_book.get(book_id, 0) + 1

    def _build_search_index(
        self, term_counts: dict[str, dict[str, int]], themes: set[str]
    ) -> dict[str, list[KeywordPosting]]:
        """Keep themes, and keywords frequent enough across the whole corpus."""
        search_index: dict[str, list[KeywordPosting]] = {}
        for term, per_book in term_counts.items():
            total = sum(per_book.values())
            if term not in themes and total <= self._config.global_keyword_min_count:
                continue
            search_index[term] = [
                KeywordPosting(book_id=book_id, count=count) for book_id, count in per_book.items()
            ]
        return search_index

    def _keyword_embeddings(self, book_index: BookIndex, top_themes: list[str]) -> list[list[float]]:
        terms: list[str] = list(top_themes)
        for section in book_index.sections:
            terms.extend(k for k in section.keywords if k not in terms)
        vectors = self._safe_embed_many(terms[:KEYWORD_EMBEDDING_COUNT])
        return [v for v in vectors if v is not None]

    def _safe_embed(self, text: str) -> list[float] | None:
        try:
            return list(self._embedder.embed(text)) if self._embedder is not None else None
        except Exception:
            logger.warning("Embedding failed while indexing, continuing without it", exc_info=True)
            return None

    def _safe_embed_many(self, texts: list[str]) -> list[list[float] | None]:
        """Embed ``texts`` in one batch when the provider supports it."""
        embed_batch = getattr(self._embedder, "embed_batch", None)
        if embed_batch is None or not texts:
            return [self._safe_embed(text) for text in texts]
        try:
            return [list(vector) for vector in embed_batch(texts)]
        except Exception:
            logger.warning(
                "Batch embedding failed while indexing, continuing without it", exc_info=True
            )
            return [None] * len(texts)


def compress_book_index(index: BookIndex) -> BookIndex:
    """Shorten summaries and keyword lists of an oversized book index."""
    logger.warning("Compressing book index for %s", index.book_id)
    compressed = index.model_copy(deep=True)
    for chunk_ref in compressed.chunks:
        chunk_ref.summary = chunk_ref.summary[:50]
        chunk_ref.keywords = chunk_ref.keywords[:5]
    for section in compressed.sections:
        section.keywords = section.keywords[:10]
        section.summary = section.summary[:50]
    return compressed


def compress_master_index(index: MasterIndex) -> MasterIndex:
    """Shorten book summaries and posting lists of an oversized master index."""
    logger.warning("Compressing master index")
    compressed = index.model_copy(deep=True)
    for book in compressed.books:
        book.summary = book.summary[:100]
        book.themes = book.themes[:5]
    for term, postings in compressed.search_index.items():
        compressed.search_index[term] = postings[:10]
    return compressed
