"""Hierarchical router: master index → book index → chunks.

A query descends the three tiers, narrowing from books to sections to
chunks, and stops adding chunks once the token budget is used up::

    cache check → level 1 (books) → level 2 (sections) → level 3 (chunks)
                → confidence

Levels 1 and 2 return an empty ``NoResults`` result when nothing clears
the score floor.
"""

import hashlib
import logging
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor

from pydantic import BaseModel

from breslov_rag.config import RoutingConfig
from breslov_rag.embeddings import EmbeddingProvider, TimeoutEmbedder, cosine_similarity
from breslov_rag.errors import IndexNotLoadedError
from breslov_rag.indexing.keywords import extract_query_keywords
from breslov_rag.models.chunk import Chunk, ChunkContent
from breslov_rag.models.indexes import BookSummary, IndexSet, MasterIndex
from breslov_rag.models.route_result import (
    STRATEGY_HIERARCHICAL,
    BookScore,
    RouteResult,
    SectionCandidate,
)
from breslov_rag.storage.cache import ResultCache
from breslov_rag.storage.chunk_store import ChunkStore
from breslov_rag.storage.index_store import IndexStore

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."
CONFIDENCE_FULL_CHUNK_COUNT = 10


class RouteOptions(BaseModel):
    """Per-call overrides of the router configuration."""

    max_tokens: int | None = None
    use_cache: bool = True


def cache_key(query: str, max_tokens: int) -> str:
    """Cache key of a query routed under a given token budget."""
    digest = hashlib.md5(query.encode("utf-8")).hexdigest()
    return f"route:{digest}:{max_tokens}"


def truncate_chunk(chunk: Chunk, max_tokens: int) -> Chunk:
    """Cut every language of a chunk to the fraction that fits ``max_tokens``.

    The truncated copy keeps the chunk's id and reference, ends with a
    ``...`` marker and reports exactly ``max_tokens`` tokens.
    """
    ratio = max_tokens / chunk.token_count if chunk.token_count else 0.0

    def cut(text: str | None) -> str | None:
        if text is None:
            return None
        return text[: math.floor(len(text) * ratio)] + TRUNCATION_MARKER

    content = ChunkContent(
        hebrew=cut(chunk.content.hebrew),
        english=cut(chunk.content.english),
        french=cut(chunk.content.french),
    )
    return chunk.model_copy(update={"content": content, "token_count": max_tokens})


def explain_book_relevance(
    book: BookSummary, lexical: float, thematic: float, semantic: float
) -> str:
    """Human-readable reason for selecting a book at level 1."""
    reasons: list[str] = []
    if lexical > 0.2:
        reasons.append("Strong keyword match")
    if thematic > 0.3:
        reasons.append(f"Relevant themes: {', '.join(book.themes[:3])}")
    if semantic > 0.5:
        reasons.append("High semantic similarity")
    return "; ".join(reasons) or "General relevance"


class HierarchicalRouter:
    """Routes queries through a loaded IndexSet.

    The router holds one immutable IndexSet at a time. ``route`` reads the
    current snapshot once at the start of the call, so a concurrent
    ``load_indexes`` or ``reload`` never exposes a half-swapped index.

    Args:
        config: RoutingConfig with weights, floors and budgets.
        chunk_store: Source of full chunk content for level 3.
        cache: Optional result cache shared between router instances.
        embedder: Optional embedding provider; it is called with a timeout
                  and any failure degrades scoring to lexical and thematic.
        cache_ttl: Seconds a cached result stays valid.
    """

    def __init__(
        self,
        config: RoutingConfig,
        chunk_store: ChunkStore,
        cache: ResultCache | None = None,
        embedder: EmbeddingProvider | None = None,
        cache_ttl: int = 3600,
    ) -> None:
        self._config = config
        self._chunk_store = chunk_store
        self._cache = cache
        self._cache_ttl = cache_ttl
        self._embedder = (
            TimeoutEmbedder(embedder, config.embedding_timeout_seconds)
            if embedder is not None
            else None
        )
        self._io_pool = ThreadPoolExecutor(
            max_workers=config.max_workers, thread_name_prefix="chunk-loader"
        )
        self._index_set: IndexSet | None = None

    # ── Index lifecycle ─────────────────────────────────────────────────────

    def load_indexes(self, index_set: IndexSet) -> None:
        """Make ``index_set`` the snapshot served by subsequent queries."""
        self._index_set = index_set
        logger.info(
            "Loaded indexes: %d books, %d chunks",
            len(index_set.book_indexes),
            len(index_set.chunk_indexes),
        )

    def reload(self, index_store: IndexStore) -> None:
        """Load the live build from ``index_store`` and swap it in.

        The current snapshot keeps serving if loading fails.
        """
        self.load_indexes(index_store.load())

    @property
    def is_loaded(self) -> bool:
        return self._index_set is not None

    def close(self) -> None:
        self._io_pool.shutdown(wait=False, cancel_futures=True)
        if self._embedder is not None:
            self._embedder.close()

    # ── Routing ─────────────────────────────────────────────────────────────

    def route(self, query: str, options: RouteOptions | None = None) -> RouteResult:
        """Assemble a token-bounded context for ``query``.

        Args:
            query: Natural-language query (French, English or Hebrew).
            options: Token budget and cache overrides.

        Returns:
            RouteResult with chunks ordered by descending relevance.

        Raises:
            IndexNotLoadedError: If no IndexSet has been loaded yet.
        """
        index_set = self._index_set
        if index_set is None:
            raise IndexNotLoadedError("Indexes not loaded; call load_indexes() or reload() first")

        opts = options or RouteOptions()
        max_tokens = opts.max_tokens if opts.max_tokens is not None else self._config.max_tokens
        use_cache = opts.use_cache and self._cache is not None
        key = cache_key(query, max_tokens)
        start = time.perf_counter()

        logger.info("Routing query: %r", query[:50])

        if use_cache:
            cached = self._get_cached(key)
            if cached is not None:
                logger.info("Returning cached result")
                return cached.model_copy(
                    update={"from_cache": True, "duration_ms": _elapsed_ms(start)}
                )

        query_embedding = self._embed_query(query)
        degraded = self._embedder is not None and query_embedding is None
        query_keywords = extract_query_keywords(query)

        # Level 1
        books = self._search_master_index(index_set.master, query_keywords, query_embedding)
        if not books:
            logger.info("No relevant books found")
            return self._empty_result(query, degraded, start)

        # Level 2
        sections = self._search_book_indexes(index_set, books, query_keywords, query_embedding)
        if not sections:
            logger.info("No relevant sections found")
            return self._empty_result(query, degraded, start)

        # Level 3
        chunks, total_tokens = self._retrieve_chunks(sections, max_tokens)
        confidence = self._calculate_confidence(chunks, query_keywords)

        result = RouteResult(
            query=query,
            books=books,
            sections=sections,
            chunks=chunks,
            total_tokens=total_tokens,
            confidence=confidence,
            strategy=STRATEGY_HIERARCHICAL,
            degraded=degraded,
            duration_ms=_elapsed_ms(start),
        )

        if use_cache:
            self._set_cached(key, result)

        logger.info(
            "Routing completed in %dms: %d chunks, %d tokens, confidence %.2f",
            result.duration_ms,
            len(chunks),
            total_tokens,
            confidence,
        )
        return result

    def route_many(
        self, queries: list[str], options: RouteOptions | None = None
    ) -> list[RouteResult]:
        """Route several queries concurrently; results keep the query order."""
        if not queries:
            return []
        workers = min(self._config.max_workers, len(queries))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="router") as executor:
            return list(executor.map(lambda q: self.route(q, options), queries))

    # ── Level 1: master index ───────────────────────────────────────────────

    def _search_master_index(
        self,
        master: MasterIndex,
        query_keywords: list[str],
        query_embedding: list[float] | None,
    ) -> list[BookScore]:
        cfg = self._config

        lexical: dict[str, float] = {}
        for keyword in query_keywords:
            for posting in master.search_index.get(keyword, []):
                lexical[posting.book_id] = (
                    lexical.get(posting.book_id, 0.0) + posting.count / cfg.lexical_normalizer
                )

        thematic: dict[str, float] = {}
        for keyword in query_keywords:
            for ref in master.thematic_map.get(keyword, []):
                thematic[ref.book_id] = thematic.get(ref.book_id, 0.0) + ref.weight

        semantic: dict[str, float] = {}
        if query_embedding is not None:
            for book in master.books:
                if book.keyword_embeddings:
                    semantic[book.id] = max(
                        cosine_similarity(query_embedding, emb) for emb in book.keyword_embeddings
                    )

        scores: list[BookScore] = []
        for book in master.books:
            if book.id not in lexical and book.id not in thematic and book.id not in semantic:
                continue
            lexical_score = min(lexical.get(book.id, 0.0), 1.0)
            thematic_score = min(thematic.get(book.id, 0.0), 1.0)
            semantic_score = semantic.get(book.id, 0.0)

            total = (
                cfg.lexical_weight * lexical_score
                + cfg.thematic_weight * thematic_score
                + cfg.semantic_weight * semantic_score
            )
            if total > cfg.book_score_floor:
                scores.append(
                    BookScore(
                        book_id=book.id,
                        title=book.title,
                        score=total,
                        reason=explain_book_relevance(
                            book, lexical_score, thematic_score, semantic_score
                        ),
                    )
                )

        scores.sort(key=lambda s: s.score, reverse=True)
        logger.debug("Level 1 kept %d of %d books", len(scores), len(master.books))
        return scores[: cfg.top_books]

    # ── Level 2: book indexes ───────────────────────────────────────────────

    def _search_book_indexes(
        self,
        index_set: IndexSet,
        books: list[BookScore],
        query_keywords: list[str],
        query_embedding: list[float] | None,
    ) -> list[SectionCandidate]:
        cfg = self._config
        candidates: list[SectionCandidate] = []

        for book in books:
            book_index = index_set.book_indexes.get(book.book_id)
            if book_index is None:
                logger.warning("No book index for %s, skipping", book.book_id)
                continue

            scored: list[SectionCandidate] = []
            for section in book_index.sections:
                keyword_hits = sum(1 for kw in query_keywords if kw in section.keywords)
                theme_hits = sum(1 for kw in query_keywords if kw in section.themes)
                score = (
                    cfg.section_keyword_weight * keyword_hits
                    + cfg.section_theme_weight * theme_hits
                )
                if query_embedding is not None and section.embedding:
                    score += cfg.section_semantic_weight * cosine_similarity(
                        query_embedding, section.embedding
                    )
                score *= book.score

                if score > cfg.section_score_floor:
                    scored.append(
                        SectionCandidate(
                            book_id=book.book_id,
                            section_id=section.id,
                            score=score,
                            chunk_ids=list(section.chunk_ids),
                        )
                    )

            scored.sort(key=lambda c: c.score, reverse=True)
            candidates.extend(scored[: cfg.sections_per_book])

        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[: cfg.top_sections]

    # ── Level 3: chunks ─────────────────────────────────────────────────────

    def _retrieve_chunks(
        self, candidates: list[SectionCandidate], max_tokens: int
    ) -> tuple[list[Chunk], int]:
        """Accumulate chunks of the candidate sections up to ``max_tokens``.

        Section loads are submitted to the I/O pool up front and consumed
        in score order; loads still pending when the budget is reached are
        cancelled.
        """
        cfg = self._config
        futures: list[Future[list[Chunk]]] = [
            self._io_pool.submit(self._load_section_chunks, candidate) for candidate in candidates
        ]
        chunks: list[Chunk] = []
        total_tokens = 0

        try:
            for future in futures:
                for chunk in future.result():
                    if total_tokens + chunk.token_count > max_tokens:
                        remaining = max_tokens - total_tokens
                        if remaining > cfg.partial_chunk_min_tokens:
                            partial = truncate_chunk(chunk, remaining)
                            chunks.append(partial)
                            total_tokens += partial.token_count
                        logger.info("Token limit reached: %d/%d", total_tokens, max_tokens)
                        return chunks, total_tokens

                    chunks.append(chunk)
                    total_tokens += chunk.token_count

                if total_tokens > max_tokens * cfg.sufficient_context_ratio:
                    logger.info("Sufficient context gathered: %d tokens", total_tokens)
                    break
        finally:
            for future in futures:
                future.cancel()

        return chunks, total_tokens

    def _load_section_chunks(self, candidate: SectionCandidate) -> list[Chunk]:
        try:
            found = self._chunk_store.get_many(candidate.chunk_ids)
        except Exception:
            logger.warning(
                "Chunk store failed for section %s, skipping it",
                candidate.section_id,
                exc_info=True,
            )
            return []
        chunks: list[Chunk] = []
        for chunk_id in candidate.chunk_ids:
            chunk = found.get(chunk_id)
            if chunk is None:
                logger.warning(
                    "Chunk %s of section %s missing from store, skipping",
                    chunk_id,
                    candidate.section_id,
                )
                continue
            chunks.append(chunk)
        return chunks

    # ── Scoring helpers ─────────────────────────────────────────────────────

    def _calculate_confidence(self, chunks: list[Chunk], query_keywords: list[str]) -> float:
        cfg = self._config
        if not chunks:
            return 0.0

        confidence = cfg.confidence_count_weight * min(
            len(chunks) / CONFIDENCE_FULL_CHUNK_COUNT, 1.0
        )

        if query_keywords:
            texts = [chunk.text.lower() for chunk in chunks]
            themes = {theme for chunk in chunks for theme in chunk.themes}
            covered = sum(1 for kw in query_keywords if any(kw in text for text in texts))
            aligned = sum(1 for kw in query_keywords if kw in themes)
            confidence += cfg.confidence_keyword_weight * covered / len(query_keywords)
            confidence += cfg.confidence_theme_weight * aligned / len(query_keywords)

        return min(max(confidence, 0.0), 1.0)

    def _embed_query(self, query: str) -> list[float] | None:
        if self._embedder is None:
            return None
        return self._embedder.embed(query)

    # ── Cache ───────────────────────────────────────────────────────────────

    def _get_cached(self, key: str) -> RouteResult | None:
        try:
            payload = self._cache.get(key)
            if payload is None:
                return None
            return RouteResult.model_validate_json(payload)
        except Exception:
            logger.warning("Cache retrieval error, routing without cache", exc_info=True)
            return None

    def _set_cached(self, key: str, result: RouteResult) -> None:
        try:
            self._cache.set(key, result.model_dump_json(), self._cache_ttl)
        except Exception:
            logger.warning("Cache storage error", exc_info=True)

    def _empty_result(self, query: str, degraded: bool, start: float) -> RouteResult:
        result = RouteResult.empty(query)
        return result.model_copy(update={"degraded": degraded, "duration_ms": _elapsed_ms(start)})


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
