"""Entry point for the Breslov RAG engine.

Usage:
    python run.py build               # books → chunks → indexes
    python run.py query "la joie"     # route a query and print the result
"""

import argparse
import logging
from pathlib import Path

from breslov_rag.config import AppConfig, load_config
from breslov_rag.embeddings import build_embedder
from breslov_rag.errors import IndexStoreError
from breslov_rag.indexing.builder import IndexBuilder
from breslov_rag.ingestion.chunker import SemanticChunker
from breslov_rag.ingestion.loader import BookLoader
from breslov_rag.retrieval.router import HierarchicalRouter, RouteOptions
from breslov_rag.storage.cache import build_cache
from breslov_rag.storage.chunk_store import SqliteChunkStore
from breslov_rag.storage.index_store import IndexStore

logger = logging.getLogger(__name__)


def build(config: AppConfig) -> None:
    """Chunk every book, persist the chunks and write a new index build.

    Chunk rows referenced by the previous build stay in the store until the
    build after this one, so a server that has not reloaded yet keeps
    finding them.
    """
    books = BookLoader().load_directory(config.storage.books_dir)
    if not books:
        logger.warning("No books found in %s", config.storage.books_dir)
        return

    index_store = IndexStore(config.storage.index_dir)
    chunker = SemanticChunker(config.chunking)
    chunk_store = SqliteChunkStore(config.storage.sqlite_path)
    try:
        # Chunk ids hash their content, so new rows sit beside the ones the
        # live build still points to.
        chunks_per_book = {}
        for book in books:
            chunks = chunker.chunk_book(book)
            chunk_store.put_many(chunks)
            chunks_per_book[book.id] = chunks

        builder = IndexBuilder(config.indexing, embedder=build_embedder(config.embedding))
        index_set = builder.build_all_indexes(books, chunks_per_book)
        previous_ids = _live_chunk_ids(index_store)
        index_store.save(index_set)

        for book_id, chunks in chunks_per_book.items():
            keep = previous_ids | {c.id for c in chunks}
            removed = chunk_store.delete_stale(book_id, keep)
            if removed:
                logger.info("Removed %d stale chunks of %s", removed, book_id)
    finally:
        chunk_store.close()


def _live_chunk_ids(index_store: IndexStore) -> set[str]:
    if index_store.current_build() is None:
        return set()
    try:
        return set(index_store.load().chunk_indexes)
    except IndexStoreError:
        logger.warning("Previous index build unreadable, keeping only new chunks", exc_info=True)
        return set()


def query(config: AppConfig, text: str, max_tokens: int | None, use_cache: bool) -> None:
    """Route one query against the live index build and print it as JSON."""
    chunk_store = SqliteChunkStore(config.storage.sqlite_path)
    router = HierarchicalRouter(
        config.routing,
        chunk_store,
        cache=build_cache(config.cache, config.storage.sqlite_path),
        embedder=build_embedder(config.embedding),
        cache_ttl=config.cache.ttl_seconds,
    )
    try:
        router.reload(IndexStore(config.storage.index_dir))
        result = router.route(text, RouteOptions(max_tokens=max_tokens, use_cache=use_cache))
        print(result.model_dump_json(indent=2, exclude={"chunks": {"__all__": {"embedding"}}}))
    finally:
        router.close()
        chunk_store.close()


def main() -> None:
    """Parse arguments, configure logging and run the requested command."""
    parser = argparse.ArgumentParser(description="Breslov books retrieval engine")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("build", help="Chunk books and build the three index tiers")

    query_parser = subparsers.add_parser("query", help="Route a query through the indexes")
    query_parser.add_argument("text", help="Query text")
    query_parser.add_argument("--max-tokens", type=int, default=None)
    query_parser.add_argument("--no-cache", action="store_true")

    args = parser.parse_args()
    config = load_config(args.config)
    logging.basicConfig(level=config.logging.level, format=config.logging.format)

    # Ensure required directories exist
    Path(config.storage.index_dir).mkdir(parents=True, exist_ok=True)
    Path(config.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    if args.command == "build":
        build(config)
    else:
        query(config, args.text, args.max_tokens, not args.no_cache)


if __name__ == "__main__":
    main()
