"""Chunk stores: key-value access from chunk id to full chunk content."""

import logging
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from breslov_rag.errors import MissingDataError
from breslov_rag.models.chunk import Chunk
from breslov_rag.storage.database import get_connection, initialize_database

logger = logging.getLogger(__name__)


class ChunkStore(Protocol):
    """Retrieval surface used by the router's chunk level."""

    def put_many(self, chunks: Iterable[Chunk]) -> None: ...

    def get(self, chunk_id: str) -> Chunk: ...

    def get_many(self, chunk_ids: list[str]) -> dict[str, Chunk]: ...


class InMemoryChunkStore:
    """Dictionary-backed store, for tests and single-process serving."""

    def __init__(self, chunks: Iterable[Chunk] = ()) -> None:
        self._chunks: dict[str, Chunk] = {}
        self._lock = threading.Lock()
        self.put_many(chunks)

    def put_many(self, chunks: Iterable[Chunk]) -> None:
        with self._lock:
            for chunk in chunks:
                self._chunks[chunk.id] = chunk

    def get(self, chunk_id: str) -> Chunk:
        try:
            return self._chunks[chunk_id]
        except KeyError:
            raise MissingDataError(f"Chunk not found: {chunk_id}") from None

    def get_many(self, chunk_ids: list[str]) -> dict[str, Chunk]:
        return {cid: self._chunks[cid] for cid in chunk_ids if cid in self._chunks}

    def __len__(self) -> int:
        return len(self._chunks)


class SqliteChunkStore:
    """Chunks persisted as JSON payloads in the ``chunks`` table.

    Args:
        db_path: Path to the SQLite database file (created if missing).
    """

    def __init__(self, db_path: str | Path) -> None:
        initialize_database(db_path)
        self._conn = get_connection(db_path)
        self._lock = threading.Lock()

    def put_many(self, chunks: Iterable[Chunk]) -> None:
        rows = [
            (c.id, c.book_id, c.reference, c.token_count, c.model_dump_json()) for c in chunks
        ]
        with self._lock:
            self._conn.executemany(
                "INSERT OR REPLACE INTO chunks (id, book_id, reference, token_count, payload) "
                "VALUES (?, ?, ?, ?, ?)",
                rows,
            )
            self._conn.commit()
        logger.debug("Stored %d chunks", len(rows))

    def get(self, chunk_id: str) -> Chunk:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
        if row is None:
            raise MissingDataError(f"Chunk not found: {chunk_id}")
        try:
            return Chunk.model_validate_json(row["payload"])
        except ValidationError as e:
            raise MissingDataError(f"Chunk unreadable: {chunk_id}") from e

    def get_many(self, chunk_ids: list[str]) -> dict[str, Chunk]:
        if not chunk_ids:
            return {}
        placeholders = ", ".join("?" for _ in chunk_ids)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT id, payload FROM chunks WHERE id IN ({placeholders})", chunk_ids
            ).fetchall()
        found: dict[str, Chunk] = {}
        for row in rows:
            try:
                found[row["id"]] = Chunk.model_validate_json(row["payload"])
            except ValidationError:
                logger.warning("Unreadable payload for chunk %s, skipping", row["id"], exc_info=True)
        return found

    def delete_stale(self, book_id: str, live_ids: Iterable[str]) -> int:
        """Remove chunks of a book that are not in ``live_ids``.

        Returns:
            Number of rows removed.
        """
        live = set(live_ids)
        with self._lock:
            rows = self._conn.execute(
                "SELECT id FROM chunks WHERE book_id = ?", (book_id,)
            ).fetchall()
            stale = [(row["id"],) for row in rows if row["id"] not in live]
            self._conn.executemany("DELETE FROM chunks WHERE id = ?", stale)
            self._conn.commit()
        return len(stale)

    def close(self) -> None:
        self._conn.close()
