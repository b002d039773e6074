"""On-disk persistence of index sets.

Layout of an index directory::

    CURRENT                      name of the live build
    builds/<build>/master/index.json
    builds/<build>/books/<book_id>.json
    builds/<build>/chunks/<book_id>.json

A save writes a complete new build directory and then replaces
``CURRENT`` with ``os.replace``, so readers see either the previous build
or the new one, never a mix.
"""

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from pydantic import TypeAdapter, ValidationError

from breslov_rag.errors import IndexStoreError
from breslov_rag.models.indexes import BookIndex, ChunkIndexEntry, IndexSet, MasterIndex

logger = logging.getLogger(__name__)

CURRENT_FILE = "CURRENT"
BUILDS_DIR = "builds"

_chunk_list = TypeAdapter(list[ChunkIndexEntry])


class IndexStore:
    """Saves and loads complete index sets.

    Args:
        index_dir: Root directory of the persisted indexes.
        keep_builds: Number of builds (including the live one) kept on disk.
    """

    def __init__(self, index_dir: str | Path, keep_builds: int = 2) -> None:
        self._root = Path(index_dir)
        self._keep_builds = max(keep_builds, 1)

    def save(self, index_set: IndexSet) -> str:
        """Write ``index_set`` as a new build and make it the live one.

        Returns:
            The name of the new build.
        """
        build_name = f"{datetime.now():%Y%m%dT%H%M%S%f}-{uuid4().hex[:8]}"
        build_dir = self._root / BUILDS_DIR / build_name

        (build_dir / "master").mkdir(parents=True)
        (build_dir / "books").mkdir()
        (build_dir / "chunks").mkdir()

        (build_dir / "master" / "index.json").write_text(
            index_set.master.model_dump_json(indent=2), encoding="utf-8"
        )
        for book_id, book_index in index_set.book_indexes.items():
            (build_dir / "books" / f"{book_id}.json").write_text(
                book_index.model_dump_json(indent=2), encoding="utf-8"
            )

        by_book: dict[str, list[ChunkIndexEntry]] = {}
        for entry in index_set.chunk_indexes.values():
            by_book.setdefault(entry.book_id, []).append(entry)
        for book_id, entries in by_book.items():
            (build_dir / "chunks" / f"{book_id}.json").write_bytes(
                _chunk_list.dump_json(entries, indent=2)
            )

        pointer_tmp = self._root / f"{CURRENT_FILE}.{uuid4().hex[:8]}.tmp"
        pointer_tmp.write_text(build_name, encoding="utf-8")
        os.replace(pointer_tmp, self._root / CURRENT_FILE)

        logger.info("Saved index build %s to %s", build_name, self._root)
        self._prune_builds(build_name)
        return build_name

    def load(self) -> IndexSet:
        """Read the live build into a new IndexSet.

        Raises:
            IndexStoreError: If no build was saved or a file is unreadable.
        """
        build_dir = self._current_build_dir()
        try:
            master = MasterIndex.model_validate_json(
                (build_dir / "master" / "index.json").read_text(encoding="utf-8")
            )
            book_indexes: dict[str, BookIndex] = {}
            for path in sorted((build_dir / "books").glob("*.json")):
                book_index = BookIndex.model_validate_json(path.read_text(encoding="utf-8"))
                book_indexes[book_index.book_id] = book_index

            chunk_indexes: dict[str, ChunkIndexEntry] = {}
            for path in sorted((build_dir / "chunks").glob("*.json")):
                for entry in _chunk_list.validate_json(path.read_bytes()):
                    chunk_indexes[entry.chunk_id] = entry
        except (OSError, ValidationError) as e:
            raise IndexStoreError(f"Failed to load indexes from {build_dir}: {e}") from e

        logger.info(
            "Loaded indexes from %s: %d books, %d chunks",
            build_dir.name,
            len(book_indexes),
            len(chunk_indexes),
        )
        return IndexSet(master=master, book_indexes=book_indexes, chunk_indexes=chunk_indexes)

    def current_build(self) -> str | None:
        pointer = self._root / CURRENT_FILE
        if not pointer.exists():
            return None
        return pointer.read_text(encoding="utf-8").strip() or None

    def _current_build_dir(self) -> Path:
        build_name = self.current_build()
        if build_name is None:
            raise IndexStoreError(f"No index build found in {self._root}")
        build_dir = self._root / BUILDS_DIR / build_name
        if not build_dir.is_dir():
            raise IndexStoreError(f"Index build directory missing: {build_dir}")
        return build_dir

    def _prune_builds(self, live_build: str) -> None:
        builds = sorted(p for p in (self._root / BUILDS_DIR).iterdir() if p.is_dir())
        stale = [p for p in builds if p.name != live_build][: max(len(builds) - self._keep_builds, 0)]
        for path in stale:
            shutil.rmtree(path, ignore_errors=True)
            logger.debug("Removed old index build %s", path.name)
