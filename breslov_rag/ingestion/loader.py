"""Loader for extracted book files (JSON exports of the extraction pipeline)."""

import json
import logging
from pathlib import Path
from typing import Any

import chardet
from bs4 import BeautifulSoup
from pydantic import ValidationError

from breslov_rag.errors import BookValidationError
from breslov_rag.models.book import Book

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("hebrewText", "englishText", "frenchText", "hebrew_text", "english_text", "french_text")


class BookLoader:
    """Reads extracted book JSON files into validated ``Book`` models.

    The extraction pipeline stores each book as
    ``{"id", "title", "hebrewTitle", "sections": [...]}`` where section
    text may still carry Sefaria HTML markup (``<b>``, ``<br>``...). The
    loader decodes the file, strips markup and validates the result.
    """

    def load(self, file_path: str | Path) -> Book:
        """Load one book file.

        Args:
            file_path: Path to the book JSON file.

        Returns:
            The validated Book.

        Raises:
            FileNotFoundError: If file_path does not exist.
            BookValidationError: If the file is not a valid book.
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

        try:
            data = json.loads(self._read_text(path))
        except json.JSONDecodeError as e:
            raise BookValidationError(f"Invalid JSON in {path}: {e}") from e

        if not isinstance(data, dict):
            raise BookValidationError(f"Expected a JSON object in {path}")

        data.setdefault("id", path.stem)
        data["sections"] = [
            self._clean_section(section, position)
            for position, section in enumerate(data.get("sections") or [])
        ]

        try:
            book = Book.model_validate(data)
        except ValidationError as e:
            raise BookValidationError(f"Invalid book in {path}: {e}") from e

        logger.info("Loaded book %s (%d sections) from %s", book.id, len(book.sections), path)
        return book

    def load_directory(self, directory: str | Path) -> list[Book]:
        """Load every ``*.json`` book of a directory, sorted by file name."""
        return [self.load(path) for path in sorted(Path(directory).glob("*.json"))]

    def _clean_section(self, section: Any, position: int) -> Any:
        if not isinstance(section, dict):
            return section
        cleaned = dict(section)
        for field in TEXT_FIELDS:
            value = cleaned.get(field)
            if isinstance(value, list):
                value = " ".join(str(v) for v in value)
            if isinstance(value, str):
                cleaned[field] = strip_markup(value)
        cleaned.setdefault("index", position)
        cleaned.setdefault("reference", cleaned.get("title") or f"Section {position + 1}")
        return cleaned

    def _read_text(self, file_path: Path) -> str:
        """Read a text file with encoding detection.

        Tries UTF-8 first, then uses chardet for fallback detection.
        Handles UTF-8, UTF-16, and Windows-1255 encodings.

        Args:
            file_path: Path to the text file.

        Returns:
            The file content as a string.
        """
        # Try UTF-8 first
        try:
            return file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            pass

        raw_bytes = file_path.read_bytes()
        detected = chardet.detect(raw_bytes)
        encoding = detected.get("encoding") or "utf-8"
        confidence = detected.get("confidence", 0)

        if confidence < 0.7:
            logger.warning(
                "Low confidence encoding detection for %s: %s (%.0f%%)",
                file_path,
                encoding,
                confidence * 100,
            )

        try:
            return raw_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            # Last resort: windows-1255 (common Hebrew encoding)
            try:
                return raw_bytes.decode("windows-1255")
            except UnicodeDecodeError:
                logger.error("Failed to decode file: %s", file_path)
                return raw_bytes.decode("utf-8", errors="replace")


def strip_markup(text: str) -> str:
    """Remove HTML tags from section text, keeping line breaks."""
    if "<" not in text:
        return text
    soup = BeautifulSoup(text, "lxml")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    return soup.get_text()
