"""Tests for the book loader."""

import json
from pathlib import Path

import pytest

from breslov_rag.errors import BookValidationError
from breslov_rag.ingestion.loader import BookLoader, strip_markup
from breslov_rag.models import BookType

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "books"


@pytest.fixture
def loader() -> BookLoader:
    return BookLoader()


def _write_book(path: Path, data: dict, encoding: str = "utf-8") -> Path:
    path.write_bytes(json.dumps(data, ensure_ascii=False).encode(encoding))
    return path


class TestBookLoader:
    def test_load_fixture(self, loader: BookLoader) -> None:
        book = loader.load(FIXTURES_DIR / "likutey_moharan.json")

        assert book.id == "likutey_moharan"
        assert book.hebrew_title == 'ליקוטי מוהר"ן'
        assert book.book_type == BookType.TORAH
        assert [s.index for s in book.sections] == [0, 1, 2]

    def test_markup_stripped(self, loader: BookLoader) -> None:
        book = loader.load(FIXTURES_DIR / "likutey_moharan.json")
        first = book.sections[0].hebrew_text

        assert "<b>" not in first
        assert first.startswith("אשרי תמימי דרך")
        assert "\n" in first

    def test_list_text_joined(self, loader: BookLoader) -> None:
        book = loader.load(FIXTURES_DIR / "likutey_moharan.json")
        assert book.sections[1].hebrew_text == "וזה בחינת שמחה של מצוה"

    def test_missing_reference_defaults_to_title(self, loader: BookLoader) -> None:
        book = loader.load(FIXTURES_DIR / "likutey_moharan.json")
        assert book.sections[2].reference == "תורה ב"

    def test_id_defaults_to_file_stem(self, loader: BookLoader, tmp_path: Path) -> None:
        path = _write_book(
            tmp_path / "sippurei_maasiyot.json",
            {"title": "Tales", "sections": [{"hebrewText": "מעשה במלך", "reference": "1"}]},
        )
        book = loader.load(path)
        assert book.id == "sippurei_maasiyot"
        assert book.book_type == BookType.STORY
        assert book.sections[0].index == 0

    def test_windows_1255_file(self, loader: BookLoader, tmp_path: Path) -> None:
        data = {
            "id": "sichot",
            "title": "Sichot",
            "sections": [
                {
                    "hebrewText": "שלום עולם, אמר רבינו שצריך להיות בשמחה תמיד " * 5,
                    "reference": "Sichot 1",
                }
            ],
        }
        path = _write_book(tmp_path / "sichot.json", data, encoding="windows-1255")

        book = loader.load(path)
        assert "שלום" in book.sections[0].hebrew_text

    def test_load_directory_sorted(self, loader: BookLoader, tmp_path: Path) -> None:
        for name in ("b_book", "a_book"):
            _write_book(tmp_path / f"{name}.json", {"title": name, "sections": []})
        (tmp_path / "notes.txt").write_text("ignored")

        books = loader.load_directory(tmp_path)
        assert [b.id for b in books] == ["a_book", "b_book"]

    def test_file_not_found(self, loader: BookLoader) -> None:
        with pytest.raises(FileNotFoundError):
            loader.load("/nonexistent/book.json")

    def test_invalid_json(self, loader: BookLoader, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(BookValidationError, match="Invalid JSON"):
            loader.load(path)

    def test_non_object_rejected(self, loader: BookLoader, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(BookValidationError):
            loader.load(path)

    def test_unordered_sections_rejected(self, loader: BookLoader, tmp_path: Path) -> None:
        path = _write_book(
            tmp_path / "book.json",
            {
                "title": "B",
                "sections": [
                    {"hebrewText": "א", "reference": "1", "index": 5},
                    {"hebrewText": "ב", "reference": "2", "index": 1},
                ],
            },
        )
        with pytest.raises(BookValidationError, match="Invalid book"):
            loader.load(path)


class TestStripMarkup:
    def test_plain_text_untouched(self) -> None:
        assert strip_markup("אין כאן תגיות") == "אין כאן תגיות"

    def test_tags_removed(self) -> None:
        assert strip_markup("<b>בוקר</b> טוב") == "בוקר טוב"

    def test_line_breaks_kept(self) -> None:
        assert strip_markup("שורה<br>שנייה") == "שורה\nשנייה"
