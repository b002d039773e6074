"""Book and section data models."""

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

# Substrings of a book id that identify its type, checked in order.
BOOK_TYPE_MARKERS: dict[str, str] = {
    "likutey_moharan": "torah",
    "sippurei_maasiyot": "story",
    "tefilot": "prayer",
}


class BookType(str, Enum):
    """Structural family of a book, used to pick detection heuristics."""

    TORAH = "torah"
    STORY = "story"
    PRAYER = "prayer"
    GENERAL = "general"


class Section(BaseModel):
    """One ordered section of a book, as delivered by the extraction pipeline."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = ""
    title: str = ""
    hebrew_text: str = Field(
        default="", validation_alias=AliasChoices("hebrew_text", "hebrewText")
    )
    english_text: str | None = Field(
        default=None, validation_alias=AliasChoices("english_text", "englishText")
    )
    french_text: str | None = Field(
        default=None, validation_alias=AliasChoices("french_text", "frenchText")
    )
    reference: str
    index: int

    @property
    def primary_text(self) -> str:
        """The text used for token estimation and heuristics (Hebrew first)."""
        return self.hebrew_text or self.english_text or self.french_text or ""


class Book(BaseModel):
    """An ingested book: titles plus its ordered sections. Immutable."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    title: str
    hebrew_title: str = Field(
        default="", validation_alias=AliasChoices("hebrew_title", "hebrewTitle")
    )
    book_type: BookType = Field(
        default=BookType.GENERAL, validation_alias=AliasChoices("book_type", "bookType")
    )
    sections: list[Section] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _infer_book_type(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("book_type") or data.get("bookType"):
            return data
        book_id = str(data.get("id", ""))
        for marker, book_type in BOOK_TYPE_MARKERS.items():
            if marker in book_id:
                return {**data, "book_type": book_type}
        return data

    @model_validator(mode="after")
    def _check_section_order(self) -> "Book":
        indices = [s.index for s in self.sections]
        if any(b <= a for a, b in zip(indices, indices[1:])):
            raise ValueError(f"Section indices of book '{self.id}' are not strictly increasing")
        return self
