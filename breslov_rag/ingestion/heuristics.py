"""Book-type-specific detection heuristics.

Unit boundaries, themes and citations are found by plain string matching
against the tables below. Each book type gets a ``BookProfile``; the
chunker and index builder only talk to the profile, so a new family of
books can be supported by registering another profile.
"""

import math
import re

from breslov_rag.models.book import BookType, Section
from breslov_rag.models.chunk import Citation
from breslov_rag.models.indexes import HierarchyNode, SectionInfo

# Characters inspected at the start of a section when looking for markers.
MARKER_WINDOW = 100
TITLE_WINDOW = 50

CHARS_PER_TOKEN = 4

UNIT_PART_SUFFIX = re.compile(r"_part\d+$")

THEME_KEYWORDS: dict[str, list[str]] = {
    "תפילה": ["תפילה", "להתפלל", "תפלה"],
    "שמחה": ["שמחה", "לשמוח", "שמח"],
    "אמונה": ["אמונה", "להאמין", "מאמין"],
    "תשובה": ["תשובה", "לשוב", "חזרה"],
    "צדיק": ["צדיק", "צדיקים", "הצדיק"],
    "תורה": ["תורה", "ללמוד", "לימוד"],
    "התבודדות": ["התבודדות", "להתבודד", "בודד"],
}

PRAYER_THEME_KEYWORDS: dict[str, list[str]] = {
    "הודאה": ["תודה", "להודות", "מודה"],
    "בקשה": ["בקשה", "לבקש", "מבקש"],
    "שבח": ["שבח", "לשבח", "משבח"],
    "וידוי": ["וידוי", "להתוודות", "מתוודה"],
}

# Theme names in the query languages, mapped to the Hebrew theme and its
# transliteration.
QUERY_THEME_MAP: dict[str, list[str]] = {
    "joie": ["שמחה", "simcha"],
    "joy": ["שמחה", "simcha"],
    "prière": ["תפילה", "tefila"],
    "prayer": ["תפילה", "tefila"],
    "foi": ["אמונה", "emuna"],
    "faith": ["אמונה", "emuna"],
    "repentance": ["תשובה", "teshuva"],
    "teshuva": ["תשובה", "teshuva"],
    "torah": ["תורה", "torah"],
    "tsadik": ["צדיק", "tzadik"],
    "tzadik": ["צדיק", "tzadik"],
    "hitbodedout": ["התבודדות", "hitbodedut"],
    "hitbodedut": ["התבודדות", "hitbodedut"],
}

CITATION_SOURCES: list[str] = [
    "תהלים",
    "משלי",
    "בראשית",
    "שמות",
    "ויקרא",
    "במדבר",
    "דברים",
]

CITATION_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\(([^)]+)\)"),
    re.compile(r"[\"“”״]([^\"“”״]+)[\"“”״]"),
]

STOP_WORDS: frozenset[str] = frozenset(
    ["את", "של", "על", "אל", "מן", "עם", "הוא", "היא", "הם", "הן"]
)

TORAH_START_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^\s*תורה\s+[א-ת]+"),
    re.compile(r"^\s*Torah\s+\d+", re.IGNORECASE),
    re.compile(r"^\s*סימן\s+[א-ת]+"),
]

STORY_MARKERS: list[str] = ["מעשה", "היה פעם", "מעשה ב", "Once there was", "Story of"]

PRAYER_MARKERS: list[str] = ["רבונו של עולם", "יהי רצון", "תפילה", "Master of the Universe"]


def estimate_tokens(text: str) -> int:
    """Estimate token count for a text string.

    Uses the characters/4 rule of thumb, rounded up.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count.
    """
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def match_themes(text: str, table: dict[str, list[str]]) -> list[str]:
    """Return the themes of ``table`` whose keywords occur in ``text``."""
    return [theme for theme, keywords in table.items() if any(kw in text for kw in keywords)]


def extract_citations(text: str) -> list[Citation]:
    """Find parenthesised or quoted spans that name a known scriptural source."""
    citations: list[Citation] = []
    for pattern in CITATION_PATTERNS:
        for match in pattern.finditer(text):
            quoted = match.group(1).strip()
            if any(source in quoted for source in CITATION_SOURCES):
                citations.append(Citation(source=quoted, text=quoted))
    return citations


class BookProfile:
    """Detection strategy for one family of books.

    The base profile has no unit markers, so books using it are grouped
    into fixed-size units by the chunker.
    """

    book_type: BookType = BookType.GENERAL
    unit_type: str = "section"

    def is_unit_start(self, section: Section) -> bool:
        return False

    def extract_themes(self, text: str) -> list[str]:
        return match_themes(text, THEME_KEYWORDS)

    def extract_citations(self, text: str) -> list[Citation]:
        return extract_citations(text)

    def build_hierarchy(self, sections: list[SectionInfo]) -> list[HierarchyNode]:
        """Flat hierarchy: one node per section."""
        return [
            HierarchyNode(
                id=section.id,
                node_type="section",
                title=section.title,
                chunk_ids=list(section.chunk_ids),
            )
            for section in sections
        ]

    def _grouped_hierarchy(self, sections: list[SectionInfo]) -> list[HierarchyNode]:
        """Group the split parts of a unit (``torah_3_part1``...) under one node."""
        nodes: dict[str, HierarchyNode] = {}
        for section in sections:
            root_id = UNIT_PART_SUFFIX.sub("", section.id)
            node = nodes.get(root_id)
            if node is None:
                node = HierarchyNode(
                    id=root_id,
                    node_type=self.unit_type if root_id.startswith(self.unit_type) else "section",
                    title=section.title,
                )
                nodes[root_id] = node
            node.chunk_ids.extend(section.chunk_ids)
            if root_id != section.id:
                node.children.append(
                    HierarchyNode(
                        id=section.id,
                        node_type="section",
                        title=section.title,
                        chunk_ids=list(section.chunk_ids),
                    )
                )
        return list(nodes.values())


class TorahProfile(BookProfile):
    """Numbered teachings (Likutey Moharan)."""

    book_type = BookType.TORAH
    unit_type = "torah"

    def is_unit_start(self, section: Section) -> bool:
        head = section.title or section.primary_text[:TITLE_WINDOW]
        return any(p.search(head) for p in TORAH_START_PATTERNS)

    def build_hierarchy(self, sections: list[SectionInfo]) -> list[HierarchyNode]:
        return self._grouped_hierarchy(sections)


class StoryProfile(BookProfile):
    """Tales (Sippurei Maasiyot)."""

    book_type = BookType.STORY
    unit_type = "story"

    def is_unit_start(self, section: Section) -> bool:
        head = section.primary_text[:MARKER_WINDOW]
        return any(marker in head for marker in STORY_MARKERS)

    def build_hierarchy(self, sections: list[SectionInfo]) -> list[HierarchyNode]:
        return self._grouped_hierarchy(sections)


class PrayerProfile(BookProfile):
    """Prayers (Likutey Tefilot)."""

    book_type = BookType.PRAYER
    unit_type = "prayer"

    def is_unit_start(self, section: Section) -> bool:
        head = section.primary_text[:MARKER_WINDOW]
        return any(marker in head for marker in PRAYER_MARKERS)

    def extract_themes(self, text: str) -> list[str]:
        themes = super().extract_themes(text)
        themes.extend(t for t in match_themes(text, PRAYER_THEME_KEYWORDS) if t not in themes)
        return themes

    def build_hierarchy(self, sections: list[SectionInfo]) -> list[HierarchyNode]:
        return self._grouped_hierarchy(sections)


_PROFILES: dict[BookType, BookProfile] = {
    BookType.GENERAL: BookProfile(),
    BookType.TORAH: TorahProfile(),
    BookType.STORY: StoryProfile(),
    BookType.PRAYER: PrayerProfile(),
}


def get_profile(book_type: BookType) -> BookProfile:
    """Return the registered profile for a book type (general as fallback)."""
    return _PROFILES.get(book_type, _PROFILES[BookType.GENERAL])


def register_profile(profile: BookProfile) -> None:
    """Install or replace the profile used for ``profile.book_type``."""
    _PROFILES[profile.book_type] = profile
