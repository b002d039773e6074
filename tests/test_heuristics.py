"""Tests for book-type detection heuristics."""

from breslov_rag.ingestion.heuristics import (
    THEME_KEYWORDS,
    BookProfile,
    PrayerProfile,
    StoryProfile,
    TorahProfile,
    estimate_tokens,
    extract_citations,
    get_profile,
    match_themes,
    register_profile,
)
from breslov_rag.models import BookType, Section, SectionInfo


def _section(text: str = "", title: str = "") -> Section:
    return Section(title=title, hebrew_text=text, reference="R", index=0)


class TestEstimateTokens:
    def test_empty_string(self) -> None:
        assert estimate_tokens("") == 0

    def test_rounds_up(self) -> None:
        assert estimate_tokens("שלום") == 1
        assert estimate_tokens("שלום!") == 2

    def test_hebrew_sentence(self) -> None:
        assert estimate_tokens("כל אדם חייב לברך ברכת הנהנין") == 7


class TestThemesAndCitations:
    def test_match_themes_by_keyword(self) -> None:
        themes = match_themes("צריך להתפלל בשמחה תמיד", THEME_KEYWORDS)
        assert themes == ["תפילה", "שמחה"]

    def test_no_themes(self) -> None:
        assert match_themes("Once upon a time", THEME_KEYWORDS) == []

    def test_parenthesised_citation(self) -> None:
        citations = extract_citations("כמו שכתוב (תהלים קד, לד) אשמח בה׳")
        assert [c.source for c in citations] == ["תהלים קד, לד"]

    def test_quoted_citation(self) -> None:
        citations = extract_citations('ועל זה נאמר "משלי טו, טו" וכו')
        assert citations[0].source == "משלי טו, טו"

    def test_parentheses_without_known_source_ignored(self) -> None:
        assert extract_citations("ראה שם (עיין לעיל)") == []


class TestProfiles:
    def test_torah_start_from_title(self) -> None:
        profile = TorahProfile()
        assert profile.is_unit_start(_section("טקסט", title="תורה ה"))
        assert profile.is_unit_start(_section("text", title="Torah 12"))
        assert not profile.is_unit_start(_section("המשך הדברים", title="המשך"))

    def test_torah_start_from_text_when_untitled(self) -> None:
        assert TorahProfile().is_unit_start(_section("סימן ב אמר רבינו"))

    def test_story_markers(self) -> None:
        profile = StoryProfile()
        assert profile.is_unit_start(_section("מעשה במלך אחד"))
        assert profile.is_unit_start(_section("Once there was a king"))
        assert not profile.is_unit_start(_section("והמלך אמר לבנו"))

    def test_story_marker_outside_window_ignored(self) -> None:
        assert not StoryProfile().is_unit_start(_section("א" * 150 + " מעשה"))

    def test_prayer_markers(self) -> None:
        profile = PrayerProfile()
        assert profile.is_unit_start(_section("רבונו של עולם זכני"))
        assert profile.is_unit_start(_section("Master of the Universe, help me"))

    def test_prayer_profile_adds_prayer_themes(self) -> None:
        themes = PrayerProfile().extract_themes("אני מודה לפניך ומבקש בשמחה")
        assert "שמחה" in themes
        assert "הודאה" in themes
        assert "בקשה" in themes

    def test_general_profile_has_no_markers(self) -> None:
        assert not BookProfile().is_unit_start(_section("תורה א"))

    def test_get_profile(self) -> None:
        assert isinstance(get_profile(BookType.TORAH), TorahProfile)
        assert isinstance(get_profile(BookType.STORY), StoryProfile)
        assert isinstance(get_profile(BookType.PRAYER), PrayerProfile)
        assert type(get_profile(BookType.GENERAL)) is BookProfile

    def test_register_profile_replaces(self) -> None:
        class CustomStoryProfile(StoryProfile):
            pass

        original = get_profile(BookType.STORY)
        try:
            register_profile(CustomStoryProfile())
            assert isinstance(get_profile(BookType.STORY), CustomStoryProfile)
        finally:
            register_profile(original)


class TestHierarchy:
    def test_flat_hierarchy(self) -> None:
        sections = [SectionInfo(id="unit_1", title="A", chunk_ids=["c1"])]
        nodes = BookProfile().build_hierarchy(sections)
        assert [(n.id, n.node_type) for n in nodes] == [("unit_1", "section")]

    def test_split_parts_grouped_under_unit(self) -> None:
        sections = [
            SectionInfo(id="torah_1", title="LM 1", chunk_ids=["c1"]),
            SectionInfo(id="torah_2_part1", title="LM 2", chunk_ids=["c2"]),
            SectionInfo(id="torah_2_part2", title="LM 2", chunk_ids=["c3"]),
        ]
        nodes = TorahProfile().build_hierarchy(sections)

        assert [n.id for n in nodes] == ["torah_1", "torah_2"]
        assert nodes[0].node_type == "torah"
        assert nodes[0].children == []
        assert nodes[1].chunk_ids == ["c2", "c3"]
        assert [c.id for c in nodes[1].children] == ["torah_2_part1", "torah_2_part2"]

    def test_intro_unit_is_plain_section(self) -> None:
        sections = [SectionInfo(id="intro", title="Intro", chunk_ids=["c0"])]
        assert StoryProfile().build_hierarchy(sections)[0].node_type == "section"
