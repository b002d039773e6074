"""Semantic, token-bounded chunker for Breslov books."""

import hashlib
import logging
import math

from breslov_rag.config import ChunkingConfig
from breslov_rag.ingestion.heuristics import (
    CHARS_PER_TOKEN,
    BookProfile,
    estimate_tokens,
    get_profile,
)
from breslov_rag.models.book import Book, Section
from breslov_rag.models.chunk import Chunk, ChunkContent, ChunkContext, SemanticUnit

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."
SECTION_SEPARATOR = "\n\n"
OVERLAP_SEPARATOR = "\n"
# Characters of content hashed into a chunk id.
CHUNK_ID_PREFIX_CHARS = 100
LANGUAGE_FIELDS = ("hebrew_text", "english_text", "french_text")


class SemanticChunker:
    """Splits books into chunks built from whole semantic units.

    Chunking strategy:
    1. Units: group sections into teachings, stories or prayers using the
       book type's profile; fall back to fixed-size groups of sections.
    2. Packing: greedily pack units into chunks of at most max_tokens,
       splitting oversized units (and oversized sections) into parts of at
       most split_ratio * max_tokens.
    3. Overlap: attach the tail of the previous chunk and the head of the
       next one as context.

    Args:
        config: ChunkingConfig with max_tokens, min_tokens, overlap_ratio,
                sections_per_unit and split_ratio settings.
    """

    def __init__(self, config: ChunkingConfig) -> None:
        self._config = config

    def chunk_book(self, book: Book, options: ChunkingConfig | None = None) -> list[Chunk]:
        """Split a book into chunks.

        Args:
            book: The validated book to chunk.
            options: Per-call override of the chunker's configuration.

        Returns:
            Ordered list of chunks covering every section of the book.
        """
        opts = options or self._config
        if not book.sections:
            return []

        logger.info("Chunking book %s with %d sections", book.id, len(book.sections))
        profile = get_profile(book.book_type)

        units = self._identify_units(book, profile, opts)
        groups = self._group_units(units, profile, opts)

        chunks = [
            self._create_chunk(
                book_id=book.id,
                units=group,
                ordinal=i,
                prev_units=groups[i - 1] if i > 0 else None,
                next_units=groups[i + 1] if i + 1 < len(groups) else None,
                profile=profile,
                opts=opts,
            )
            for i, group in enumerate(groups)
        ]

        logger.info("Created %d chunks for %s", len(chunks), book.id)
        return chunks

    # ── Unit identification ────────────────────────────────────────────────

    def _identify_units(
        self, book: Book, profile: BookProfile, opts: ChunkingConfig
    ) -> list[SemanticUnit]:
        """Detect semantic units, falling back to fixed-size groups."""
        units = self._marker_units(book.sections, profile)
        if units:
            return units

        if profile.unit_type != "section":
            logger.debug("No %s markers found in %s, using fixed-size units", profile.unit_type, book.id)
        return self._fixed_size_units(book.sections, profile, opts.sections_per_unit)

    def _marker_units(self, sections: list[Section], profile: BookProfile) -> list[SemanticUnit]:
        """Start a new unit at every section the profile recognises as a start.

        Sections preceding the first start become an ``intro`` unit so that
        nothing is dropped. Returns an empty list when no start is found.
        """
        starts = [i for i, section in enumerate(sections) if profile.is_unit_start(section)]
        if not starts:
            return []

        units: list[SemanticUnit] = []
        if starts[0] > 0:
            units.append(self._make_unit("intro", "section", sections[: starts[0]], profile))

        bounds = starts + [len(sections)]
        for number, (start, end) in enumerate(zip(bounds, bounds[1:]), start=1):
            units.append(
                self._make_unit(
                    f"{profile.unit_type}_{number}",
                    profile.unit_type,
                    sections[start:end],
                    profile,
                )
            )
        return units

    def _fixed_size_units(
        self, sections: list[Section], profile: BookProfile, size: int
    ) -> list[SemanticUnit]:
        size = max(size, 1)
        return [
            self._make_unit(f"unit_{n}", "section", sections[i : i + size], profile)
            for n, i in enumerate(range(0, len(sections), size), start=1)
        ]

    def _make_unit(
        self, unit_id: str, unit_type: str, sections: list[Section], profile: BookProfile
    ) -> SemanticUnit:
        return SemanticUnit(
            id=unit_id,
            unit_type=unit_type,
            sections=sections,
            token_count=sum(estimate_tokens(s.primary_text) for s in sections),
            themes=profile.extract_themes(" ".join(s.primary_text for s in sections)),
        )

    # ── Packing ─────────────────────────────────────────────────────────────

    def _group_units(
        self, units: list[SemanticUnit], profile: BookProfile, opts: ChunkingConfig
    ) -> list[list[SemanticUnit]]:
        """Greedily pack units into groups of at most max_tokens."""
        groups: list[list[SemanticUnit]] = []
        current: list[SemanticUnit] = []
        current_tokens = 0
        # True while ``current`` holds only the last part of a split unit.
        split_tail = False

        for unit in units:
            if unit.token_count > opts.max_tokens:
                if current:
                    groups.append(current)
                *parts, tail = self._split_large_unit(unit, profile, opts)
                groups.extend([part] for part in parts)
                # The last part keeps packing with the units that follow it.
                current, current_tokens, split_tail = [tail], tail.token_count, True
            elif current_tokens + unit.token_count > opts.max_tokens:
                if current:
                    groups.append(current)
                current, current_tokens, split_tail = [unit], unit.token_count, False
            else:
                current.append(unit)
                current_tokens += unit.token_count
                split_tail = False

        if current:
            if split_tail:
                groups.append(current)
            elif current_tokens < opts.min_tokens and groups:
                last_tokens = sum(u.token_count for u in groups[-1])
                if last_tokens + current_tokens <= opts.max_tokens:
                    groups[-1] = groups[-1] + current
                else:
                    groups.append(current)
            else:
                groups.append(current)

        return groups

    def _split_large_unit(
        self, unit: SemanticUnit, profile: BookProfile, opts: ChunkingConfig
    ) -> list[SemanticUnit]:
        """Split an oversized unit into parts of at most split_ratio * max_tokens."""
        target = max(math.floor(opts.max_tokens * opts.split_ratio), 1)

        pieces: list[Section] = []
        for section in unit.sections:
            section_tokens = estimate_tokens(section.primary_text)
            if section_tokens > target:
                # Even slices, so the last one is not a small remainder.
                slice_tokens = math.ceil(section_tokens / math.ceil(section_tokens / target))
                pieces.extend(split_section(section, slice_tokens))
            else:
                pieces.append(section)

        parts: list[list[Section]] = []
        current: list[Section] = []
        current_tokens = 0
        for piece in pieces:
            piece_tokens = estimate_tokens(piece.primary_text)
            if current and current_tokens + piece_tokens > target:
                parts.append(current)
                current, current_tokens = [], 0
            current.append(piece)
            current_tokens += piece_tokens
        if current:
            parts.append(current)

        logger.debug("Split unit %s (%d tokens) into %d parts", unit.id, unit.token_count, len(parts))
        return [
            self._make_unit(f"{unit.id}_part{n}", unit.unit_type, part, profile)
            for n, part in enumerate(parts, start=1)
        ]

    # ── Chunk construction ──────────────────────────────────────────────────

    def _create_chunk(
        self,
        book_id: str,
        units: list[SemanticUnit],
        ordinal: int,
        prev_units: list[SemanticUnit] | None,
        next_units: list[SemanticUnit] | None,
        profile: BookProfile,
        opts: ChunkingConfig,
    ) -> Chunk:
        sections = [s for unit in units for s in unit.sections]
        overlap_tokens = math.floor(opts.max_tokens * opts.overlap_ratio)

        content = ChunkContent(
            hebrew=join_section_texts(sections, "hebrew_text") or "",
            english=join_section_texts(sections, "english_text"),
            french=join_section_texts(sections, "french_text"),
        )
        text = content.hebrew or content.english or content.french or ""

        themes: list[str] = []
        for unit in units:
            themes.extend(t for t in unit.themes if t not in themes)

        return Chunk(
            id=generate_chunk_id(book_id, ordinal, text),
            book_id=book_id,
            section_id=units[0].id,
            content=content,
            reference=_reference_range(sections),
            start_index=sections[0].index,
            end_index=sections[-1].index,
            token_count=sum(u.token_count for u in units),
            themes=themes,
            citations=profile.extract_citations(text),
            context=ChunkContext(
                before=overlap_context(prev_units, overlap_tokens, from_end=True) if prev_units else None,
                after=overlap_context(next_units, overlap_tokens, from_end=False) if next_units else None,
            ),
        )


def split_section(section: Section, max_tokens: int) -> list[Section]:
    """Cut one section into raw slices of at most ``max_tokens`` each.

    Slices end on whitespace when one falls in the second half of the
    window. Concatenating the slices of any language field gives back the
    original text exactly; translations are cut at the same relative
    positions as the primary text.
    """
    primary_field = next(
        (f for f in LANGUAGE_FIELDS if getattr(section, f)), "hebrew_text"
    )
    primary = getattr(section, primary_field) or ""
    cuts = _cut_points(primary, max_tokens * CHARS_PER_TOKEN)
    if not cuts:
        return [section]

    fractions = [c / len(primary) for c in cuts]
    sliced: dict[str, list[str]] = {}
    for field in LANGUAGE_FIELDS:
        value = getattr(section, field)
        if not value:
            continue
        points = cuts if field == primary_field else _proportional_points(value, fractions)
        bounds = [0] + points + [len(value)]
        sliced[field] = [value[a:b] for a, b in zip(bounds, bounds[1:])]

    return [
        section.model_copy(
            update={
                "id": f"{section.id}~{n}" if section.id else "",
                **{field: parts[n] for field, parts in sliced.items()},
            }
        )
        for n in range(len(cuts) + 1)
    ]


def _cut_points(text: str, max_chars: int) -> list[int]:
    points: list[int] = []
    pos = 0
    while len(text) - pos > max_chars:
        end = pos + max_chars
        space = max(text.rfind(ch, pos + max_chars // 2, end) for ch in (" ", "\n", "\t"))
        if space != -1:
            end = space + 1
        points.append(end)
        pos = end
    return points


def _proportional_points(text: str, fractions: list[float]) -> list[int]:
    points: list[int] = []
    previous = 0
    for fraction in fractions:
        point = round(fraction * len(text))
        space = text.find(" ", point)
        if space != -1:
            point = space + 1
        point = min(max(point, previous), len(text))
        points.append(point)
        previous = point
    return points


def join_section_texts(sections: list[Section], field: str) -> str | None:
    """Concatenate one language field over sections.

    Slices of the same source section are joined without a separator so
    that split sections read back exactly.
    """
    parts: list[str] = []
    previous_index: int | None = None
    for section in sections:
        value = getattr(section, field)
        if not value:
            continue
        if parts and section.index != previous_index:
            parts.append(SECTION_SEPARATOR)
        parts.append(value)
        previous_index = section.index
    return "".join(parts) or None


def overlap_context(units: list[SemanticUnit], max_tokens: int, from_end: bool) -> str | None:
    """Take up to ``max_tokens`` of text from the start or end of ``units``.

    A section that does not fit whole is cut mid-text and marked with
    ``...`` on the cut side. Separators and markers count toward the
    budget, so the estimate of the returned text never exceeds
    ``max_tokens``.
    """
    texts = [s.primary_text for unit in units for s in unit.sections]
    if from_end:
        texts = texts[::-1]

    budget = max_tokens * CHARS_PER_TOKEN
    collected: list[str] = []
    used = 0
    for text in texts:
        separator = len(OVERLAP_SEPARATOR) if collected else 0
        if used + separator + len(text) <= budget:
            collected.append(text)
            used += separator + len(text)
            continue

        char_count = budget - used - separator - len(TRUNCATION_MARKER)
        if char_count > 0:
            if from_end:
                collected.append(TRUNCATION_MARKER + text[len(text) - char_count :])
            else:
                collected.append(text[:char_count] + TRUNCATION_MARKER)
        break

    if from_end:
        collected.reverse()
    context = OVERLAP_SEPARATOR.join(collected)
    return context or None


def generate_chunk_id(book_id: str, ordinal: int, content: str) -> str:
    """Deterministic chunk id from leading content and position."""
    digest = hashlib.md5(content[:CHUNK_ID_PREFIX_CHARS].encode("utf-8")).hexdigest()[:8]
    return f"{book_id}_chunk_{ordinal}_{digest}"


def _reference_range(sections: list[Section]) -> str:
    first, last = sections[0].reference, sections[-1].reference
    if first == last:
        return first
    return f"{first} - {last}"
