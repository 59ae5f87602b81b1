"""
Section map builder.

Assigns every page of the digest to exactly one logical section. Pages are
claimed in passes, strongest evidence first:

1. header keywords in the leading lines of a page open a section, which
   runs until the next opening or the planned start of an undetected section;
2. undetected sections take their planned range, read from the issue's index
   page when it lists them, otherwise from the static fallback table;
3. nearly empty pages (scans) move to the nearest image section.

Anything still unclaimed lands in the ``unclassified`` section.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from .exceptions import SectionNotDetected
from .models import ErrorRecord, Page, Section
from .normalize import fold
from .sections import SECTION_DEFINITIONS, UNCLASSIFIED, SectionDefinition

logger = logging.getLogger(__name__)

STAGE = "segmenting"

HEADER = "header"
INDEX = "index"
MINIMAL_TEXT = "minimal_text"
FALLBACK = "fallback"
UNCLASSIFIED_DETECTION = "unclassified"

DETECTION_PRECEDENCE = (HEADER, MINIMAL_TEXT, INDEX, FALLBACK, UNCLASSIFIED_DETECTION)

# A page whose header names this many sections is the index, not an opening
INDEX_PAGE_MIN_SECTIONS = 3

# "AGENDA .... 26", "CONSEJO DE LA JUDICATURA 28-41", "CARTONES 65 A 89"
INDEX_PAGES_RE = re.compile(r"(?<!\d)(\d{1,3})(?:\s*(?:-|–|\bAL?\b)\s*(\d{1,3}))?(?!\d)")


@dataclass
class SectionMap:
    sections: List[Section]
    errors: List[ErrorRecord] = field(default_factory=list)

    def get(self, section_id: str) -> Optional[Section]:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None


def _keyword_pattern(keyword: str) -> Pattern:
    words = [re.escape(w) for w in fold(keyword).split()]
    return re.compile(r"(?<![A-Z0-9])" + r"\s+".join(words) + r"(?![A-Z0-9])")


def _keyword_patterns(definitions: Sequence[SectionDefinition]) -> List[Tuple[str, Pattern]]:
    return [(d.id, _keyword_pattern(k)) for d in definitions for k in d.keywords]


def _header_text(page: Page, header_lines: int) -> str:
    lines = [line for line in page.raw_text.splitlines() if line.strip()]
    return "\n".join(fold(line) for line in lines[:header_lines])


def _sections_named(text: str, patterns: Sequence[Tuple[str, Pattern]]) -> Dict[str, int]:
    """``{section_id: position of its first mention}`` within ``text``."""
    found: Dict[str, int] = {}
    for section_id, pattern in patterns:
        m = pattern.search(text)
        if m and (section_id not in found or m.start() < found[section_id]):
            found[section_id] = m.start()
    return found


def scan_headers(pages: Sequence[Page],
                 definitions: Sequence[SectionDefinition],
                 header_lines: int = 6) -> Dict[int, str]:
    """Return ``{page_number: section_id}`` for pages whose header names a section.

    When several sections match, the one mentioned first wins. Index pages
    (naming many sections at once) are skipped.
    """
    patterns = _keyword_patterns(definitions)
    matches: Dict[int, str] = {}
    for page in pages:
        text = _header_text(page, header_lines)
        if not text:
            continue
        found = _sections_named(text, patterns)
        if not found:
            continue
        if len(found) >= INDEX_PAGE_MIN_SECTIONS:
            logger.debug(f"Page {page.number} looks like an index page, skipping header match")
            continue
        matches[page.number] = min(found, key=found.get)
    return matches


def find_index_page(pages: Sequence[Page],
                    definitions: Sequence[SectionDefinition],
                    header_lines: int = 6) -> Optional[Page]:
    """The first page whose leading lines name several sections at once."""
    patterns = _keyword_patterns(definitions)
    for page in pages:
        text = _header_text(page, header_lines)
        if text and len(_sections_named(text, patterns)) >= INDEX_PAGE_MIN_SECTIONS:
            return page
    return None


def parse_index(page: Page,
                definitions: Sequence[SectionDefinition],
                total_pages: int) -> Dict[str, Tuple[int, int]]:
    """
    Read ``{section_id: (first, last)}`` page ranges from the index page.

    Each index line names a section followed by its first page and,
    optionally, its last page. A section listed without a last page runs up
    to the next listed section. Entries pointing outside the document are
    ignored.
    """
    patterns = [(d.id, _keyword_pattern(name))
                for d in definitions for name in (*d.keywords, d.display_name)]
    entries: Dict[str, Tuple[int, Optional[int]]] = {}
    for line in page.raw_text.splitlines():
        folded = fold(line)
        best = None
        for section_id, pattern in patterns:
            m = pattern.search(folded)
            if m and (best is None or m.start() < best[1].start()):
                best = (section_id, m)
        if best is None or best[0] in entries:
            continue
        numbers = INDEX_PAGES_RE.search(folded, best[1].end())
        if not numbers:
            continue
        first = int(numbers.group(1))
        last = int(numbers.group(2)) if numbers.group(2) else None
        if 1 <= first <= total_pages:
            entries[best[0]] = (first, last)

    ranges: Dict[str, Tuple[int, int]] = {}
    starts = sorted(first for first, _ in entries.values())
    for section_id, (first, last) in entries.items():
        if last is None:
            later = [s for s in starts if s > first]
            last = later[0] - 1 if later else total_pages
        last = min(last, total_pages)
        if last >= first:
            ranges[section_id] = (first, last)
    return ranges


def _distance(page_number: int, span: Tuple[int, int]) -> int:
    start, end = span
    if start <= page_number <= end:
        return 0
    return start - page_number if page_number < start else page_number - end


def build_section_map(pages: Sequence[Page],
                      definitions: Optional[Sequence[SectionDefinition]] = None,
                      minimal_text_threshold: int = 300,
                      header_lines: int = 6,
                      proximity_pages: int = 2) -> SectionMap:
    """
    Partition the document's pages into sections.

    Args:
        pages: All pages of the document, in order
        definitions: Section table (defaults to the digest's table)
        minimal_text_threshold: Pages with fewer characters are treated as scans
        header_lines: Number of leading non-empty lines scanned for keywords
        proximity_pages: How far a scan may sit outside an image section's range

    Returns:
        SectionMap whose sections cover every page exactly once
    """
    definitions = list(SECTION_DEFINITIONS if definitions is None else definitions)
    by_id = {d.id: d for d in definitions}
    total = len(pages)
    errors: List[ErrorRecord] = []

    header_hits = scan_headers(pages, definitions, header_lines)

    index_ranges: Dict[str, Tuple[int, int]] = {}
    index_page = find_index_page(pages, definitions, header_lines)
    if index_page is not None:
        index_ranges = parse_index(index_page, definitions, total)
        logger.info(f"Index on page {index_page.number} lists {len(index_ranges)} sections")

    # First header page of each section opens it
    openings: Dict[str, int] = {}
    for page_number in sorted(header_hits):
        openings.setdefault(header_hits[page_number], page_number)

    # Where undetected sections are expected, from the index first
    planned: Dict[str, Tuple[Tuple[int, int], str]] = {}
    for d in definitions:
        if d.id in openings:
            continue
        if d.id in index_ranges:
            planned[d.id] = (index_ranges[d.id], INDEX)
        elif d.fallback:
            planned[d.id] = (d.fallback, FALLBACK)

    boundaries = sorted(set(openings.values()) | {span[0] for span, _ in planned.values()})

    assigned: Dict[int, Tuple[str, str]] = {}
    detected_spans: Dict[str, Tuple[int, int]] = {}
    for section_id, start in sorted(openings.items(), key=lambda item: item[1]):
        later = [b for b in boundaries if b > start]
        end = min(later[0] - 1, total) if later else total
        detected_spans[section_id] = (start, end)
        for n in range(start, end + 1):
            assigned[n] = (section_id, HEADER)
    # A page naming a section in its header belongs to it wherever it sits
    for page_number, section_id in header_hits.items():
        assigned[page_number] = (section_id, HEADER)

    # Detected image sections are preferred over planned ranges at equal distance
    image_spans: List[Tuple[str, Tuple[int, int]]] = []
    for d in definitions:
        if d.is_image and d.id in detected_spans:
            image_spans.append((d.id, detected_spans[d.id]))
    for d in definitions:
        if d.is_image and d.id in planned:
            image_spans.append((d.id, planned[d.id][0]))

    # Index ranges are claimed before static ones
    for source in (INDEX, FALLBACK):
        for section_id, ((start, end), detection) in planned.items():
            if detection != source:
                continue
            for n in range(start, min(end, total) + 1):
                if n not in assigned:
                    assigned[n] = (section_id, detection)

    # Only scans outside planned ranges are moved next to image sections
    claimed = {n: a for n, a in assigned.items() if a[1] in (INDEX, FALLBACK)}
    for page in pages:
        n = page.number
        if n in header_hits or page.char_count >= minimal_text_threshold:
            continue
        if n in assigned and by_id[assigned[n][0]].is_image:
            continue
        best = None
        for section_id, span in image_spans:
            distance = _distance(n, span)
            if distance > proximity_pages:
                continue
            if best is None or distance < best[1]:
                best = (section_id, distance)
        if best:
            assigned[n] = (best[0], MINIMAL_TEXT)
    assigned.update(claimed)

    if not openings:
        logger.warning("No section headers detected, using the index and static page table")

    for d in definitions:
        if not d.keywords or d.id in openings:
            continue
        if d.id in planned and planned[d.id][1] == INDEX:
            start, end = planned[d.id][0]
            logger.info(f"Section {d.id} has no header, index places it at pages {start}-{end}")
            continue
        errors.append(SectionNotDetected(
            f"No header found for section {d.id}; "
            + (f"using pages {d.fallback[0]}-{d.fallback[1]}" if d.fallback else "no fallback range"),
            stage=STAGE, section_id=d.id,
        ).to_record())

    pages_by_section: Dict[str, List[int]] = {}
    detection_by_section: Dict[str, set] = {}
    for page in pages:
        section_id, detection = assigned.get(page.number, (UNCLASSIFIED.id, UNCLASSIFIED_DETECTION))
        pages_by_section.setdefault(section_id, []).append(page.number)
        detection_by_section.setdefault(section_id, set()).add(detection)

    sections: List[Section] = []
    for section_id, numbers in pages_by_section.items():
        d = by_id.get(section_id, UNCLASSIFIED)
        kinds = detection_by_section[section_id]
        detection = next(k for k in DETECTION_PRECEDENCE if k in kinds)
        sections.append(Section(
            id=d.id,
            display_name=d.display_name,
            content_type=d.content_type,
            pages=tuple(numbers),
            header_patterns=tuple(d.keywords),
            detection=detection,
            image_kind=d.image_kind,
            split_pattern=d.split_pattern,
        ))
    sections.sort(key=lambda s: s.pages[0])

    summary = ", ".join(f"{s.id}={s.page_range[0]}-{s.page_range[1]}({s.detection})" for s in sections)
    logger.info(f"Section map for {total} pages: {summary}")
    return SectionMap(sections=sections, errors=errors)
