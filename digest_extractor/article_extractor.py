"""
Article boundary extraction for text sections.

A section's pages are cleaned and concatenated, then split into articles by
the first strategy that yields results:

1. known-title anchoring against the run's reference titles;
2. a section-specific line pattern (all-caps headlines or column bylines);
3. blank-line paragraphs.
"""

import bisect
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence, Tuple

from .exceptions import ArticleBoundaryAmbiguous
from .models import Article, ErrorRecord, Section
from .normalize import fold, match_newspaper, normalize_quotes
from .sections import DEFAULT_NEWSPAPER_ORDER, NEWSPAPER_NAMES

logger = logging.getLogger(__name__)

STAGE = "extracting_articles"

POSITIONAL_SOURCE_SECTIONS = ("ocho-columnas",)

DATED_HEADER_RE = re.compile(
    r"^[ \t]*(?:lunes|martes|mi[eé]rcoles|jueves|viernes|s[aá]bado|domingo),?[ \t]+\d{1,2}[ \t]+de[ \t]+\w+[ \t]+(?:de[ \t]+)?\d{4}[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
PAGE_LABEL_RE = re.compile(r"^[ \t]*P[aá]gina[ \t]+\d+[ \t]*$", re.IGNORECASE | re.MULTILINE)
RULE_RE = re.compile(r"[-_]{5,}")
HEADLINE_RE = re.compile(r"[^a-záéíóúñü]{10,120}")
BYLINE_RE = re.compile(r"^((?:[A-ZÁÉÍÓÚÑ][a-záéíóúñü]+\s){1,3}[A-ZÁÉÍÓÚÑ][a-záéíóúñü]+):", re.MULTILINE)
SENTENCE_RE = re.compile(r"[^.!?]+[.!?]")
PARAGRAPH_RE = re.compile(r"\S.*?(?=\n\s*\n|\Z)", re.DOTALL)

# A short line naming an outlet, e.g. "Reforma / Pág. 3"
SOURCE_LINE_MAX = 60


@dataclass
class Fragment:
    title: str
    body: str
    offset: int
    source: Optional[str] = None


@dataclass
class ExtractionOutcome:
    articles: List[Article] = field(default_factory=list)
    errors: List[ErrorRecord] = field(default_factory=list)
    strategy: Optional[str] = None


def clean_section_text(section: Section, page_texts: Sequence[Tuple[int, str]]) -> Tuple[str, List[Tuple[int, int]]]:
    """
    Strip running headers and page furniture, then join the pages.

    Returns:
        The combined text and a list of ``(offset, page_number)`` marking
        where each page starts in it.
    """
    headers = {fold(h) for h in section.header_patterns}
    parts: List[str] = []
    offsets: List[Tuple[int, int]] = []
    position = 0

    for page_number, raw in page_texts:
        text = normalize_quotes(raw or "").replace("\f", "\n")
        text = DATED_HEADER_RE.sub("", text)
        text = PAGE_LABEL_RE.sub("", text)
        text = RULE_RE.sub("", text)

        lines = []
        for line in text.splitlines():
            line = line.rstrip()
            if headers and fold(line).strip(" .:") in headers:
                continue
            lines.append(line)
        cleaned = re.sub(r"\n\s*\n(\s*\n)+", "\n\n", "\n".join(lines)).strip()
        if not cleaned:
            continue

        if parts:
            position += 2
        offsets.append((position, page_number))
        parts.append(cleaned)
        position += len(cleaned)

    return "\n\n".join(parts), offsets


class ArticleExtractor:
    """Split a text section into articles."""

    def __init__(self,
                 max_title_length: int = 150,
                 min_content_length: int = 50,
                 min_paragraph_length: int = 50,
                 newspaper_names: Optional[Sequence[str]] = None):
        """
        Initialize article extractor.

        Args:
            max_title_length: Longer titles are treated as mis-detected
            min_content_length: Minimum body length for anchored and pattern articles
            min_paragraph_length: Minimum paragraph length for the generic split
            newspaper_names: Outlets recognized as article sources
        """
        self.max_title_length = max_title_length
        self.min_content_length = min_content_length
        self.min_paragraph_length = min_paragraph_length
        self.newspaper_names = list(newspaper_names or NEWSPAPER_NAMES)

    def extract_articles(self,
                         section: Section,
                         page_texts: Sequence[Tuple[int, str]],
                         publication_date: date,
                         anchor_titles: Optional[Sequence[str]] = None,
                         newspaper_order: Optional[Sequence[str]] = None) -> ExtractionOutcome:
        """
        Extract the articles of one text section.

        Args:
            section: Section being processed
            page_texts: ``(page_number, raw_text)`` for the section's pages
            publication_date: Date stamped on every article
            anchor_titles: Reference titles expected in this section, if any
            newspaper_order: Outlet order for positional source mapping

        Returns:
            ExtractionOutcome with the articles, recovered errors and the
            strategy that produced them (None when nothing was found)
        """
        outcome = ExtractionOutcome()
        text, offsets = clean_section_text(section, page_texts)
        if not text:
            logger.info(f"Section {section.id} has no text after cleaning")
            return outcome

        fragments: List[Fragment] = []

        if anchor_titles:
            try:
                fragments = self._split_by_anchors(text, anchor_titles)
                outcome.strategy = "anchors"
            except ArticleBoundaryAmbiguous as e:
                e.section_id = section.id
                logger.info(f"Anchoring failed for {section.id}: {e.message}")
                outcome.errors.append(e.to_record())

        if not fragments and section.split_pattern:
            fragments = self._split_by_pattern(text, section.split_pattern)
            outcome.strategy = section.split_pattern if fragments else None

        if not fragments:
            fragments = self._split_paragraphs(text)
            outcome.strategy = "paragraphs" if fragments else None

        order = list(newspaper_order or DEFAULT_NEWSPAPER_ORDER)
        for fragment in fragments:
            ordinal = len(outcome.articles)
            source = self._resolve_source(section, fragment, ordinal, order)
            try:
                article = Article(
                    title=fragment.title,
                    content=fragment.body,
                    source=source,
                    section_id=section.id,
                    publication_date=publication_date,
                    page_number=self._page_at(offsets, fragment.offset),
                )
            except ValueError as e:
                logger.debug(f"Skipping fragment in {section.id}: {e}")
                continue
            outcome.articles.append(article)

        logger.info(f"Extracted {len(outcome.articles)} articles from {section.id} "
                    f"using {outcome.strategy or 'no strategy'}")
        return outcome

    def _split_by_anchors(self, text: str, anchor_titles: Sequence[str]) -> List[Fragment]:
        titles = [normalize_quotes(t).strip() for t in anchor_titles if t and t.strip()]
        located = {}
        for title in titles:
            index = text.find(title)
            if index >= 0 and index not in located:
                located[index] = title

        if len(located) * 2 <= len(titles):
            raise ArticleBoundaryAmbiguous(
                f"Located {len(located)} of {len(titles)} reference titles", stage=STAGE)

        starts = sorted(located)
        fragments = []
        for i, start in enumerate(starts):
            title = located[start]
            end = starts[i + 1] if i + 1 < len(starts) else len(text)
            body = text[start + len(title):end].strip()
            if len(body) < self.min_content_length:
                logger.debug(f"Anchored article '{title[:40]}' has too little content, skipping")
                continue
            fragments.append(self._fragment(title, body, start))
        return fragments

    def _split_by_pattern(self, text: str, pattern: str) -> List[Fragment]:
        if pattern == "headline":
            return self._split_by_headlines(text)
        if pattern == "byline":
            return self._split_by_bylines(text)
        raise ValueError(f"Unknown split pattern: {pattern}")

    def _is_headline(self, line: str) -> bool:
        line = line.strip()
        return bool(HEADLINE_RE.fullmatch(line)) and re.search(r"[A-ZÁÉÍÓÚÑ]{2}", line) is not None

    def _split_by_headlines(self, text: str) -> List[Fragment]:
        # (offset, title lines, body lines)
        blocks: List[Tuple[int, List[str], List[str]]] = []
        position = 0
        for line in text.split("\n"):
            if self._is_headline(line):
                if blocks and not blocks[-1][2]:
                    blocks[-1][1].append(line.strip())
                else:
                    blocks.append((position + len(line) - len(line.lstrip()), [line.strip()], []))
            elif blocks:
                blocks[-1][2].append(line)
            position += len(line) + 1

        fragments = []
        for offset, title_lines, body_lines in blocks:
            body = "\n".join(body_lines).strip()
            if len(body) < self.min_content_length:
                continue
            fragments.append(self._fragment(" ".join(title_lines), body, offset))
        return fragments

    def _split_by_bylines(self, text: str) -> List[Fragment]:
        matches = list(BYLINE_RE.finditer(text))
        fragments = []
        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
            chunk = text[match.end():end].strip()
            if len(chunk) < self.min_content_length:
                continue
            first, _, rest = chunk.partition("\n")
            body = rest.strip() or chunk
            fragment = self._fragment(first.strip() or match.group(1), body, match.start())
            fragment.source = match.group(1)
            fragments.append(fragment)
        return fragments

    def _split_paragraphs(self, text: str) -> List[Fragment]:
        fragments = []
        for match in PARAGRAPH_RE.finditer(text):
            paragraph = match.group(0).strip()
            if len(paragraph) < self.min_paragraph_length:
                continue
            lines = paragraph.split("\n")
            first = lines[0].strip()
            if len(lines) > 1 and len(first) < 100 and first[:1].isupper():
                title, body = first, "\n".join(lines[1:]).strip()
            else:
                sentence = SENTENCE_RE.match(paragraph)
                title = sentence.group(0).strip() if sentence else paragraph
                body = paragraph[sentence.end():].strip() if sentence else ""
            fragments.append(self._fragment(title, body or paragraph, match.start(), whole=paragraph))
        return fragments

    def _fragment(self, title: str, body: str, offset: int, whole: Optional[str] = None) -> Fragment:
        title = " ".join(title.split())
        if len(title) > self.max_title_length:
            content = whole or f"{title}\n{body}"
            placeholder = " ".join(content[:self.max_title_length - 3].split()) + "..."
            return Fragment(title=placeholder, body=content, offset=offset)
        return Fragment(title=title, body=body, offset=offset)

    def _resolve_source(self, section: Section, fragment: Fragment, ordinal: int, order: List[str]) -> str:
        if section.id in POSITIONAL_SOURCE_SECTIONS and ordinal < len(order):
            return order[ordinal]
        named = self._source_from_text(fragment)
        if named:
            return named
        if fragment.source:
            return fragment.source
        return section.display_name

    def _source_from_text(self, fragment: Fragment) -> Optional[str]:
        lines = [line.strip() for line in fragment.body.split("\n") if line.strip()]
        candidates = lines[:3] + lines[-2:]
        for line in candidates:
            if len(line) > SOURCE_LINE_MAX:
                continue
            name = match_newspaper(line, self.newspaper_names)
            if name:
                return name
        return None

    @staticmethod
    def _page_at(offsets: List[Tuple[int, int]], position: int) -> Optional[int]:
        if not offsets:
            return None
        starts = [start for start, _ in offsets]
        index = bisect.bisect_right(starts, position) - 1
        return offsets[max(index, 0)][1]
