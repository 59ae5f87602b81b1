"""
Data model for the digest extraction pipeline.

Sections and pages are immutable once built. Articles and images are plain
dataclasses created by the extractors; the link correlator attaches URLs by
replacing the article instance rather than mutating it in place.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import ClassVar, Dict, List, Optional, Tuple

SUMMARY_LENGTH = 200

TEXT = "text"
IMAGE = "image"


def _new_id() -> str:
    return uuid.uuid4().hex


def derive_summary(content: str, length: int = SUMMARY_LENGTH) -> str:
    """Summary is the leading ``length`` characters of the content."""
    if len(content) <= length:
        return content
    return content[:length] + "..."


@dataclass(frozen=True)
class Page:
    """One PDF page as seen by the downstream components."""
    number: int
    raw_text: str
    image_path: Optional[Path] = None
    text_failed: bool = False

    @property
    def char_count(self) -> int:
        return len(self.raw_text.strip())


@dataclass(frozen=True)
class LinkAnnotation:
    """A hyperlink annotation (URI action) found on a page."""
    page_number: int
    uri: str
    rect: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)

    @property
    def sort_key(self) -> Tuple[int, float, float]:
        # PDF y grows upwards: larger y1 means closer to the top of the page
        x0, _, _, y1 = self.rect
        return (self.page_number, -y1, x0)


@dataclass(frozen=True)
class Section:
    """A logical group of pages sharing one content type."""
    id: str
    display_name: str
    content_type: str
    pages: Tuple[int, ...]
    header_patterns: Tuple[str, ...] = ()
    detection: str = "header"
    image_kind: Optional[str] = None
    split_pattern: Optional[str] = None

    def __post_init__(self):
        if self.content_type not in (TEXT, IMAGE):
            raise ValueError(f"Unknown content type: {self.content_type}")
        if not self.pages:
            raise ValueError(f"Section {self.id} has no pages")

    @property
    def page_range(self) -> Tuple[int, int]:
        return (min(self.pages), max(self.pages))

    @property
    def is_image(self) -> bool:
        return self.content_type == IMAGE


@dataclass
class Article:
    """An article extracted from a text section."""
    title: str
    content: str
    source: str
    section_id: str
    publication_date: date
    url: Optional[str] = None
    page_number: Optional[int] = None
    id: str = field(default_factory=_new_id)

    origin: ClassVar[str] = "text"

    def __post_init__(self):
        self.title = (self.title or "").strip()
        self.content = (self.content or "").strip()
        if not self.title:
            raise ValueError("Article title must not be empty")
        if not self.content:
            raise ValueError("Article content must not be empty")

    @property
    def summary(self) -> str:
        return derive_summary(self.content)


@dataclass
class ImageBackedArticle(Article):
    """Article stub that exists only to represent an image (e.g. a front page)."""

    origin: ClassVar[str] = "image"


@dataclass
class Image:
    """A rasterized page or placeholder belonging to an image section."""
    filename: str
    title: str
    description: str
    section_id: str
    publication_date: date
    page_number: Optional[int] = None
    article_id: Optional[str] = None
    is_placeholder: bool = False
    id: str = field(default_factory=_new_id)

    @property
    def url(self) -> str:
        return f"/images/{self.publication_date.isoformat()}/{self.filename}"


@dataclass
class PdfDocument:
    """Output of the raw page reader."""
    path: Path
    total_pages: int
    pages: List[Page]
    annotations: List[LinkAnnotation] = field(default_factory=list)
    errors: List["ErrorRecord"] = field(default_factory=list)

    def page(self, number: int) -> Page:
        return self.pages[number - 1]

    def texts_for(self, section: Section) -> List[Tuple[int, str]]:
        return [(n, self.page(n).raw_text) for n in section.pages]


@dataclass
class ErrorRecord:
    """A recovered (or fatal) error with enough context for an operator."""
    stage: str
    error_type: str
    message: str
    section_id: Optional[str] = None
    page_number: Optional[int] = None

    def to_dict(self) -> Dict:
        return asdict(self)


class RunState(str, Enum):
    READING = "reading"
    SEGMENTING = "segmenting"
    EXTRACTING_ARTICLES = "extracting_articles"
    CORRELATING_URLS = "correlating_urls"
    ASSOCIATING_IMAGES = "associating_images"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ExtractionResult:
    """Summary of one extraction run, returned to the caller."""
    date: str
    success: bool = True
    state: RunState = RunState.READING
    sections: Dict[str, Dict] = field(default_factory=dict)
    total_articles: int = 0
    total_images: int = 0
    errors: List[ErrorRecord] = field(default_factory=list)
    duration_ms: int = 0

    def section_stats(self, section_id: str) -> Dict:
        return self.sections.setdefault(section_id, {
            'processed': False,
            'errors': 0,
            'articles': 0,
            'images': 0,
            'pages': [],
        })

    def add_error(self, record: ErrorRecord) -> None:
        self.errors.append(record)
        if record.section_id:
            self.section_stats(record.section_id)['errors'] += 1

    def to_dict(self) -> Dict:
        return {
            'date': self.date,
            'success': self.success,
            'state': self.state.value,
            'sections': self.sections,
            'total_articles': self.total_articles,
            'total_images': self.total_images,
            'errors': [e.to_dict() for e in self.errors],
            'duration_ms': self.duration_ms,
        }
