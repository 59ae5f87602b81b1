"""
Image association for image-type sections.

Every page of an image section becomes one Image row. Front pages are named
after their newspaper (file name, then OCR of the masthead, then position in
the run's newspaper order) and linked to the article already extracted for
that newspaper. Cartoons and opinion columns only get sequential titles.
Pages whose raster is missing get a generated placeholder so that no page of
an image section is lost.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytesseract
from PIL import Image as PILImage
from PIL import ImageDraw, ImageFont

from .exceptions import ImageAssociationFailed, ToolInvocationFailed
from .models import Article, ErrorRecord, Image, ImageBackedArticle, Section
from .normalize import fold, match_newspaper, match_newspaper_slug
from .sections import DEFAULT_NEWSPAPER_ORDER, NEWSPAPER_NAMES

logger = logging.getLogger(__name__)

STAGE = "associating_images"

PLACEHOLDER_SIZE = (850, 1100)


@dataclass
class AssociatorConfig:
    """Per-run configuration of the image associator."""
    publication_date: date
    images_dir: Path
    newspaper_names: List[str] = field(default_factory=lambda: list(NEWSPAPER_NAMES))
    newspaper_order: List[str] = field(default_factory=lambda: list(DEFAULT_NEWSPAPER_ORDER))
    ocr_enabled: bool = True
    ocr_language: str = "spa"
    ocr_top_fraction: float = 0.2
    tesseract_cmd: Optional[str] = None
    create_front_page_stubs: bool = False

    @classmethod
    def from_settings(cls, settings, publication_date: date,
                      newspaper_order: Optional[Sequence[str]] = None) -> "AssociatorConfig":
        return cls(
            publication_date=publication_date,
            images_dir=Path(settings.images_dir) / publication_date.isoformat(),
            newspaper_order=list(newspaper_order or DEFAULT_NEWSPAPER_ORDER),
            ocr_enabled=settings.ocr_enabled,
            ocr_language=settings.ocr_language,
            ocr_top_fraction=settings.ocr_top_fraction,
            tesseract_cmd=settings.tesseract_cmd,
            create_front_page_stubs=settings.create_front_page_stubs,
        )


@dataclass
class AssociationOutcome:
    images: List[Image] = field(default_factory=list)
    stubs: List[ImageBackedArticle] = field(default_factory=list)
    errors: List[ErrorRecord] = field(default_factory=list)


class ImageAssociator:
    """Turn an image section's rasters into Image rows."""

    def __init__(self, config: AssociatorConfig):
        self.config = config
        self._ocr_available: Optional[bool] = None

    def ocr_available(self) -> bool:
        """Whether the tesseract engine can be used for this run."""
        if self._ocr_available is None:
            if not self.config.ocr_enabled:
                self._ocr_available = False
            else:
                if self.config.tesseract_cmd:
                    pytesseract.pytesseract.tesseract_cmd = self.config.tesseract_cmd
                try:
                    version = pytesseract.get_tesseract_version()
                    logger.info(f"Tesseract {version} available for masthead OCR")
                    self._ocr_available = True
                except (pytesseract.TesseractNotFoundError, OSError):
                    logger.warning("Tesseract not available, front pages will be named by position")
                    self._ocr_available = False
        return self._ocr_available

    def associate_images(self,
                         section: Section,
                         rasters: Dict[int, Optional[Path]],
                         articles: Sequence[Article] = ()) -> AssociationOutcome:
        """
        Build the Image rows of one image section.

        Args:
            section: Image-type section
            rasters: ``{page_number: png_path or None}`` for the section's pages
            articles: Articles already extracted in this run (read only)

        Returns:
            AssociationOutcome with exactly one image per section page
        """
        outcome = AssociationOutcome()
        linked: set = set()

        for ordinal, page_number in enumerate(section.pages):
            path = rasters.get(page_number)
            if path is None or not Path(path).exists():
                outcome.images.append(self._placeholder_image(section, page_number, outcome))
                continue

            if section.image_kind == "front_page":
                image = self._front_page_image(section, page_number, ordinal, Path(path),
                                               articles, linked, outcome)
            else:
                image = self._sequential_image(section, page_number, ordinal, Path(path))
            outcome.images.append(image)

        logger.info(f"Section {section.id}: {len(outcome.images)} images, "
                    f"{sum(1 for i in outcome.images if i.is_placeholder)} placeholders, "
                    f"{sum(1 for i in outcome.images if i.article_id)} linked")
        return outcome

    def _front_page_image(self, section: Section, page_number: int, ordinal: int, path: Path,
                          articles: Sequence[Article], linked: set,
                          outcome: AssociationOutcome) -> Image:
        name = match_newspaper_slug(path.stem, self.config.newspaper_names)
        if not name and self.ocr_available():
            try:
                name = self.identify_newspaper(path)
            except ToolInvocationFailed as e:
                e.section_id = section.id
                e.page_number = page_number
                outcome.errors.append(e.to_record())
        if not name:
            order = self.config.newspaper_order
            name = order[ordinal] if ordinal < len(order) else f"Periódico {ordinal + 1}"

        image = Image(
            filename=path.name,
            title=f"Portada de {name}",
            description=f"Primera plana del periódico {name}",
            section_id=section.id,
            publication_date=self.config.publication_date,
            page_number=page_number,
        )

        article = self._matching_article(name, articles, linked)
        if article is None and self.config.create_front_page_stubs:
            article = ImageBackedArticle(
                title=image.title,
                content=image.description,
                source=name,
                section_id=section.id,
                publication_date=self.config.publication_date,
                page_number=page_number,
            )
            outcome.stubs.append(article)
        if article is not None:
            image.article_id = article.id
            linked.add(article.id)
        else:
            logger.debug(f"No article for front page of {name} (page {page_number})")
        return image

    def _matching_article(self, name: str, articles: Sequence[Article], linked: set) -> Optional[Article]:
        wanted = fold(name)
        for article in articles:
            if article.id in linked or not article.source:
                continue
            if fold(article.source) == wanted:
                return article
        return None

    def identify_newspaper(self, path: Path) -> Optional[str]:
        """OCR the masthead strip of a front page and match it against the list."""
        try:
            with PILImage.open(path) as img:
                width, height = img.size
                strip = img.crop((0, 0, width, max(1, int(height * self.config.ocr_top_fraction))))
                text = pytesseract.image_to_string(strip, lang=self.config.ocr_language)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as e:
            raise ToolInvocationFailed(f"OCR failed for {path.name}: {e}", stage=STAGE)
        name = match_newspaper(text, self.config.newspaper_names)
        logger.debug(f"OCR masthead of {path.name}: {text.strip()[:60]!r} -> {name}")
        return name

    def _sequential_image(self, section: Section, page_number: int, ordinal: int, path: Path) -> Image:
        n = ordinal + 1
        day = self.config.publication_date.isoformat()
        if section.image_kind == "cartoon":
            title, description = f"Cartón Político {n}", f"Cartón político del día {day}"
        elif section.image_kind == "column":
            title, description = f"Columna Política {n}", f"Columna política del día {day}"
        else:
            title, description = f"Imagen {n} de {section.display_name}", f"Imagen extraída de la sección {section.id}"
        return Image(
            filename=path.name,
            title=title,
            description=description,
            section_id=section.id,
            publication_date=self.config.publication_date,
            page_number=page_number,
        )

    def _placeholder_image(self, section: Section, page_number: int, outcome: AssociationOutcome) -> Image:
        filename = f"pagina-{page_number:03d}-placeholder.png"
        day = self.config.publication_date.isoformat()
        lines = [
            "Imagen no disponible",
            f"Sección: {section.display_name} ({section.id})",
            f"Archivo: {filename}",
            f"Página: {page_number}",
            f"Fecha: {day}",
        ]
        try:
            write_placeholder(self.config.images_dir / filename, lines)
        except OSError as e:
            logger.error(f"Could not write placeholder for page {page_number}: {e}")
            outcome.errors.append(ImageAssociationFailed(
                f"Placeholder write failed: {e}", stage=STAGE,
                section_id=section.id, page_number=page_number,
            ).to_record())

        return Image(
            filename=filename,
            title=f"Imagen no disponible: {section.display_name}, página {page_number}",
            description="; ".join(lines[1:]),
            section_id=section.id,
            publication_date=self.config.publication_date,
            page_number=page_number,
            is_placeholder=True,
        )


def write_placeholder(path: Path, lines: Sequence[str]) -> Path:
    """Render a plain PNG carrying diagnostic text."""
    path.parent.mkdir(parents=True, exist_ok=True)
    canvas = PILImage.new("RGB", PLACEHOLDER_SIZE, "white")
    draw = ImageDraw.Draw(canvas)
    font = ImageFont.load_default()
    draw.rectangle((10, 10, PLACEHOLDER_SIZE[0] - 10, PLACEHOLDER_SIZE[1] - 10), outline="gray", width=3)
    y = 60
    for line in lines:
        draw.text((60, y), line, fill="black", font=font)
        y += 30
    canvas.save(path, format="PNG")
    return path
