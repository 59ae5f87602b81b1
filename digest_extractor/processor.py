"""
Extraction processor for the daily digest.

This module coordinates one extraction run for a publication date:
- Locating the day's PDF (local directory, then the MinIO cache)
- Reading pages and building the section map
- Extracting articles, attaching URLs and associating images
- Replacing the date's stored content in one transaction

Page images are rendered into a staging directory and only replace the
date's published images once the database transaction has committed.
"""

import asyncio
import logging
import shutil
import time
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .article_extractor import ArticleExtractor
from .config import Settings
from .database import ContentStore
from .exceptions import ExtractionError, ImageAssociationFailed, SourceUnreadable
from .image_associator import AssociationOutcome, AssociatorConfig, ImageAssociator
from .link_correlator import correlate_urls
from .manifest import IssueManifest, load_manifest
from .models import Article, ErrorRecord, ExtractionResult, Image, Page, RunState, Section
from .observability import Metrics, setup_logging
from .page_reader import PageReader
from .section_map import UNCLASSIFIED_DETECTION, SectionMap, build_section_map
from .sections import UNCLASSIFIED
from .storage import PdfCache

logger = logging.getLogger(__name__)


def parse_publication_date(value: Union[date, str, None]) -> date:
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as e:
        raise ValueError(f"Invalid date '{value}'. Use YYYY-MM-DD format") from e


class ExtractionProcessor:
    """Main processor for coordinating digest extraction and storage."""

    def __init__(self,
                 settings: Optional[Settings] = None,
                 store: Optional[ContentStore] = None,
                 reader: Optional[PageReader] = None,
                 pdf_cache: Optional[PdfCache] = None,
                 metrics: Optional[Metrics] = None):
        """
        Initialize extraction processor.

        Args:
            settings: Runtime settings (read from the environment if not provided)
            store: Content store (built from settings.database_url if not provided)
            reader: Page reader (built from settings if not provided)
            pdf_cache: MinIO cache used when the PDF is not on disk
            metrics: Prometheus metrics holder
        """
        self.settings = settings or Settings()
        self.store = store or ContentStore(self.settings.database_url, self.settings.database_pool_size)
        self.reader = reader or PageReader(
            raster_dpi=self.settings.raster_dpi,
            tool_timeout=self.settings.tool_timeout_seconds,
            retry_timeout_factor=self.settings.retry_timeout_factor,
        )
        self.article_extractor = ArticleExtractor(
            max_title_length=self.settings.max_title_length,
            min_content_length=self.settings.min_content_length,
            min_paragraph_length=self.settings.min_paragraph_length,
        )
        self.pdf_cache = pdf_cache if pdf_cache is not None else PdfCache(self.settings)
        self.metrics = metrics or Metrics.init()
        # Per-date locks, dropped once no run holds or awaits them
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def initialize(self, create_schema: bool = True):
        """Initialize the processor components."""
        logger.info("Initializing extraction processor")
        await self.store.initialize(create_schema=create_schema)
        logger.info("Extraction processor ready")

    async def close(self):
        """Clean up processor resources."""
        await self.store.close()
        logger.info("Extraction processor closed")

    def locate_pdf(self, publication_date: date) -> Path:
        """Return the local PDF for a date, fetching it from the cache if needed."""
        path = Path(self.settings.pdf_dir) / f"{publication_date.isoformat()}.pdf"
        if path.exists():
            return path
        if self.pdf_cache.enabled:
            fetched = self.pdf_cache.fetch_pdf(publication_date, path)
            if fetched:
                return fetched
        raise SourceUnreadable(f"No PDF for {publication_date.isoformat()} at {path}", stage=RunState.READING.value)

    async def run_extraction(self, publication_date: Union[date, str, None] = None) -> ExtractionResult:
        """
        Run the full extraction for one publication date.

        Runs for the same date are serialized; different dates run
        independently. Only an unreadable source or a failed write end the run
        with ``success=False``; everything else is recorded in ``errors``.
        """
        publication_date = parse_publication_date(publication_date)
        day = publication_date.isoformat()
        lock = self._locks.get(day)
        if lock is None:
            lock = self._locks[day] = asyncio.Lock()
        if lock.locked():
            logger.info(f"Extraction for {day} already running, waiting")
        self._lock_users[day] = self._lock_users.get(day, 0) + 1
        try:
            async with lock:
                return await self._run(publication_date)
        finally:
            self._lock_users[day] -= 1
            if not self._lock_users[day]:
                del self._lock_users[day]
                del self._locks[day]

    def image_dirs(self, publication_date: date) -> Tuple[Path, Path]:
        """``(published, staging)`` image directories for a date."""
        root = Path(self.settings.images_dir)
        day = publication_date.isoformat()
        return root / day, root / f".{day}.staging"

    async def _run(self, publication_date: date) -> ExtractionResult:
        day = publication_date.isoformat()
        result = ExtractionResult(date=day)
        start_time = time.perf_counter()
        published_dir, staging_dir = self.image_dirs(publication_date)
        logger.info(f"Starting extraction for {day}")

        try:
            self._enter(result, RunState.READING)
            with self.metrics.timer(RunState.READING.value):
                pdf_path = await asyncio.to_thread(self.locate_pdf, publication_date)
                document = await asyncio.to_thread(self.reader.read_pages, pdf_path)
            for record in document.errors:
                result.add_error(record)
            manifest = self._load_manifest(publication_date, result)

            self._enter(result, RunState.SEGMENTING)
            with self.metrics.timer(RunState.SEGMENTING.value):
                section_map = self._segment(document.pages, result)
            for record in section_map.errors:
                result.add_error(record)
            for section in section_map.sections:
                result.section_stats(section.id)['pages'] = list(section.pages)

            self._enter(result, RunState.EXTRACTING_ARTICLES)
            articles_by_section: Dict[str, List[Article]] = {}
            with self.metrics.timer(RunState.EXTRACTING_ARTICLES.value):
                for section in section_map.sections:
                    if section.is_image:
                        continue
                    try:
                        outcome = await asyncio.to_thread(
                            self.article_extractor.extract_articles,
                            section,
                            document.texts_for(section),
                            publication_date,
                            manifest.titles_for(section.id),
                            manifest.newspaper_order,
                        )
                    except Exception as e:
                        self._record_unexpected(result, RunState.EXTRACTING_ARTICLES, section.id, e)
                        continue
                    for record in outcome.errors:
                        result.add_error(record)
                    articles_by_section[section.id] = outcome.articles
                    stats = result.section_stats(section.id)
                    stats['processed'] = True
                    stats['strategy'] = outcome.strategy

            self._enter(result, RunState.CORRELATING_URLS)
            with self.metrics.timer(RunState.CORRELATING_URLS.value):
                for section in section_map.sections:
                    if section.id not in articles_by_section:
                        continue
                    try:
                        articles_by_section[section.id] = correlate_urls(
                            section, document.annotations, articles_by_section[section.id],
                            self.settings.annotation_url_pattern,
                        )
                    except Exception as e:
                        self._record_unexpected(result, RunState.CORRELATING_URLS, section.id, e)

            articles: List[Article] = [a for s in section_map.sections for a in articles_by_section.get(s.id, [])]
            images: List[Image] = []

            self._enter(result, RunState.ASSOCIATING_IMAGES)
            with self.metrics.timer(RunState.ASSOCIATING_IMAGES.value):
                config = replace(
                    AssociatorConfig.from_settings(self.settings, publication_date, manifest.newspaper_order),
                    images_dir=staging_dir,
                )
                associator = ImageAssociator(config)
                await asyncio.to_thread(shutil.rmtree, staging_dir, ignore_errors=True)
                for section in section_map.sections:
                    if not section.is_image:
                        continue
                    rasters = await self._rasterize(pdf_path, section, staging_dir, result)
                    outcome = await self._associate(associator, section, rasters, tuple(articles), result)
                    if outcome is None:
                        continue
                    for record in outcome.errors:
                        result.add_error(record)
                    images.extend(outcome.images)
                    articles.extend(outcome.stubs)
                    stats = result.section_stats(section.id)
                    stats['processed'] = True
                    stats['images'] = len(outcome.images)
                    stats['articles'] = len(outcome.stubs)

            for section_id, section_articles in articles_by_section.items():
                result.section_stats(section_id)['articles'] = len(section_articles)

            self._enter(result, RunState.PERSISTING)
            with self.metrics.timer(RunState.PERSISTING.value):
                await self.store.replace_date(publication_date, articles, images)
                try:
                    await asyncio.to_thread(self._publish_images, staging_dir, published_dir)
                except OSError as e:
                    logger.error(f"Stored {day} but could not publish its images: {e}")
                    result.add_error(ImageAssociationFailed(
                        f"Could not publish images to {published_dir}: {e}",
                        stage=RunState.PERSISTING.value,
                    ).to_record())

            result.total_articles = len(articles)
            result.total_images = len(images)
            self._enter(result, RunState.DONE)

        except ExtractionError as e:
            # Non-fatal errors are recorded inside their state; reaching here ends the run
            logger.error(f"Extraction for {day} failed in {result.state.value}: {e.message}")
            e.stage = e.stage or result.state.value
            result.add_error(e.to_record())
            result.success = False
            result.state = RunState.FAILED
            result.total_articles = 0
            result.total_images = 0

        finally:
            await asyncio.to_thread(shutil.rmtree, staging_dir, ignore_errors=True)

        result.duration_ms = int((time.perf_counter() - start_time) * 1000)
        self._report(result)
        return result

    def _enter(self, result: ExtractionResult, state: RunState) -> None:
        logger.debug(f"[{result.date}] {result.state.value} -> {state.value}")
        result.state = state

    def _load_manifest(self, publication_date: date, result: ExtractionResult) -> IssueManifest:
        try:
            return load_manifest(self.settings.manifest_dir, publication_date)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring invalid manifest for {publication_date}: {e}")
            result.add_error(ErrorRecord(
                stage=RunState.READING.value,
                error_type="ManifestInvalid",
                message=str(e)[:500],
            ))
            return IssueManifest()

    def _segment(self, pages: Sequence[Page], result: ExtractionResult) -> SectionMap:
        """Build the section map; on failure every page is left unclassified."""
        try:
            return build_section_map(
                pages,
                minimal_text_threshold=self.settings.minimal_text_threshold,
                header_lines=self.settings.header_lines,
                proximity_pages=self.settings.proximity_pages,
            )
        except Exception as e:
            self._record_unexpected(result, RunState.SEGMENTING, None, e)
            unclassified = Section(
                id=UNCLASSIFIED.id,
                display_name=UNCLASSIFIED.display_name,
                content_type=UNCLASSIFIED.content_type,
                pages=tuple(p.number for p in pages),
                detection=UNCLASSIFIED_DETECTION,
            )
            return SectionMap(sections=[unclassified])

    async def _rasterize(self, pdf_path: Path, section: Section, output_dir: Path,
                         result: ExtractionResult) -> Dict[int, Optional[Path]]:
        raster_errors: List[ErrorRecord] = []
        try:
            rasters = await asyncio.to_thread(
                self.reader.rasterize, pdf_path, section.pages, output_dir, raster_errors, section.id,
            )
        except Exception as e:
            self._record_unexpected(result, RunState.ASSOCIATING_IMAGES, section.id, e)
            rasters = {n: None for n in section.pages}
        for record in raster_errors:
            result.add_error(record)
        return rasters

    async def _associate(self, associator: ImageAssociator, section: Section,
                         rasters: Dict[int, Optional[Path]], articles: Sequence[Article],
                         result: ExtractionResult) -> Optional[AssociationOutcome]:
        try:
            return await asyncio.to_thread(associator.associate_images, section, rasters, articles)
        except Exception as e:
            self._record_unexpected(result, RunState.ASSOCIATING_IMAGES, section.id, e)
        # Placeholders only, so every page of the section still yields an image
        try:
            return await asyncio.to_thread(
                associator.associate_images, section, {n: None for n in section.pages},
            )
        except Exception as e:
            self._record_unexpected(result, RunState.ASSOCIATING_IMAGES, section.id, e)
            return None

    def _record_unexpected(self, result: ExtractionResult, state: RunState,
                           section_id: Optional[str], error: Exception) -> None:
        logger.exception(f"Unexpected error in {state.value} for section {section_id or '-'}")
        result.add_error(ErrorRecord(
            stage=state.value,
            error_type=type(error).__name__,
            message=str(error),
            section_id=section_id,
        ))

    @staticmethod
    def _publish_images(staging_dir: Path, published_dir: Path) -> None:
        """Replace the date's generated images with the staged ones."""
        published_dir.mkdir(parents=True, exist_ok=True)
        for stale in published_dir.glob("pagina-*.png"):
            stale.unlink(missing_ok=True)
        if not staging_dir.is_dir():
            return
        for produced in staging_dir.iterdir():
            if produced.is_file():
                shutil.move(str(produced), str(published_dir / produced.name))

    def _report(self, result: ExtractionResult) -> None:
        self.metrics.inc_run("success" if result.success else "failed")
        for section_id, stats in result.sections.items():
            self.metrics.inc_articles(section_id, stats.get('articles', 0))
            self.metrics.inc_images(section_id, stats.get('images', 0))
        for record in result.errors:
            self.metrics.inc_error(record.error_type)
        self.metrics.push()

        if result.success:
            logger.info(f"Extraction for {result.date} complete: {result.total_articles} articles, "
                        f"{result.total_images} images, {len(result.errors)} recovered errors "
                        f"in {result.duration_ms} ms")
        else:
            logger.error(f"Extraction for {result.date} failed after {result.duration_ms} ms")


async def main():
    """CLI interface for the extraction processor."""
    import argparse
    import json

    parser = argparse.ArgumentParser(description="Extract the daily digest PDF into articles and images")
    parser.add_argument("--date", type=str, help="Publication date to process (YYYY-MM-DD, default: today)")
    parser.add_argument("--init-db", action="store_true", help="Create tables before running")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    setup_logging("DEBUG" if args.verbose else None)

    processor = ExtractionProcessor()
    await processor.initialize(create_schema=args.init_db)
    try:
        result = await processor.run_extraction(args.date)
    finally:
        await processor.close()

    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
