"""
Raw page reader for the daily digest PDF.

This module turns a PDF into per-page text and link annotations, and renders
pages to PNG on demand:
- Text layer via pdfminer layout analysis (logical reading order)
- Hyperlink annotations (``/Annots`` with a URI action)
- Lazy rasterization of image pages through ``pdftoppm``
"""

import logging
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from pdfminer.converter import PDFPageAggregator
from pdfminer.layout import LAParams, LTTextContainer
from pdfminer.pdfdocument import PDFDocument
from pdfminer.pdfinterp import PDFPageInterpreter, PDFResourceManager
from pdfminer.pdfpage import PDFPage
from pdfminer.pdfparser import PDFParser
from pdfminer.pdftypes import resolve1
from pdfminer.psparser import PSException

from .exceptions import SourceUnreadable, ToolInvocationFailed
from .models import ErrorRecord, LinkAnnotation, Page, PdfDocument

logger = logging.getLogger(__name__)

STAGE = "reading"
RASTER_STAGE = "associating_images"


def contiguous_runs(page_numbers: Iterable[int]) -> List[Tuple[int, int]]:
    """Group page numbers into inclusive ``(first, last)`` runs."""
    runs: List[Tuple[int, int]] = []
    for n in sorted(set(page_numbers)):
        if runs and n == runs[-1][1] + 1:
            runs[-1] = (runs[-1][0], n)
        else:
            runs.append((n, n))
    return runs


def raster_filename(page_number: int) -> str:
    return f"pagina-{page_number:03d}.png"


class PageReader:
    """Read page text, annotations and rasters from a digest PDF."""

    def __init__(self,
                 raster_dpi: int = 150,
                 tool_timeout: float = 60.0,
                 retry_timeout_factor: float = 0.5,
                 pdftoppm_cmd: str = "pdftoppm"):
        """
        Initialize page reader.

        Args:
            raster_dpi: Resolution of rendered page images
            tool_timeout: Timeout in seconds for one pdftoppm invocation
            retry_timeout_factor: Multiplier applied to the timeout on the single retry
            pdftoppm_cmd: Name or path of the pdftoppm binary
        """
        self.raster_dpi = raster_dpi
        self.tool_timeout = tool_timeout
        self.retry_timeout_factor = retry_timeout_factor
        self.pdftoppm_cmd = pdftoppm_cmd

        self.laparams = LAParams(
            boxes_flow=0.5,
            word_margin=0.1,
            char_margin=2.0,
            line_margin=0.5,
            detect_vertical=True
        )

    def read_pages(self, pdf_path: Path) -> PdfDocument:
        """
        Extract the text layer and link annotations of every page.

        Args:
            pdf_path: Path to PDF file

        Returns:
            PdfDocument with one Page per PDF page, in order

        Raises:
            SourceUnreadable: the file is missing or is not a PDF
        """
        pdf_path = Path(pdf_path)
        logger.info(f"Reading pages from PDF: {pdf_path}")

        if not pdf_path.is_file():
            raise SourceUnreadable(f"PDF file not found: {pdf_path}", stage=STAGE)

        pages: List[Page] = []
        annotations: List[LinkAnnotation] = []
        errors: List[ErrorRecord] = []

        with open(pdf_path, 'rb') as fp:
            try:
                document = PDFDocument(PDFParser(fp))
                pdf_pages = list(PDFPage.create_pages(document))
            except (PSException, ValueError, KeyError, TypeError) as e:
                raise SourceUnreadable(f"Invalid PDF {pdf_path}: {e}", stage=STAGE) from e

            if not pdf_pages:
                raise SourceUnreadable(f"PDF has no pages: {pdf_path}", stage=STAGE)

            rsrcmgr = PDFResourceManager()
            device = PDFPageAggregator(rsrcmgr, laparams=self.laparams)
            interpreter = PDFPageInterpreter(rsrcmgr, device)

            for page_num, pdf_page in enumerate(pdf_pages, 1):
                try:
                    interpreter.process_page(pdf_page)
                    text = self._layout_text(device.get_result())
                    pages.append(Page(number=page_num, raw_text=text))
                except Exception as e:
                    logger.warning(f"Text extraction failed on page {page_num}: {e}")
                    errors.append(ToolInvocationFailed(
                        f"Text extraction failed: {e}", stage=STAGE, page_number=page_num
                    ).to_record())
                    pages.append(Page(number=page_num, raw_text="", text_failed=True))

                try:
                    annotations.extend(self._page_links(pdf_page, page_num))
                except Exception as e:
                    logger.warning(f"Could not read annotations on page {page_num}: {e}")
                    errors.append(ToolInvocationFailed(
                        f"Annotation read failed: {e}", stage=STAGE, page_number=page_num
                    ).to_record())

        logger.info(f"Read {len(pages)} pages and {len(annotations)} link annotations from {pdf_path}")
        return PdfDocument(path=pdf_path, total_pages=len(pages), pages=pages,
                           annotations=annotations, errors=errors)

    def _layout_text(self, layout) -> str:
        """Join the page's text boxes, in layout order, with blank lines."""
        blocks = []
        for element in layout:
            if isinstance(element, LTTextContainer):
                text = element.get_text().strip()
                if text:
                    blocks.append(text)
        return "\n\n".join(blocks)

    def _page_links(self, pdf_page: PDFPage, page_num: int) -> List[LinkAnnotation]:
        links = []
        annots = resolve1(pdf_page.annots) if pdf_page.annots else None
        for ref in annots or []:
            annot = resolve1(ref)
            if not isinstance(annot, dict):
                continue
            subtype = resolve1(annot.get('Subtype'))
            if getattr(subtype, 'name', subtype) != 'Link':
                continue
            action = resolve1(annot.get('A'))
            if not isinstance(action, dict):
                continue
            uri = resolve1(action.get('URI'))
            if isinstance(uri, bytes):
                uri = uri.decode('utf-8', errors='ignore')
            if not uri:
                continue
            rect = resolve1(annot.get('Rect')) or (0, 0, 0, 0)
            x0, y0, x1, y1 = (float(resolve1(v)) for v in rect)
            links.append(LinkAnnotation(page_number=page_num, uri=str(uri).strip(),
                                        rect=(x0, y0, x1, y1)))
        return links

    def rasterize(self,
                  pdf_path: Path,
                  page_numbers: Iterable[int],
                  output_dir: Path,
                  errors: Optional[List[ErrorRecord]] = None,
                  section_id: Optional[str] = None) -> Dict[int, Optional[Path]]:
        """
        Render pages to ``pagina-NNN.png`` files in ``output_dir``.

        One pdftoppm call is made per contiguous run of pages. A page whose
        raster could not be produced maps to None and a ToolInvocationFailed
        record is appended to ``errors``.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        results: Dict[int, Optional[Path]] = {}

        for first, last in contiguous_runs(page_numbers):
            run_failed = False
            try:
                rendered = self._render_run(Path(pdf_path), first, last, output_dir)
            except ToolInvocationFailed as e:
                logger.warning(f"Rasterization failed for pages {first}-{last}: {e.message}")
                rendered = {}
                run_failed = True
                if errors is not None:
                    e.section_id = section_id
                    e.page_number = first
                    errors.append(e.to_record())

            for n in range(first, last + 1):
                path = rendered.get(n)
                if path is None and not run_failed and errors is not None:
                    errors.append(ToolInvocationFailed(
                        "pdftoppm produced no output for page", stage=RASTER_STAGE,
                        section_id=section_id, page_number=n
                    ).to_record())
                results[n] = path

        return results

    def _render_run(self, pdf_path: Path, first: int, last: int, output_dir: Path) -> Dict[int, Path]:
        with tempfile.TemporaryDirectory(dir=output_dir) as tmp:
            prefix = Path(tmp) / "raster"
            cmd = [
                self.pdftoppm_cmd, "-png", "-r", str(self.raster_dpi),
                "-f", str(first), "-l", str(last),
                str(pdf_path), str(prefix),
            ]
            self._run_tool(cmd)

            rendered: Dict[int, Path] = {}
            for produced in Path(tmp).glob("raster-*.png"):
                match = re.search(r"-(\d+)\.png$", produced.name)
                if not match:
                    continue
                n = int(match.group(1))
                target = output_dir / raster_filename(n)
                shutil.move(str(produced), str(target))
                rendered[n] = target

        logger.debug(f"Rendered {len(rendered)} page(s) {first}-{last} from {pdf_path.name}")
        return rendered

    def _run_tool(self, cmd: List[str]) -> None:
        timeout = self.tool_timeout
        for attempt in (1, 2):
            try:
                subprocess.run(cmd, capture_output=True, timeout=timeout, check=True)
                return
            except subprocess.TimeoutExpired:
                if attempt == 2:
                    raise ToolInvocationFailed(
                        f"{cmd[0]} timed out after {timeout:.1f}s (retried)", stage=RASTER_STAGE)
                timeout = timeout * self.retry_timeout_factor
                logger.info(f"{cmd[0]} timed out, retrying once with {timeout:.1f}s")
            except subprocess.CalledProcessError as e:
                stderr = (e.stderr or b"").decode("utf-8", errors="ignore").strip()
                raise ToolInvocationFailed(
                    f"{cmd[0]} exited with {e.returncode}: {stderr[:200]}", stage=RASTER_STAGE)
            except OSError as e:
                raise ToolInvocationFailed(f"Could not run {cmd[0]}: {e}", stage=RASTER_STAGE)


def main():
    """CLI interface for page reading."""
    import argparse
    import json

    parser = argparse.ArgumentParser(description="Dump the text layer of a digest PDF")
    parser.add_argument("pdf_file", help="Path to PDF file")
    parser.add_argument("--output", "-o", help="Output JSON file (default: stdout)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose logging")

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    document = PageReader().read_pages(Path(args.pdf_file))
    output_data = {
        'source_file': str(args.pdf_file),
        'total_pages': document.total_pages,
        'pages': [{'number': p.number, 'chars': p.char_count, 'text': p.raw_text}
                  for p in document.pages],
        'annotations': [{'page': a.page_number, 'uri': a.uri} for a in document.annotations],
        'errors': [e.to_dict() for e in document.errors],
    }

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            json.dump(output_data, f, indent=2, ensure_ascii=False)
        print(f"Wrote {document.total_pages} pages to {args.output}")
    else:
        print(json.dumps(output_data, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
