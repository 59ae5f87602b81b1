"""Error taxonomy for the extraction pipeline.

Fatal errors (``SourceUnreadable``, ``PersistenceFailed``) end a run. Every
other error is recovered by a fallback and only recorded in the run's
``ExtractionResult.errors``.
"""

from typing import Optional


class ExtractionError(Exception):
    """Base class for pipeline errors."""

    fatal = False

    def __init__(self,
                 message: str,
                 stage: Optional[str] = None,
                 section_id: Optional[str] = None,
                 page_number: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.section_id = section_id
        self.page_number = page_number

    def to_record(self):
        from .models import ErrorRecord

        return ErrorRecord(
            stage=self.stage or "unknown",
            error_type=type(self).__name__,
            message=self.message,
            section_id=self.section_id,
            page_number=self.page_number,
        )


class SourceUnreadable(ExtractionError):
    """The PDF does not exist or is not a valid PDF."""

    fatal = True


class ToolInvocationFailed(ExtractionError):
    """A text-layer, rasterization or OCR step failed for a page or range."""


class SectionNotDetected(ExtractionError):
    """A known section had no header match and fell back to the static table."""


class ArticleBoundaryAmbiguous(ExtractionError):
    """A boundary strategy could not split a section; the next one is tried."""


class ImageAssociationFailed(ExtractionError):
    """An image could not be named or linked; it is left unassociated."""


class PersistenceFailed(ExtractionError):
    """Writing the run to the content store failed; nothing was committed."""

    fatal = True
