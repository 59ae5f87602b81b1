"""
Extraction pipeline for the daily judicial news digest.

This package turns the digest PDF into section-tagged articles and images,
with section detection, article splitting, link correlation, image
association and date-keyed persistence in PostgreSQL.
"""

__version__ = "0.1.0"

from .models import Article, ExtractionResult, Image, ImageBackedArticle, Section
from .processor import ExtractionProcessor

__all__ = [
    "Article",
    "ExtractionProcessor",
    "ExtractionResult",
    "Image",
    "ImageBackedArticle",
    "Section",
]
