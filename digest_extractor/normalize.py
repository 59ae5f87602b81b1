"""Normalization helpers for the extraction layer.

PDF text layers and OCR output spell the same outlet or header in several
ways (accents dropped, typographic quotes, collapsed spaces). These helpers
fold text to a comparable form so that matching stays simple downstream.
"""

import re
import unicodedata
from typing import Iterable, Optional

from .sections import SECTION_ALIASES, definitions_by_id

QUOTE_MAP = {
    "“": '"', "”": '"', "„": '"', "«": '"', "»": '"',
    "‘": "'", "’": "'", "‚": "'", "´": "'", "`": "'",
}
_QUOTE_TABLE = str.maketrans(QUOTE_MAP)


def normalize_quotes(text: str) -> str:
    """Replace typographic quotes with their ASCII counterparts."""
    return text.translate(_QUOTE_TABLE)


def fold_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def fold(text: str) -> str:
    """Accent-free, upper-case, whitespace-collapsed form used for matching."""
    return " ".join(fold_accents(text).upper().split())


def slugify(text: str) -> str:
    folded = fold_accents(text).lower()
    return re.sub(r"[^a-z0-9]+", "-", folded).strip("-")


def normalize_section_id(section: Optional[str]) -> Optional[str]:
    """Map a section label or alias to a known section id.

    Returns None for empty or unknown values.
    """
    if not section:
        return None
    key = slugify(section)
    key = SECTION_ALIASES.get(key, key)
    return key if key in definitions_by_id() else None


def newspaper_variants(name: str) -> list:
    folded = fold(name)
    variants = [folded]
    if folded.startswith("EL "):
        variants.append(folded[3:])
    return variants


def match_newspaper(text: str, names: Iterable[str]) -> Optional[str]:
    """Return the first newspaper whose name appears in ``text``.

    Matching is accent and case insensitive and tolerates dropped spaces
    and a dropped leading article ("EL").
    """
    if not text:
        return None
    haystack = fold(text)
    squeezed = haystack.replace(" ", "")
    for name in names:
        folded = fold(name)
        # "ELUNIVERSAL" style OCR output
        if " " in folded and folded.replace(" ", "") in squeezed:
            return name
        for variant in newspaper_variants(name):
            if re.search(rf"(?<![A-Z0-9]){re.escape(variant)}(?![A-Z0-9])", haystack):
                return name
    return None


def match_newspaper_slug(stem: str, names: Iterable[str]) -> Optional[str]:
    """Match a file stem such as ``portada-el-universal`` against the list."""
    slug = slugify(stem)
    for name in names:
        name_slug = slugify(name)
        if name_slug and re.search(rf"(^|-){re.escape(name_slug)}(-|$)", slug):
            return name
    return None
