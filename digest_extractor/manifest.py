"""Per-issue reference manifest.

A manifest supplies the day's expected headlines (anchor titles, keyed by
section) and the order in which the front-section digest lists its
newspapers. It lives at ``<manifest_dir>/<YYYY-MM-DD>.json``::

    {
      "anchor_titles": {"ocho-columnas": ["ALLEGADOS DE AMLO JUZGARÁN A LOS JUECES", ...]},
      "newspaper_order": ["Reforma", "El Sol de México", ...]
    }
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .normalize import normalize_section_id
from .sections import DEFAULT_NEWSPAPER_ORDER

logger = logging.getLogger(__name__)


class IssueManifest(BaseModel):
    """Reference data for one issue of the digest."""
    anchor_titles: Dict[str, List[str]] = Field(default_factory=dict,
                                                description="Expected headlines per section id")
    newspaper_order: List[str] = Field(default_factory=lambda: list(DEFAULT_NEWSPAPER_ORDER),
                                       description="Outlet order of the front-section digest")

    @field_validator("anchor_titles")
    @classmethod
    def _canonical_section_ids(cls, value: Dict[str, List[str]]) -> Dict[str, List[str]]:
        canonical: Dict[str, List[str]] = {}
        for key, titles in value.items():
            section_id = normalize_section_id(key)
            if section_id is None:
                raise ValueError(f"Unknown section in manifest: {key}")
            canonical.setdefault(section_id, []).extend(t for t in titles if t and t.strip())
        return canonical

    @field_validator("newspaper_order")
    @classmethod
    def _non_empty_order(cls, value: List[str]) -> List[str]:
        names = [v.strip() for v in value if v and v.strip()]
        return names or list(DEFAULT_NEWSPAPER_ORDER)

    def titles_for(self, section_id: str) -> List[str]:
        return self.anchor_titles.get(section_id, [])


def manifest_path(manifest_dir: Path, publication_date: date) -> Path:
    return Path(manifest_dir) / f"{publication_date.isoformat()}.json"


def load_manifest(manifest_dir: Optional[Path], publication_date: date) -> IssueManifest:
    """
    Load the manifest for an issue.

    Returns the built-in defaults when no manifest directory is configured
    or the file does not exist.

    Raises:
        ValueError: the file exists but is not valid JSON or fails validation
    """
    if not manifest_dir:
        return IssueManifest()

    path = manifest_path(manifest_dir, publication_date)
    if not path.exists():
        logger.info(f"No manifest for {publication_date}, using defaults")
        return IssueManifest()

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    manifest = IssueManifest.model_validate(data)
    logger.info(f"Loaded manifest {path}: "
                f"{sum(len(t) for t in manifest.anchor_titles.values())} anchor titles, "
                f"{len(manifest.newspaper_order)} newspapers")
    return manifest
