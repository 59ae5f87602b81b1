"""
Static section tables for the daily digest.

The digest opens with an index page followed by sections in a stable order.
Each definition carries the header keywords used for detection, the page
range used when detection fails, the content type and the boundary strategy
its articles are split with.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .models import IMAGE, TEXT

UNCLASSIFIED_ID = "unclassified"


@dataclass(frozen=True)
class SectionDefinition:
    id: str
    display_name: str
    content_type: str
    keywords: Tuple[str, ...] = ()
    fallback: Optional[Tuple[int, int]] = None
    image_kind: Optional[str] = None
    split_pattern: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.content_type == IMAGE


SECTION_DEFINITIONS: List[SectionDefinition] = [
    SectionDefinition("ocho-columnas", "Ocho Columnas", TEXT,
                      ("OCHO COLUMNAS",), (2, 4), split_pattern="headline"),
    # Front pages carry no header of their own
    SectionDefinition("primeras-planas", "Primeras Planas", IMAGE,
                      (), (5, 25), image_kind="front_page"),
    SectionDefinition("agenda", "Agenda", TEXT,
                      ("AGENDA",), (26, 27), split_pattern="headline"),
    SectionDefinition("consejo-judicatura", "Consejo de la Judicatura Federal", TEXT,
                      ("CONSEJO DE LA JUDICATURA",), (28, 41), split_pattern="headline"),
    SectionDefinition("suprema-corte", "Suprema Corte de Justicia de la Nación", TEXT,
                      ("SUPREMA CORTE",), (42, 48), split_pattern="headline"),
    SectionDefinition("tribunal-electoral", "Tribunal Electoral", TEXT,
                      ("TRIBUNAL ELECTORAL",), None, split_pattern="headline"),
    SectionDefinition("informacion-general", "Información General", TEXT,
                      ("INFORMACIÓN GENERAL",), (49, 49), split_pattern="headline"),
    SectionDefinition("sintesis-informativa", "Síntesis Informativa", TEXT,
                      ("SÍNTESIS INFORMATIVA",), (50, 51), split_pattern="headline"),
    SectionDefinition("columnas-politicas", "Columnas Políticas", IMAGE,
                      ("COLUMNAS POLÍTICAS",), (53, 62), image_kind="column"),
    SectionDefinition("dof", "Publicaciones Oficiales (DOF)", TEXT,
                      ("PUBLICACIONES OFICIALES", "DOF"), (63, 64), split_pattern="byline"),
    SectionDefinition("cartones", "Cartones", IMAGE,
                      ("CARTONES",), (65, 89), image_kind="cartoon"),
]

UNCLASSIFIED = SectionDefinition(UNCLASSIFIED_ID, "Sin clasificar", TEXT)

# Order in which the front-section digest lists its outlets
DEFAULT_NEWSPAPER_ORDER: List[str] = [
    "Reforma", "El Sol de México", "El Universal", "Milenio", "Excelsior",
    "La Jornada", "El Financiero", "El Economista", "Ovaciones", "La Razón",
    "Reporte Índigo", "24 Horas", "CJF",
]

NEWSPAPER_NAMES: List[str] = [
    "El Universal", "Reforma", "Excelsior", "La Jornada",
    "Milenio", "El Financiero", "El Economista", "El Sol de México",
    "Ovaciones", "La Razón", "Reporte Índigo", "24 Horas",
]

# Short names used in manifests and by operators
SECTION_ALIASES: Dict[str, str] = {
    "cjf": "consejo-judicatura",
    "scjn": "suprema-corte",
    "tepjf": "tribunal-electoral",
    "portadas": "primeras-planas",
    "columnas": "columnas-politicas",
    "publicaciones-oficiales": "dof",
}


def definitions_by_id(definitions: Optional[List[SectionDefinition]] = None) -> Dict[str, SectionDefinition]:
    defs = SECTION_DEFINITIONS if definitions is None else definitions
    table = {d.id: d for d in defs}
    table.setdefault(UNCLASSIFIED_ID, UNCLASSIFIED)
    return table
