from digest_extractor.normalize import (
    fold,
    match_newspaper,
    match_newspaper_slug,
    normalize_quotes,
    normalize_section_id,
    slugify,
)
from digest_extractor.sections import NEWSPAPER_NAMES


def test_fold_and_slugify():
    assert fold("  Información   General ") == "INFORMACION GENERAL"
    assert slugify("El Sol de México") == "el-sol-de-mexico"


def test_normalize_quotes():
    assert normalize_quotes("“VIGILARÁN” A JUECES") == '"VIGILARÁN" A JUECES'


def test_match_newspaper_tolerates_ocr_variants():
    assert match_newspaper("ELUNIVERSAL\nEl gran diario de México", NEWSPAPER_NAMES) == "El Universal"
    assert match_newspaper("SOL DE MEXICO", NEWSPAPER_NAMES) == "El Sol de México"
    assert match_newspaper("la jornada", NEWSPAPER_NAMES) == "La Jornada"
    assert match_newspaper("Sin periódico aquí", NEWSPAPER_NAMES) is None


def test_match_newspaper_slug():
    assert match_newspaper_slug("portada-el-financiero", NEWSPAPER_NAMES) == "El Financiero"
    assert match_newspaper_slug("pagina-007", NEWSPAPER_NAMES) is None


def test_normalize_section_id():
    assert normalize_section_id("Ocho Columnas") == "ocho-columnas"
    assert normalize_section_id("SCJN") == "suprema-corte"
    assert normalize_section_id("desconocida") is None
    assert normalize_section_id("") is None
