from pathlib import Path

from digest_extractor.config import Settings
from digest_extractor.image_associator import AssociatorConfig
from digest_extractor.storage import PdfCache


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MINIMAL_TEXT_THRESHOLD", "250")
    monkeypatch.setenv("OCR_ENABLED", "false")
    monkeypatch.setenv("IMAGES_DIR", "/srv/digest/images")
    s = Settings()
    assert s.minimal_text_threshold == 250
    assert s.ocr_enabled is False
    assert s.images_dir == Path("/srv/digest/images")


def test_defaults():
    s = Settings(minio_endpoint="")
    assert s.proximity_pages == 2
    assert s.ocr_language == "spa"
    assert s.manifest_dir is None
    assert not PdfCache(s).enabled


def test_associator_config_uses_dated_image_dir(pub_date, settings):
    config = AssociatorConfig.from_settings(settings, pub_date, ["Milenio"])
    assert config.images_dir == settings.images_dir / "2025-06-05"
    assert config.newspaper_order == ["Milenio"]
    assert config.ocr_enabled is False
