from datetime import date

from digest_extractor.link_correlator import correlate_urls, url_in_text
from digest_extractor.models import Article, LinkAnnotation, Section

DAY = date(2025, 6, 5)
SECTION = Section(id="suprema-corte", display_name="Suprema Corte", content_type="text", pages=(42, 43))


def article(title, page, content="Contenido del articulo", url=None):
    return Article(title=title, content=content, source="Milenio", section_id=SECTION.id,
                   publication_date=DAY, page_number=page, url=url)


def link(page, uri, x0=50.0, top=700.0):
    return LinkAnnotation(page_number=page, uri=uri, rect=(x0, top - 12, x0 + 100, top))


def test_annotations_assigned_in_document_order():
    articles = [article("A", 42), article("B", 42), article("C", 43)]
    annotations = [
        link(43, "https://efinf.com/clipviewer/3"),
        link(42, "https://efinf.com/clipviewer/2", top=400),
        link(42, "https://efinf.com/clipviewer/1", top=650),
        link(41, "https://efinf.com/clipviewer/other-section"),
    ]

    result = correlate_urls(SECTION, annotations, articles)

    assert [a.url for a in result] == [
        "https://efinf.com/clipviewer/1",
        "https://efinf.com/clipviewer/2",
        "https://efinf.com/clipviewer/3",
    ]
    assert [a.id for a in result] == [a.id for a in articles]
    assert articles[0].url is None


def test_url_pattern_filters_annotations():
    articles = [article("A", 42)]
    annotations = [link(42, "https://www.cjf.gob.mx/", top=750), link(42, "https://efinf.com/clipviewer/9")]

    result = correlate_urls(SECTION, annotations, articles, url_pattern=r"efinf\.com/clipviewer")

    assert result[0].url == "https://efinf.com/clipviewer/9"


def test_text_fallback_and_existing_urls_are_kept():
    articles = [
        article("A", 42, url="https://example.org/original"),
        article("B", 42, content="Ver nota completa en https://www.jornada.com.mx/nota/123)."),
        article("C", 43),
    ]
    annotations = [link(42, "https://efinf.com/clipviewer/1")]

    result = correlate_urls(SECTION, annotations, articles)

    assert result[0].url == "https://example.org/original"
    assert result[1].url == "https://www.jornada.com.mx/nota/123"
    assert result[2].url is None


def test_url_in_text():
    assert url_in_text("fuente: http://milenio.com/a/b.") == "http://milenio.com/a/b"
    assert url_in_text("sin enlace") is None
