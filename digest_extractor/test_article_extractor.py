from datetime import date

from digest_extractor.article_extractor import ArticleExtractor, clean_section_text
from digest_extractor.models import Section

DAY = date(2025, 6, 5)
SENTENCE = "El pleno aprobo los lineamientos para la evaluacion de personas juzgadoras. "


def body(length):
    return (SENTENCE * (length // len(SENTENCE) + 1))[:length].strip()


def make_section(section_id="consejo-judicatura", split_pattern="headline", pages=(10, 11, 12),
                 display_name="Consejo de la Judicatura Federal", headers=("CONSEJO DE LA JUDICATURA",)):
    return Section(id=section_id, display_name=display_name, content_type="text", pages=pages,
                   header_patterns=headers, split_pattern=split_pattern)


def test_known_title_anchoring_bounds_articles():
    body_one, body_two = body(400), body(300)
    page_texts = [
        (10, f"EXAMPLE HEADLINE ONE\n{body_one}"),
        (11, f"EXAMPLE HEADLINE TWO\n{body_two}"),
        (12, ""),
    ]

    outcome = ArticleExtractor().extract_articles(
        make_section(), page_texts, DAY,
        anchor_titles=["EXAMPLE HEADLINE ONE", "EXAMPLE HEADLINE TWO"],
    )

    assert outcome.strategy == "anchors"
    assert [a.title for a in outcome.articles] == ["EXAMPLE HEADLINE ONE", "EXAMPLE HEADLINE TWO"]
    assert outcome.articles[0].content == body_one
    assert outcome.articles[1].content == body_two
    assert [a.page_number for a in outcome.articles] == [10, 11]
    assert all(a.source == "Consejo de la Judicatura Federal" for a in outcome.articles)
    assert outcome.errors == []


def test_anchoring_normalizes_typographic_quotes():
    page_texts = [(2, f"“VIGILARÁN” A JUECES SUS COLEGAS DE LA 4T\n{body(120)}\n"
                      f"ALLEGADOS DE AMLO JUZGARÁN A LOS JUECES\n{body(90)}")]
    section = make_section("ocho-columnas", pages=(2,), display_name="Ocho Columnas", headers=("OCHO COLUMNAS",))

    outcome = ArticleExtractor().extract_articles(
        section, page_texts, DAY,
        anchor_titles=['"VIGILARÁN" A JUECES SUS COLEGAS DE LA 4T', "ALLEGADOS DE AMLO JUZGARÁN A LOS JUECES"],
        newspaper_order=["Reforma", "El Sol de México"],
    )

    assert outcome.strategy == "anchors"
    assert [a.source for a in outcome.articles] == ["Reforma", "El Sol de México"]
    assert outcome.articles[0].title.startswith('"VIGILARÁN"')


def test_anchoring_without_majority_falls_through():
    page_texts = [(10, f"EXAMPLE HEADLINE ONE\n{body(200)}\nEXAMPLE HEADLINE TWO\n{body(200)}")]

    outcome = ArticleExtractor().extract_articles(
        make_section(pages=(10,)), page_texts, DAY,
        anchor_titles=["EXAMPLE HEADLINE ONE", "NOT IN THIS ISSUE", "NOR THIS ONE EITHER"],
    )

    assert outcome.strategy == "headline"
    assert len(outcome.articles) == 2
    assert [e.error_type for e in outcome.errors] == ["ArticleBoundaryAmbiguous"]
    assert outcome.errors[0].section_id == "consejo-judicatura"


def test_headline_pattern_merges_multiline_titles_and_drops_short_fragments():
    text = (
        "NOTA BREVE SIN CUERPO\ncorta\n"
        "DESIGNAN A NUEVOS MAGISTRADOS\nDE CIRCUITO EN LA CAPITAL\n" + body(120) + "\n"
        "Reforma / Pág. 3\n"
        "SUSPENDEN CONCURSO DE OPOSICION\n" + body(80)
    )

    outcome = ArticleExtractor().extract_articles(make_section(pages=(30,)), [(30, text)], DAY)

    assert outcome.strategy == "headline"
    assert [a.title for a in outcome.articles] == [
        "DESIGNAN A NUEVOS MAGISTRADOS DE CIRCUITO EN LA CAPITAL",
        "SUSPENDEN CONCURSO DE OPOSICION",
    ]
    assert outcome.articles[0].source == "Reforma"
    assert outcome.articles[1].source == "Consejo de la Judicatura Federal"


def test_positional_sources_for_front_digest():
    text = "\n".join(f"TITULAR NUMERO {n} DEL DIA\n{body(100)}" for n in ("UNO", "DOS", "TRES"))
    section = make_section("ocho-columnas", pages=(2,), display_name="Ocho Columnas", headers=("OCHO COLUMNAS",))

    outcome = ArticleExtractor().extract_articles(section, [(2, text)], DAY,
                                                  newspaper_order=["Milenio", "Reforma"])

    assert [a.source for a in outcome.articles] == ["Milenio", "Reforma", "Ocho Columnas"]


def test_byline_pattern_names_source():
    text = f"Juan Pérez: Convocatoria para jueces de distrito\n{body(150)}\nAna Ruiz Soto: Otra publicacion oficial\n{body(90)}"
    section = make_section("dof", split_pattern="byline", pages=(63,), display_name="Publicaciones Oficiales (DOF)",
                           headers=("PUBLICACIONES OFICIALES", "DOF"))

    outcome = ArticleExtractor().extract_articles(section, [(63, text)], DAY)

    assert outcome.strategy == "byline"
    assert [a.title for a in outcome.articles] == ["Convocatoria para jueces de distrito", "Otra publicacion oficial"]
    assert [a.source for a in outcome.articles] == ["Juan Pérez", "Ana Ruiz Soto"]


def test_generic_paragraph_fallback():
    text = (
        "Titulo corto\n" + body(80) + "\n\n"
        "Nota.\n\n"
        "Primera oracion del parrafo sin titulo propio. " + body(60)
    )
    section = make_section("unclassified", split_pattern=None, pages=(1,), display_name="Sin clasificar", headers=())

    outcome = ArticleExtractor().extract_articles(section, [(1, text)], DAY)

    assert outcome.strategy == "paragraphs"
    assert [a.title for a in outcome.articles] == ["Titulo corto", "Primera oracion del parrafo sin titulo propio."]
    assert outcome.articles[1].content == body(60)


def test_overlong_title_becomes_content():
    paragraph = "Un parrafo extenso " * 12 + "que termina aqui."
    section = make_section("unclassified", split_pattern=None, pages=(1,), display_name="Sin clasificar", headers=())

    outcome = ArticleExtractor(max_title_length=150).extract_articles(section, [(1, paragraph)], DAY)

    article = outcome.articles[0]
    assert article.content == paragraph
    assert article.title.endswith("...")
    assert len(article.title) <= 150


def test_clean_section_text_strips_page_furniture():
    raw = "OCHO COLUMNAS\nJueves 5 de junio de 2025\nPágina 3\n----------\n\n\n\nCuerpo del texto"
    section = make_section("ocho-columnas", pages=(3, 4), headers=("OCHO COLUMNAS",))

    text, offsets = clean_section_text(section, [(3, raw), (4, "Segunda pagina")])

    assert text == "Cuerpo del texto\n\nSegunda pagina"
    assert offsets == [(0, 3), (18, 4)]


def test_empty_section_yields_no_articles():
    outcome = ArticleExtractor().extract_articles(make_section(pages=(5,)), [(5, "")], DAY)
    assert outcome.articles == []
    assert outcome.strategy is None
    assert outcome.errors == []


def test_dates_inside_article_text_are_kept():
    raw = ("Jueves 5 de junio de 2025\n"
           "La sesion se celebro el jueves 5 de junio de 2025 en la sede del Consejo.\n"
           "Ver Página 3 del acuerdo.")
    text, _ = clean_section_text(make_section(pages=(3,)), [(3, raw)])

    assert text == ("La sesion se celebro el jueves 5 de junio de 2025 en la sede del Consejo.\n"
                    "Ver Página 3 del acuerdo.")


def test_anchored_titles_are_capped():
    long_title = "TITULAR DE REFERENCIA " * 8
    page_texts = [(10, f"{long_title.strip()}\n{body(200)}")]

    outcome = ArticleExtractor(max_title_length=60).extract_articles(
        make_section(pages=(10,)), page_texts, DAY, anchor_titles=[long_title],
    )

    article = outcome.articles[0]
    assert outcome.strategy == "anchors"
    assert len(article.title) <= 60
    assert article.title.endswith("...")
    assert article.content.startswith(long_title.strip())
