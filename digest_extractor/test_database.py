import asyncio
from datetime import date

import pytest

from digest_extractor.exceptions import PersistenceFailed
from digest_extractor.models import Article, Image, ImageBackedArticle

DAY = date(2025, 6, 5)
OTHER_DAY = date(2025, 6, 4)


def run_batch(day, n_articles=2):
    articles = [
        Article(title=f"Nota {i}", content=f"Contenido de la nota {i}", source="Reforma",
                section_id="consejo-judicatura", publication_date=day, page_number=28 + i)
        for i in range(n_articles)
    ]
    stub = ImageBackedArticle(title="Portada de Reforma", content="Primera plana del periódico Reforma",
                              source="Reforma", section_id="primeras-planas", publication_date=day)
    images = [
        Image(filename="pagina-005.png", title="Portada de Reforma", description="",
              section_id="primeras-planas", publication_date=day, page_number=5, article_id=stub.id),
        Image(filename="pagina-006-placeholder.png", title="Imagen no disponible", description="",
              section_id="primeras-planas", publication_date=day, page_number=6, is_placeholder=True),
    ]
    return articles + [stub], images


async def replace(store, day, batch):
    await store.replace_date(day, *batch)


def test_replace_date_is_idempotent_per_date(store, fake_pool):
    async def scenario():
        await store.initialize()
        await replace(store, OTHER_DAY, run_batch(OTHER_DAY, 1))
        await replace(store, DAY, run_batch(DAY))
        first = await store.count_by_section(DAY)
        await replace(store, DAY, run_batch(DAY))
        second = await store.count_by_section(DAY)
        other = await store.count_by_section(OTHER_DAY)
        await store.close()
        return first, second, other

    first, second, other = asyncio.run(scenario())

    assert first == second == {
        'consejo-judicatura': {'articles': 2, 'images': 0},
        'primeras-planas': {'articles': 1, 'images': 2},
    }
    assert other['consejo-judicatura'] == {'articles': 1, 'images': 0}
    assert fake_pool.schema_created
    assert fake_pool.closed
    assert fake_pool.locks == ["2025-06-04", "2025-06-05", "2025-06-05"]


def test_deletes_run_before_inserts(store, fake_pool):
    asyncio.run(store.initialize(create_schema=False))
    asyncio.run(replace(store, DAY, run_batch(DAY)))

    statements = [sql.split(" (")[0] for sql, _ in fake_pool.statements]
    assert statements == [
        "SELECT pg_advisory_xact_lock(hashtext($1))",
        "DELETE FROM images WHERE publication_date = $1",
        "DELETE FROM articles WHERE publication_date = $1",
        "INSERT INTO articles",
        "INSERT INTO images",
    ]


def test_failure_rolls_back_previous_rows_survive(store, fake_pool):
    asyncio.run(store.initialize())
    asyncio.run(replace(store, DAY, run_batch(DAY)))
    before = [r['id'] for r in fake_pool.tables['articles']]

    fake_pool.fail_on = "INSERT INTO images"
    with pytest.raises(PersistenceFailed) as exc:
        asyncio.run(replace(store, DAY, run_batch(DAY, 5)))

    assert exc.value.fatal
    assert fake_pool.rollbacks == 1
    assert [r['id'] for r in fake_pool.tables['articles']] == before


def test_orphaned_images_are_rejected_before_writing(store, fake_pool):
    asyncio.run(store.initialize())
    articles, images = run_batch(DAY)
    images[1].article_id = "does-not-exist"

    with pytest.raises(PersistenceFailed):
        asyncio.run(store.replace_date(DAY, articles, images))

    assert not any(sql.startswith("DELETE") for sql, _ in fake_pool.statements)


def test_query_surface_returns_models_in_document_order(store):
    articles, images = run_batch(DAY, 3)

    async def scenario():
        await store.initialize()
        await store.replace_date(DAY, articles, images)
        return (await store.articles_for("consejo-judicatura", DAY),
                await store.images_for("primeras-planas", DAY),
                await store.articles_for("primeras-planas", DAY))

    stored_articles, stored_images, stubs = asyncio.run(scenario())

    assert [a.title for a in stored_articles] == ["Nota 0", "Nota 1", "Nota 2"]
    assert stored_articles[0].summary == "Contenido de la nota 0"
    assert [i.filename for i in stored_images] == ["pagina-005.png", "pagina-006-placeholder.png"]
    assert stored_images[1].is_placeholder
    assert isinstance(stubs[0], ImageBackedArticle)
    assert stored_images[0].article_id == stubs[0].id


def test_get_connection_requires_initialize(store):
    async def scenario():
        async with store.get_connection():
            pass

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())
