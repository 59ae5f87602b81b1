"""
Content store for extracted digest content.

This module handles PostgreSQL operations for the extraction pipeline:
- Schema creation for articles and images
- Transactional clear-and-replace of one publication date
- Read queries by section and date for consumers
"""

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Dict, List, Optional, Sequence

import asyncpg
from asyncpg import Pool

from .exceptions import PersistenceFailed
from .models import Article, Image, ImageBackedArticle

logger = logging.getLogger(__name__)

STAGE = "persisting"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL CHECK (title <> ''),
    content TEXT NOT NULL CHECK (content <> ''),
    summary TEXT NOT NULL,
    source TEXT NOT NULL,
    url TEXT,
    section_id VARCHAR(64) NOT NULL,
    publication_date DATE NOT NULL,
    page_number INTEGER,
    origin VARCHAR(10) NOT NULL DEFAULT 'text',
    position INTEGER NOT NULL DEFAULT 0,
    date_created TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS images (
    id TEXT PRIMARY KEY,
    filename TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    article_id TEXT REFERENCES articles(id),
    section_id VARCHAR(64) NOT NULL,
    publication_date DATE NOT NULL,
    page_number INTEGER,
    is_placeholder BOOLEAN NOT NULL DEFAULT FALSE,
    position INTEGER NOT NULL DEFAULT 0,
    date_created TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_articles_section_date ON articles(section_id, publication_date);
CREATE INDEX IF NOT EXISTS idx_articles_publication_date ON articles(publication_date);
CREATE INDEX IF NOT EXISTS idx_images_section_date ON images(section_id, publication_date);
CREATE INDEX IF NOT EXISTS idx_images_publication_date ON images(publication_date);
CREATE INDEX IF NOT EXISTS idx_images_article_id ON images(article_id);
"""

LOCK_SQL = "SELECT pg_advisory_xact_lock(hashtext($1))"
DELETE_IMAGES_SQL = "DELETE FROM images WHERE publication_date = $1"
DELETE_ARTICLES_SQL = "DELETE FROM articles WHERE publication_date = $1"

INSERT_ARTICLE_SQL = """
INSERT INTO articles (
    id, title, content, summary, source, url, section_id,
    publication_date, page_number, origin, position
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
"""

INSERT_IMAGE_SQL = """
INSERT INTO images (
    id, filename, title, description, article_id, section_id,
    publication_date, page_number, is_placeholder, position
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
"""

SELECT_ARTICLES_SQL = """
SELECT id, title, content, summary, source, url, section_id,
       publication_date, page_number, origin, position
FROM articles
WHERE section_id = $1 AND publication_date = $2
ORDER BY position
"""

SELECT_IMAGES_SQL = """
SELECT id, filename, title, description, article_id, section_id,
       publication_date, page_number, is_placeholder, position
FROM images
WHERE section_id = $1 AND publication_date = $2
ORDER BY position
"""

COUNT_ARTICLES_SQL = """
SELECT section_id, COUNT(*) AS n FROM articles
WHERE publication_date = $1 GROUP BY section_id
"""

COUNT_IMAGES_SQL = """
SELECT section_id, COUNT(*) AS n FROM images
WHERE publication_date = $1 GROUP BY section_id
"""


class ContentStore:
    """Manage PostgreSQL storage of articles and images."""

    def __init__(self, database_url: str, pool_size: int = 5):
        """
        Initialize content store.

        Args:
            database_url: PostgreSQL connection URL
            pool_size: Maximum number of connections in pool
        """
        self.database_url = database_url
        self.pool_size = pool_size
        self.pool: Optional[Pool] = None

    async def initialize(self, create_schema: bool = True):
        """Initialize database connection pool and optionally create tables."""
        logger.info("Initializing database connection pool")

        self.pool = await asyncpg.create_pool(
            self.database_url,
            min_size=1,
            max_size=self.pool_size,
            command_timeout=60
        )

        if create_schema:
            await self.create_tables()
        logger.info("Database initialized successfully")

    async def close(self):
        """Close database connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Database connection pool closed")

    @asynccontextmanager
    async def get_connection(self):
        """Get a database connection from the pool."""
        if not self.pool:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        async with self.pool.acquire() as connection:
            yield connection

    async def create_tables(self):
        """Create database tables if they don't exist."""
        async with self.get_connection() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Database tables created/verified")

    async def replace_date(self,
                           publication_date: date,
                           articles: Sequence[Article],
                           images: Sequence[Image]) -> Dict[str, int]:
        """
        Replace everything stored for a publication date in one transaction.

        Images are deleted before articles (images reference articles), then
        the new articles and images are inserted. A transaction-level advisory
        lock keyed by the date serializes concurrent runs for the same date.

        Raises:
            PersistenceFailed: the transaction was rolled back; stored rows
                are unchanged
        """
        article_ids = {a.id for a in articles}
        orphans = [i for i in images if i.article_id and i.article_id not in article_ids]
        if orphans:
            raise PersistenceFailed(
                f"{len(orphans)} image(s) reference articles outside this run "
                f"(first: {orphans[0].filename})", stage=STAGE, section_id=orphans[0].section_id)

        day = publication_date.isoformat()
        article_rows = [
            (a.id, a.title, a.content, a.summary, a.source, a.url, a.section_id,
             publication_date, a.page_number, a.origin, position)
            for position, a in enumerate(articles)
        ]
        image_rows = [
            (i.id, i.filename, i.title, i.description, i.article_id, i.section_id,
             publication_date, i.page_number, i.is_placeholder, position)
            for position, i in enumerate(images)
        ]

        logger.info(f"Replacing content for {day}: {len(article_rows)} articles, {len(image_rows)} images")
        try:
            async with self.get_connection() as conn:
                async with conn.transaction():
                    await conn.execute(LOCK_SQL, day)
                    deleted_images = await conn.execute(DELETE_IMAGES_SQL, publication_date)
                    deleted_articles = await conn.execute(DELETE_ARTICLES_SQL, publication_date)
                    if article_rows:
                        await conn.executemany(INSERT_ARTICLE_SQL, article_rows)
                    if image_rows:
                        await conn.executemany(INSERT_IMAGE_SQL, image_rows)
        except PersistenceFailed:
            raise
        except Exception as e:
            logger.error(f"Failed to persist content for {day}: {str(e)}")
            raise PersistenceFailed(f"Transaction for {day} rolled back: {e}", stage=STAGE) from e

        logger.info(f"Stored {day}: removed {_affected(deleted_articles)} articles and "
                    f"{_affected(deleted_images)} images from the previous run")
        return {'articles': len(article_rows), 'images': len(image_rows)}

    async def articles_for(self, section_id: str, publication_date: date) -> List[Article]:
        """Articles of a section on a date, in document order."""
        async with self.get_connection() as conn:
            rows = await conn.fetch(SELECT_ARTICLES_SQL, section_id, publication_date)
        return [_row_to_article(r) for r in rows]

    async def images_for(self, section_id: str, publication_date: date) -> List[Image]:
        """Images of a section on a date, in document order."""
        async with self.get_connection() as conn:
            rows = await conn.fetch(SELECT_IMAGES_SQL, section_id, publication_date)
        return [_row_to_image(r) for r in rows]

    async def count_by_section(self, publication_date: date) -> Dict[str, Dict[str, int]]:
        """``{section_id: {"articles": n, "images": m}}`` for a date."""
        counts: Dict[str, Dict[str, int]] = {}
        async with self.get_connection() as conn:
            for kind, sql in (('articles', COUNT_ARTICLES_SQL), ('images', COUNT_IMAGES_SQL)):
                for row in await conn.fetch(sql, publication_date):
                    entry = counts.setdefault(row['section_id'], {'articles': 0, 'images': 0})
                    entry[kind] = row['n']
        return counts


def _affected(status: Optional[str]) -> int:
    # asyncpg returns command tags such as "DELETE 12"
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except (TypeError, ValueError):
        return 0


def _row_to_article(row) -> Article:
    cls = ImageBackedArticle if row['origin'] == ImageBackedArticle.origin else Article
    return cls(
        id=row['id'],
        title=row['title'],
        content=row['content'],
        source=row['source'],
        url=row['url'],
        section_id=row['section_id'],
        publication_date=row['publication_date'],
        page_number=row['page_number'],
    )


def _row_to_image(row) -> Image:
    return Image(
        id=row['id'],
        filename=row['filename'],
        title=row['title'],
        description=row['description'],
        article_id=row['article_id'],
        section_id=row['section_id'],
        publication_date=row['publication_date'],
        page_number=row['page_number'],
        is_placeholder=row['is_placeholder'],
    )
