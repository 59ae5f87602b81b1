import copy
import re
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path

import pytest

from digest_extractor.config import Settings
from digest_extractor.database import ContentStore
from digest_extractor.observability import Metrics


class FakeDatabaseError(Exception):
    pass


def _normalize(sql: str) -> str:
    return " ".join(sql.split())


class FakeConnection:
    """Just enough of asyncpg.Connection for the content store's statements."""

    def __init__(self, pool: "FakePool"):
        self.pool = pool

    def _check_failure(self, sql: str) -> None:
        if self.pool.fail_on and sql.startswith(self.pool.fail_on):
            raise FakeDatabaseError(f"injected failure on: {self.pool.fail_on}")

    async def execute(self, sql, *args):
        sql = _normalize(sql)
        self.pool.statements.append((sql, args))
        self._check_failure(sql)
        if sql.startswith("SELECT pg_advisory_xact_lock"):
            self.pool.locks.append(args[0])
            return "SELECT 1"
        match = re.match(r"DELETE FROM (\w+) WHERE publication_date = \$1", sql)
        if match:
            table = match.group(1)
            before = len(self.pool.tables[table])
            kept = [r for r in self.pool.tables[table] if r['publication_date'] != args[0]]
            if table == 'articles':
                kept_ids = {r['id'] for r in kept}
                for image in self.pool.tables['images']:
                    if image['article_id'] and image['article_id'] not in kept_ids:
                        raise FakeDatabaseError("images_article_id_fkey violated")
            self.pool.tables[table] = kept
            return f"DELETE {before - len(kept)}"
        if sql.startswith("CREATE"):
            self.pool.schema_created = True
            return "CREATE TABLE"
        raise AssertionError(f"Unexpected statement: {sql}")

    async def executemany(self, sql, rows):
        sql = _normalize(sql)
        self.pool.statements.append((sql, tuple(rows)))
        self._check_failure(sql)
        match = re.match(r"INSERT INTO (\w+) \(([^)]*)\)", sql)
        if not match:
            raise AssertionError(f"Unexpected statement: {sql}")
        table = match.group(1)
        columns = [c.strip() for c in match.group(2).split(",")]
        for values in rows:
            row = dict(zip(columns, values))
            if any(r['id'] == row['id'] for r in self.pool.tables[table]):
                raise FakeDatabaseError(f"duplicate key in {table}: {row['id']}")
            if table == 'images' and row['article_id']:
                if not any(a['id'] == row['article_id'] for a in self.pool.tables['articles']):
                    raise FakeDatabaseError("images_article_id_fkey violated")
            self.pool.tables[table].append(row)

    async def fetch(self, sql, *args):
        sql = _normalize(sql)
        self.pool.statements.append((sql, args))
        table = re.search(r"FROM (\w+)", sql).group(1)
        rows = self.pool.tables[table]
        if "GROUP BY section_id" in sql:
            counts = {}
            for r in rows:
                if r['publication_date'] == args[0]:
                    counts[r['section_id']] = counts.get(r['section_id'], 0) + 1
            return [{'section_id': k, 'n': v} for k, v in counts.items()]
        selected = [r for r in rows if r['section_id'] == args[0] and r['publication_date'] == args[1]]
        return sorted((dict(r) for r in selected), key=lambda r: r['position'])

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy(self.pool.tables)
        try:
            yield self
        except BaseException:
            self.pool.tables = snapshot
            self.pool.rollbacks += 1
            raise


class FakePool:
    def __init__(self):
        self.tables = {'articles': [], 'images': []}
        self.statements = []
        self.locks = []
        self.rollbacks = 0
        self.fail_on = None
        self.schema_created = False
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield FakeConnection(self)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_pool():
    return FakePool()


@pytest.fixture
def store(fake_pool, monkeypatch):
    async def create_pool(*args, **kwargs):
        return fake_pool

    monkeypatch.setattr("digest_extractor.database.asyncpg.create_pool", create_pool)
    return ContentStore("postgresql://test/test")


@pytest.fixture
def settings(tmp_path: Path):
    return Settings(
        database_url="postgresql://test/test",
        pdf_dir=tmp_path / "pdf",
        images_dir=tmp_path / "images",
        manifest_dir=tmp_path / "manifests",
        ocr_enabled=False,
        minio_endpoint="",
    )


@pytest.fixture
def metrics():
    return Metrics(False, None, None, "test", {})


@pytest.fixture
def pub_date():
    return date(2025, 6, 5)
