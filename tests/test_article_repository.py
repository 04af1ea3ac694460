"""Tests for PostgresArticleRepository statements, compiled for PostgreSQL."""

import asyncio

import pytest
from sqlalchemy.dialects import postgresql

from qbank.dedup.repository import NearestArticle, PostgresArticleRepository
from qbank.errors import StoreError
from tests.fakes import question


class RecordingResult:
    def __init__(self, row=None, rowcount: int = 1) -> None:
        self._row = row
        self.rowcount = rowcount

    def first(self):
        return self._row


class RecordingSession:
    """Captures executed statements instead of talking to a database."""

    def __init__(self, result: RecordingResult) -> None:
        self.result = result
        self.statements = []
        self.commits = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def execute(self, stmt):
        self.statements.append(stmt)
        return self.result

    async def commit(self) -> None:
        self.commits += 1


def _repository(result: RecordingResult) -> tuple[PostgresArticleRepository, RecordingSession]:
    session = RecordingSession(result)
    return PostgresArticleRepository(session_factory=lambda: session), session


def _compile(stmt):
    return stmt.compile(dialect=postgresql.dialect())


class TestFindClosest:
    def test_orders_by_inner_product_ascending(self) -> None:
        repo, session = _repository(RecordingResult())
        assert asyncio.run(repo.find_closest([1.0, 0.0, 0.0])) is None

        sql = " ".join(str(_compile(session.statements[0])).split())
        assert "articles.embedding <#> " in sql
        assert "<->" not in sql and "<=>" not in sql
        assert "ORDER BY distance ASC" in sql
        assert "LIMIT" in sql

    def test_returns_nearest_row(self) -> None:
        class Row:
            id = 7
            distance = -0.98

        repo, _ = _repository(RecordingResult(row=Row()))
        assert asyncio.run(repo.find_closest([1.0, 0.0, 0.0])) == NearestArticle(7, -0.98)


class TestAppendExt:
    def test_concatenates_jsonb_array(self) -> None:
        repo, session = _repository(RecordingResult(rowcount=1))
        q = question("Explain closures", tags=["python"])

        asyncio.run(repo.append_ext(3, q))

        compiled = _compile(session.statements[0])
        sql = " ".join(str(compiled).split())
        assert sql.startswith("UPDATE articles SET ext=")
        assert "coalesce(articles.ext, '[]'::jsonb) ||" in sql
        assert "WHERE articles.id =" in sql
        appended = [
            b for b in compiled.binds.values()
            if isinstance(b.type, postgresql.JSONB) and b.value == [q.model_dump(mode="json")]
        ]
        assert len(appended) == 1
        assert session.commits == 1

    def test_missing_article_raises_store_error(self) -> None:
        repo, _ = _repository(RecordingResult(rowcount=0))
        with pytest.raises(StoreError, match="article 3 does not exist"):
            asyncio.run(repo.append_ext(3, question("x")))
