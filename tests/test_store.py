"""
Unit tests for the SQLAlchemy Publication Store: in-memory SQLite database.

Run with: pytest tests/test_store.py -v
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from emphasize.database import Base
from emphasize.errors import StoreConflict, StoreUnavailable
from emphasize.models import ArticleRecord
from emphasize.schemas import STATIC_ORIGIN, ArticleIngest, ArticleStatus
from emphasize.store import NullPublicationStore, SqlPublicationStore

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlPublicationStore(session_factory)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_article(**kwargs) -> ArticleIngest:
    defaults = {
        "id": "a",
        "content_ref": "content/a.md#0000",
        "draft": False,
        "modified_at": BASE_TIME,
        "title": "Article A",
        "tags": ["python"],
    }
    defaults.update(kwargs)
    return ArticleIngest(**defaults)


def status_of(article: ArticleIngest) -> ArticleStatus:
    return ArticleStatus.DRAFT if article.draft else ArticleStatus.PUBLISHED


# ---------------------------------------------------------------------------
# put / get
# ---------------------------------------------------------------------------

class TestPutGet:
    def test_get_returns_stored_article(self, store):
        article = make_article()
        store.put(article, ArticleStatus.PUBLISHED)

        stored = store.get("a")

        assert stored == article

    def test_get_absent_returns_none(self, store):
        assert store.get("missing") is None

    def test_timestamp_comes_back_timezone_aware(self, store):
        store.put(make_article(), ArticleStatus.PUBLISHED)
        assert store.get("a").modified_at == BASE_TIME
        assert store.get("a").modified_at.tzinfo is not None

    def test_put_twice_keeps_one_record(self, store, session_factory):
        article = make_article()
        store.put(article, ArticleStatus.PUBLISHED)
        store.put(article, ArticleStatus.PUBLISHED)

        assert store.count() == 1

    def test_put_overwrites_existing_record(self, store):
        store.put(make_article(content_ref="v1"), ArticleStatus.PUBLISHED)
        store.put(make_article(content_ref="v2", draft=True), ArticleStatus.DRAFT)

        stored = store.get("a")
        assert stored.content_ref == "v2"
        assert stored.draft is True

    def test_overwrite_bumps_version(self, store, session_factory):
        store.put(make_article(), ArticleStatus.PUBLISHED)
        store.put(make_article(content_ref="v2"), ArticleStatus.PUBLISHED)

        db = session_factory()
        try:
            assert db.get(ArticleRecord, "a").version == 2
        finally:
            db.close()

    def test_status_column_records_resolved_status(self, store, session_factory):
        store.put(make_article(draft=True), ArticleStatus.DRAFT)

        db = session_factory()
        try:
            assert db.get(ArticleRecord, "a").status == "draft"
        finally:
            db.close()


# ---------------------------------------------------------------------------
# origins / count
# ---------------------------------------------------------------------------

class TestOrigins:
    def test_origin_defaults_to_static(self, store):
        store.put(make_article(), ArticleStatus.PUBLISHED)
        assert store.origins() == {"a": STATIC_ORIGIN}

    def test_last_writer_sets_origin(self, store):
        store.put(make_article(), ArticleStatus.PUBLISHED, "content-dir")
        store.put(make_article(id="b"), ArticleStatus.PUBLISHED, "content-dir")
        store.put(make_article(), ArticleStatus.PUBLISHED, STATIC_ORIGIN)

        assert store.origins() == {"a": STATIC_ORIGIN, "b": "content-dir"}

    def test_count_includes_drafts(self, store):
        store.put(make_article(id="a"), ArticleStatus.PUBLISHED)
        store.put(make_article(id="b", draft=True), ArticleStatus.DRAFT)

        assert store.count() == 2


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------

class TestList:
    def test_sorted_by_modified_at_descending(self, store):
        offsets = {"old": 0, "new": 2, "mid": 1}
        for article_id, hours in offsets.items():
            article = make_article(id=article_id, modified_at=BASE_TIME + timedelta(hours=hours))
            store.put(article, ArticleStatus.PUBLISHED)

        assert [a.id for a in store.list()] == ["new", "mid", "old"]

    def test_drafts_excluded_by_default(self, store):
        for article in [make_article(id="pub"), make_article(id="draft", draft=True)]:
            store.put(article, status_of(article))

        assert [a.id for a in store.list()] == ["pub"]

    def test_drafts_included_on_request(self, store):
        for article in [make_article(id="pub"), make_article(id="draft", draft=True)]:
            store.put(article, status_of(article))

        assert {a.id for a in store.list(include_drafts=True)} == {"pub", "draft"}

    def test_empty_store_returns_empty_list(self, store):
        assert store.list() == []


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

class TestErrors:
    def make_failing_store(self, error):
        db = MagicMock()
        db.get.return_value = None
        db.commit.side_effect = error
        return SqlPublicationStore(lambda: db), db

    def test_stale_version_is_conflict(self):
        store, db = self.make_failing_store(StaleDataError("expected version 1"))

        with pytest.raises(StoreConflict) as exc_info:
            store.put(make_article(), ArticleStatus.PUBLISHED)

        assert exc_info.value.article_id == "a"
        db.rollback.assert_called_once()
        db.close.assert_called_once()

    def test_concurrent_insert_is_conflict(self):
        store, db = self.make_failing_store(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))

        with pytest.raises(StoreConflict):
            store.put(make_article(), ArticleStatus.PUBLISHED)

        db.rollback.assert_called_once()

    def test_operational_error_is_unavailable(self):
        store, db = self.make_failing_store(OperationalError("COMMIT", {}, Exception("database is locked")))

        with pytest.raises(StoreUnavailable):
            store.put(make_article(), ArticleStatus.PUBLISHED)

        db.rollback.assert_called_once()

    def test_failed_write_leaves_no_partial_record(self, session_factory):
        real_factory = session_factory

        def failing_factory():
            db = real_factory()
            db.commit = MagicMock(side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error")))
            return db

        with pytest.raises(StoreUnavailable):
            SqlPublicationStore(failing_factory).put(make_article(), ArticleStatus.PUBLISHED)

        assert SqlPublicationStore(real_factory).get("a") is None

    def test_read_failure_is_unavailable(self):
        db = MagicMock()
        db.get.side_effect = OperationalError("SELECT", {}, Exception("unable to open database file"))
        store = SqlPublicationStore(lambda: db)

        with pytest.raises(StoreUnavailable):
            store.get("a")

        db.close.assert_called_once()


# ---------------------------------------------------------------------------
# NullPublicationStore
# ---------------------------------------------------------------------------

class TestNullStore:
    def test_holds_nothing(self):
        store = NullPublicationStore()
        store.put(make_article(), ArticleStatus.PUBLISHED)

        assert store.get("a") is None
        assert store.list(include_drafts=True) == []
        assert store.count() == 0
        assert store.origins() == {}
