import json
import logging
from abc import ABC, abstractmethod
from datetime import timezone
from typing import Dict, List, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from emphasize.errors import StoreConflict, StoreError, StoreUnavailable
from emphasize.models import ArticleRecord, utcnow
from emphasize.schemas import STATIC_ORIGIN, ArticleIngest, ArticleStatus

logger = logging.getLogger(__name__)


def to_article(record: ArticleRecord) -> ArticleIngest:
    """Rebuild the source-level article from a stored row."""
    return ArticleIngest(
        id=record.id,
        content_ref=record.content_ref,
        draft=record.draft,
        modified_at=record.modified_at_utc,
        title=record.title,
        tags=record.tag_list,
        template=record.template,
    )


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------

class PublicationStore(ABC):
    """
    Durable record of article publication state, keyed by article id.
    Writes are atomic per article; readers never observe a partial record.
    """

    @abstractmethod
    def put(self, article: ArticleIngest, status: ArticleStatus, origin: str = STATIC_ORIGIN) -> None:
        """
        Upsert one article, recording which source wrote it.
        Raises StoreUnavailable or StoreConflict.
        """

    @abstractmethod
    def get(self, article_id: str) -> Optional[ArticleIngest]:
        """Return the stored article, or None if there is no record."""

    @abstractmethod
    def list(self, include_drafts: bool = False) -> List[ArticleIngest]:
        """Return matching articles, most recently modified first."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored records, drafts included. Reported by GET /revision."""

    def origins(self) -> Dict[str, str]:
        """Map each stored article id to the source that last wrote it."""
        return {}


class NullPublicationStore(PublicationStore):
    """
    Store used when persistence is disabled at startup: holds nothing.
    The gate never writes to it, and reads fall back to the in-memory snapshot.
    """

    def put(self, article: ArticleIngest, status: ArticleStatus, origin: str = STATIC_ORIGIN) -> None:
        pass

    def get(self, article_id: str) -> Optional[ArticleIngest]:
        return None

    def list(self, include_drafts: bool = False) -> List[ArticleIngest]:
        return []

    def count(self) -> int:
        return 0


# ---------------------------------------------------------------------------
# SQLAlchemy-backed store
# ---------------------------------------------------------------------------

class SqlPublicationStore(PublicationStore):
    """
    Publication Store on top of SQLAlchemy. Every call opens its own session,
    so calls are safe from the pipeline worker thread and the request threads.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def put(self, article: ArticleIngest, status: ArticleStatus, origin: str = STATIC_ORIGIN) -> None:
        db: Session = self._session_factory()
        try:
            record = db.get(ArticleRecord, article.id)
            if record is None:
                record = ArticleRecord(id=article.id)
                db.add(record)

            record.draft = article.draft
            record.status = status.value
            record.content_ref = article.content_ref
            # SQLite has no timezone support: store naive UTC
            record.modified_at = article.modified_at.astimezone(timezone.utc).replace(tzinfo=None)
            record.title = article.title
            record.tags = json.dumps(list(article.tags))
            record.template = article.template
            record.origin = origin
            record.persisted_at = utcnow().replace(tzinfo=None)

            db.commit()
            logger.debug(f"[store] Upserted '{article.id}' (status={status.value}, version={record.version})")

        except StaleDataError as e:
            db.rollback()
            raise StoreConflict(f"Concurrent modification of '{article.id}': {e}", article.id) from e
        except IntegrityError as e:
            # Another writer inserted the same id between our read and our insert
            db.rollback()
            raise StoreConflict(f"Concurrent insert of '{article.id}': {e.orig}", article.id) from e
        except OperationalError as e:
            db.rollback()
            raise StoreUnavailable(f"Store unavailable while writing '{article.id}': {e.orig}", article.id) from e
        except DBAPIError as e:
            db.rollback()
            if e.connection_invalidated:
                raise StoreUnavailable(f"Connection lost while writing '{article.id}'", article.id) from e
            raise StoreError(f"Failed to write '{article.id}': {e.orig}", article.id) from e
        finally:
            db.close()

    def get(self, article_id: str) -> Optional[ArticleIngest]:
        with self._read_session() as db:
            record = db.get(ArticleRecord, article_id)
            return to_article(record) if record is not None else None

    def list(self, include_drafts: bool = False) -> List[ArticleIngest]:
        with self._read_session() as db:
            query = db.query(ArticleRecord)
            if not include_drafts:
                query = query.filter(ArticleRecord.draft == False)  # noqa: E712
            records = query.order_by(ArticleRecord.modified_at.desc(), ArticleRecord.id.asc()).all()
            return [to_article(r) for r in records]

    def count(self) -> int:
        with self._read_session() as db:
            return db.query(ArticleRecord).count()

    def origins(self) -> Dict[str, str]:
        with self._read_session() as db:
            return {
                article_id: origin or STATIC_ORIGIN
                for article_id, origin in db.query(ArticleRecord.id, ArticleRecord.origin)
            }

    def _read_session(self):
        return _ReadSession(self._session_factory)


class _ReadSession:
    """Context manager that maps connection failures on read paths to StoreUnavailable."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._db: Optional[Session] = None

    def __enter__(self) -> Session:
        self._db = self._session_factory()
        return self._db

    def __exit__(self, exc_type, exc, tb):
        self._db.close()
        if exc_type is not None and issubclass(exc_type, SQLAlchemyError):
            raise StoreUnavailable(f"Store read failed: {exc}") from exc
        return False
