import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from emphasize.config import PublicationMode
from emphasize.errors import IngestionError, StoreError
from emphasize.gate import PersistenceGate, call_with_timeout
from emphasize.resolver import Resolution, resolve_article
from emphasize.schemas import STATIC_ORIGIN, ArticleIngest, ArticleStatus
from emphasize.snapshot import ResolvedArticle, Snapshot, SnapshotHolder
from emphasize.source import BaseSource

logger = logging.getLogger(__name__)


@dataclass
class PersistenceFailureReport:
    article_id: str
    error: StoreError


@dataclass
class BatchReport:
    """Outcome of one pipeline run. Produced only for batches that were published."""
    revision: int
    published: int = 0
    drafts: int = 0
    suppressed: int = 0
    persisted: int = 0
    failures: List[PersistenceFailureReport] = field(default_factory=list)


class PublicationPipeline:
    """
    Source → resolver → persistence gate → snapshot.

    Batches run one at a time. Each batch builds a new snapshot off to the
    side and publishes it with a single swap, so readers keep the old
    snapshot until the whole batch is resolved. Persistence errors are
    per-article and never stop the batch; ingestion errors abort it before
    anything is published.
    """

    def __init__(
        self,
        mode: PublicationMode,
        gate: PersistenceGate,
        holder: Optional[SnapshotHolder] = None,
        store_timeout: Optional[float] = None,
    ):
        self.mode = mode
        self.gate = gate
        self.holder = holder or SnapshotHolder()
        self.store_timeout = store_timeout
        self._run_lock = threading.Lock()

    # -----------------------------------------------------------------------
    # Read side
    # -----------------------------------------------------------------------

    @property
    def snapshot(self) -> Snapshot:
        return self.holder.current

    def get(self, article_id: str) -> Optional[ResolvedArticle]:
        return self.holder.current.get(article_id)

    def list(self) -> List[ResolvedArticle]:
        return self.holder.current.list()

    def stored_count(self) -> Optional[int]:
        """Number of stored records, or None when persistence is off or the store can't answer."""
        if not self.gate.enabled:
            return None
        try:
            return call_with_timeout(self.gate.store.count, self.store_timeout)
        except StoreError as e:
            logger.warning(f"[pipeline] Could not count stored articles: {e}")
            return None

    # -----------------------------------------------------------------------
    # Startup
    # -----------------------------------------------------------------------

    def load_initial_snapshot(self) -> Snapshot:
        """
        Seed the first snapshot from the store so a restarted server serves the
        last persisted state. With persistence off there is nothing to load.
        """
        if not self.gate.enabled:
            return self.holder.current

        include_drafts = self.mode.drafts_visible
        try:
            stored = call_with_timeout(self.gate.store.list, self.store_timeout, include_drafts)
            origins = call_with_timeout(self.gate.store.origins, self.store_timeout)
        except StoreError as e:
            logger.error(f"[pipeline] Could not load persisted articles, starting empty: {e}")
            return self.holder.current

        entries = []
        for article in stored:
            resolution = resolve_article(article, self.mode)
            if resolution.visible:
                origin = origins.get(article.id, STATIC_ORIGIN)
                entries.append(ResolvedArticle(article, resolution.status, article.modified_at, origin))

        with self._run_lock:
            snapshot = Snapshot.build(self.holder.current.revision, entries)
            self.holder.publish(snapshot)
        logger.info(f"[pipeline] Loaded {len(snapshot)} persisted articles")
        return snapshot

    # -----------------------------------------------------------------------
    # Ingestion
    # -----------------------------------------------------------------------

    def run(self, source: BaseSource, merge: bool = False) -> BatchReport:
        """
        Ingest one batch from source and publish the result.

        Args:
            source: where the batch comes from
            merge: keep articles from the current snapshot that are not in the
                batch (HTTP ingest). When False the batch is the complete set
                for its source: articles this source supplied before and
                left out now are dropped, articles from other sources stay.

        Raises:
            IngestionError: the batch was aborted; the previous snapshot stays.
        """
        with self._run_lock:
            previous = self.holder.current
            articles = self._read(source)
            report = BatchReport(revision=previous.revision + 1)

            origin = source.source_name

            # --- Build the new snapshot off to the side ---
            if merge:
                entries: Dict[str, ResolvedArticle] = dict(previous.articles)
            else:
                entries = {k: e for k, e in previous.articles.items() if e.origin != origin}
            to_persist: List[Tuple[ArticleIngest, ArticleStatus]] = []
            for article in articles:
                resolution = resolve_article(article, self.mode)
                self._count(report, resolution)

                modified_at = self._modified_at(previous, article, resolution)
                if modified_at != article.modified_at:
                    article = article.model_copy(update={"modified_at": modified_at})

                if resolution.visible:
                    entries[article.id] = ResolvedArticle(article, resolution.status, modified_at, origin)
                else:
                    entries.pop(article.id, None)
                # Suppressed drafts are still stored as drafts; store.list() filters them out
                to_persist.append((article, resolution.status or ArticleStatus.DRAFT))

            snapshot = Snapshot.build(report.revision, entries.values())

            # --- Persist, one article at a time ---
            for article, status in to_persist:
                if self._persist(article, status, origin, report):
                    report.persisted += 1

            self.holder.publish(snapshot)

        logger.info(
            f"[pipeline] [{source.source_name}] Published revision {report.revision}: "
            f"published={report.published}, drafts={report.drafts}, suppressed={report.suppressed}, "
            f"persisted={report.persisted}, failures={len(report.failures)}"
        )
        return report

    def _read(self, source: BaseSource) -> List[ArticleIngest]:
        try:
            articles = source.read()
        except IngestionError as e:
            logger.error(f"[pipeline] [{source.source_name}] Batch aborted: {e}")
            raise
        except Exception as e:
            logger.error(f"[pipeline] [{source.source_name}] Batch aborted, source failed: {e}")
            raise IngestionError(f"Source '{source.source_name}' failed: {e}") from e

        seen = set()
        for article in articles:
            if article.id in seen:
                logger.error(f"[pipeline] [{source.source_name}] Batch aborted: duplicate id '{article.id}'")
                raise IngestionError(f"Duplicate article id in batch: '{article.id}'")
            seen.add(article.id)
        return articles

    def _persist(self, article: ArticleIngest, status: ArticleStatus, origin: str, report: BatchReport) -> bool:
        """Returns True when the article reached the store."""
        if not self.gate.enabled:
            return False

        try:
            self.gate.maybe_persist(article, status, origin)
            return True
        except StoreError as e:
            logger.error(f"[pipeline] Failed to persist '{article.id}': {e}")
            report.failures.append(PersistenceFailureReport(article.id, e))
            return False

    @staticmethod
    def _count(report: BatchReport, resolution: Resolution) -> None:
        if resolution is Resolution.PUBLISHED:
            report.published += 1
        elif resolution is Resolution.DRAFT:
            report.drafts += 1
        else:
            report.suppressed += 1

    def _modified_at(self, previous: Snapshot, article: ArticleIngest, resolution: Resolution) -> datetime:
        """
        Keep the previous timestamp unless the status or content reference changed.

        Visible articles compare against the current snapshot. Suppressed drafts
        never reach a snapshot, so they compare against their stored record.
        """
        existing = previous.get(article.id)
        if existing is not None:
            if existing.status == resolution.status and existing.content_ref == article.content_ref:
                return existing.modified_at
            return article.modified_at

        if resolution.visible:
            return article.modified_at

        stored = self._stored(article.id)
        if stored is not None and stored.draft and stored.content_ref == article.content_ref:
            return stored.modified_at
        return article.modified_at

    def _stored(self, article_id: str) -> Optional[ArticleIngest]:
        if not self.gate.enabled:
            return None
        try:
            return call_with_timeout(self.gate.store.get, self.store_timeout, article_id, article_id=article_id)
        except StoreError as e:
            # The write that follows reports the failure
            logger.warning(f"[pipeline] Could not read stored '{article_id}': {e}")
            return None
