import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from emphasize.errors import IngestionError
from emphasize.pipeline import BatchReport, PublicationPipeline
from emphasize.schemas import (
    ArticleIngest,
    ArticleResponse,
    BatchReportResponse,
    PersistenceFailure,
    RevisionResponse,
)
from emphasize.snapshot import ResolvedArticle
from emphasize.source import StaticSource
from emphasize.watcher import ContentWatcher

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies: overridden in tests
# ---------------------------------------------------------------------------

def get_pipeline(request: Request) -> PublicationPipeline:
    return request.app.state.pipeline


def get_watcher(request: Request):
    return getattr(request.app.state, "watcher", None)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_response(entry: ResolvedArticle) -> ArticleResponse:
    return ArticleResponse(
        id=entry.id,
        status=entry.status,
        content_ref=entry.content_ref,
        modified_at=entry.modified_at,
        title=entry.title,
        tags=entry.tags,
    )


def to_report_response(report: BatchReport) -> BatchReportResponse:
    return BatchReportResponse(
        revision=report.revision,
        published=report.published,
        drafts=report.drafts,
        suppressed=report.suppressed,
        persisted=report.persisted,
        failures=[PersistenceFailure(id=f.article_id, error=str(f.error)) for f in report.failures],
    )


# ---------------------------------------------------------------------------
# Read endpoints: served from the snapshot captured at request start
# ---------------------------------------------------------------------------

@router.get("/articles", response_model=List[ArticleResponse])
def list_articles(pipeline: PublicationPipeline = Depends(get_pipeline)):
    """
    Return every visible article, most recently modified first.
    Suppressed drafts are absent entirely.
    """
    snapshot = pipeline.snapshot
    logger.info(f"[/articles] Returning {len(snapshot)} articles (revision {snapshot.revision})")
    return [to_response(entry) for entry in snapshot.list()]


@router.get("/articles/{article_id:path}", response_model=ArticleResponse)
def get_article(article_id: str, pipeline: PublicationPipeline = Depends(get_pipeline)):
    """Return a single visible article, or 404 when it is absent or suppressed."""
    entry = pipeline.snapshot.get(article_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Article '{article_id}' not found")
    return to_response(entry)


@router.get("/revision", response_model=RevisionResponse)
def revision(pipeline: PublicationPipeline = Depends(get_pipeline)):
    snapshot = pipeline.snapshot
    return RevisionResponse(
        revision=snapshot.revision,
        articles=len(snapshot),
        created_at=snapshot.created_at,
        drafts_visible=pipeline.mode.drafts_visible,
        persistence_enabled=pipeline.gate.enabled,
        stored=pipeline.stored_count(),
    )


# ---------------------------------------------------------------------------
# Ingestion endpoints
# ---------------------------------------------------------------------------

@router.post("/ingest", response_model=BatchReportResponse)
def ingest(articles: List[ArticleIngest], pipeline: PublicationPipeline = Depends(get_pipeline)):
    """
    Accept a batch of articles and merge it into the published set.
    Re-sending an id overwrites that article. An invalid batch is rejected
    as a whole and the current snapshot keeps serving.
    """
    logger.info(f"[/ingest] Received batch of {len(articles)} articles")
    try:
        report = pipeline.run(StaticSource(articles), merge=True)
    except IngestionError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return to_report_response(report)


@router.post("/sync", response_model=BatchReportResponse)
def sync(watcher: ContentWatcher = Depends(get_watcher)):
    """Re-read the content directory now. Blocks until the batch is published."""
    if watcher is None:
        raise HTTPException(status_code=404, detail="No content directory configured")
    try:
        report = watcher.sync_now()
    except IngestionError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return to_report_response(report)
