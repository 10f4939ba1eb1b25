from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Origin of articles that arrive through POST /ingest
STATIC_ORIGIN = "static"


class ArticleStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class ArticleIngest(BaseModel):
    """
    One article as supplied by a source: the body of POST /ingest, and what
    ContentDirSource produces from a markdown file.
    """
    id: str = Field(min_length=1)
    content_ref: str
    draft: bool = False
    modified_at: datetime
    title: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    template: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("modified_at")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are taken to be UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ArticleResponse(BaseModel):
    """Shape returned by GET /articles: suppressed articles never get this far."""
    id: str
    status: ArticleStatus
    content_ref: str
    modified_at: datetime
    title: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class PersistenceFailure(BaseModel):
    id: str
    error: str


class BatchReportResponse(BaseModel):
    """Returned by POST /ingest and POST /sync."""
    revision: int
    published: int
    drafts: int
    suppressed: int
    persisted: int
    failures: List[PersistenceFailure] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class RevisionResponse(BaseModel):
    revision: int
    articles: int
    created_at: datetime
    drafts_visible: bool
    persistence_enabled: bool
    stored: Optional[int] = None   # records in the store, drafts included; None when not persisting
