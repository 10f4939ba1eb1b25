import json
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from emphasize.database import Base
from emphasize.schemas import STATIC_ORIGIN


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArticleRecord(Base):
    __tablename__ = "articles"

    # --- Identity ---
    # Slug supplied by the source: never auto-generated
    id = Column(String, primary_key=True, index=True)

    # --- Publication state ---
    draft = Column(Boolean, nullable=False, default=False)   # author's flag, source of truth
    status = Column(String, nullable=False)                  # resolved status at write time, informational only
    content_ref = Column(String, nullable=False)             # opaque handle to the body
    modified_at = Column(DateTime, nullable=False, index=True)  # UTC, last status/content change
    origin = Column(String, nullable=False, default=STATIC_ORIGIN)  # source that last wrote the row

    # --- Frontmatter metadata ---
    title = Column(String, nullable=True)
    tags = Column(Text, nullable=False, default="[]")        # JSON encoded list of strings
    template = Column(String, nullable=True)

    # --- Bookkeeping ---
    persisted_at = Column(DateTime, default=utcnow)
    # Optimistic concurrency: UPDATE ... WHERE version = <loaded version>
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def tag_list(self) -> list[str]:
        return json.loads(self.tags or "[]")

    @property
    def modified_at_utc(self) -> datetime:
        """SQLite drops tzinfo: stored values are always UTC."""
        if self.modified_at.tzinfo is None:
            return self.modified_at.replace(tzinfo=timezone.utc)
        return self.modified_at
