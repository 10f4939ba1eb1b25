import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from emphasize.schemas import STATIC_ORIGIN, ArticleIngest, ArticleStatus


@dataclass(frozen=True)
class ResolvedArticle:
    """
    A visible article together with its resolved status, its last-modified
    time and the source that supplied it.
    """
    article: ArticleIngest
    status: ArticleStatus
    modified_at: datetime
    origin: str = STATIC_ORIGIN

    @property
    def id(self) -> str:
        return self.article.id

    @property
    def content_ref(self) -> str:
        return self.article.content_ref

    @property
    def title(self) -> Optional[str]:
        return self.article.title

    @property
    def tags(self) -> List[str]:
        return list(self.article.tags)


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable view of every visible article at one revision.
    Suppressed articles are never part of a snapshot.
    """
    revision: int
    articles: Mapping[str, ResolvedArticle] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        # Freeze the mapping so nobody can edit a published snapshot in place
        object.__setattr__(self, "articles", MappingProxyType(dict(self.articles)))

    @classmethod
    def build(cls, revision: int, entries: Iterable[ResolvedArticle]) -> "Snapshot":
        return cls(revision=revision, articles={entry.id: entry for entry in entries})

    def get(self, article_id: str) -> Optional[ResolvedArticle]:
        return self.articles.get(article_id)

    def list(self) -> List[ResolvedArticle]:
        """Most recently modified first; ties broken by id."""
        by_id = sorted(self.articles.values(), key=lambda entry: entry.id)
        return sorted(by_id, key=lambda entry: entry.modified_at, reverse=True)

    def __len__(self) -> int:
        return len(self.articles)


class SnapshotHolder:
    """
    Holds the currently published snapshot.

    Readers take `current` once and keep using that object; publishing swaps
    the reference in a single assignment, so a reader sees either the old or
    the new snapshot and never a mix.
    """

    def __init__(self, initial: Optional[Snapshot] = None):
        self._current = initial if initial is not None else Snapshot(revision=0)
        self._write_lock = threading.Lock()

    @property
    def current(self) -> Snapshot:
        return self._current

    def publish(self, snapshot: Snapshot) -> Snapshot:
        """Make snapshot visible to readers. Returns the one it replaced."""
        with self._write_lock:
            previous = self._current
            if snapshot.revision < previous.revision:
                raise ValueError(
                    f"Refusing to publish revision {snapshot.revision} over {previous.revision}"
                )
            self._current = snapshot
            return previous
