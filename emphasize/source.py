import hashlib
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Tuple

from emphasize.errors import IngestionError
from emphasize.frontmatter import parse_frontmatter
from emphasize.schemas import STATIC_ORIGIN, ArticleIngest

logger = logging.getLogger(__name__)

CONTENT_PREFIX = "content"
ARTICLE_SUFFIX = ".md"
DIGEST_LENGTH = 16

_EXTENSION_RE = re.compile(r"[.][^.]+$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_route_path(logical_path: str) -> str:
    """
    Derive an article id from its path relative to the content root.

    content/posts/hello.md        -> posts/hello
    content/posts/hello/index.md  -> posts/hello
    content/index.md              -> index
    """
    route = logical_path
    if route.startswith(CONTENT_PREFIX):
        route = route[len(CONTENT_PREFIX):]
    if route.endswith("/index.md"):
        route = route[: -len("/index.md")]
    route = route.lstrip("/")
    route = _EXTENSION_RE.sub("", route)
    return route or "index"


def content_digest(contents: bytes) -> str:
    return hashlib.sha256(contents).hexdigest()[:DIGEST_LENGTH]


# ---------------------------------------------------------------------------
# Base source: subclass this to add a new kind of source
# ---------------------------------------------------------------------------

class BaseSource(ABC):
    """
    Supplies one ingestion batch of articles.
    Raising IngestionError aborts the batch; nothing from it is published.
    """
    source_name: str

    @abstractmethod
    def read(self) -> List[ArticleIngest]:
        pass


class StaticSource(BaseSource):
    """A batch that is already in memory, e.g. the body of POST /ingest."""
    source_name = STATIC_ORIGIN

    def __init__(self, articles: Iterable[ArticleIngest]):
        self._articles = list(articles)

    def read(self) -> List[ArticleIngest]:
        return list(self._articles)


# ---------------------------------------------------------------------------
# Content directory source: markdown files with YAML frontmatter
# ---------------------------------------------------------------------------

class ContentDirSource(BaseSource):
    """
    Reads every `*.md` file under `<content_dir>/content`.

    Each file becomes one article: the id is derived from its path, the draft
    flag and metadata come from the frontmatter, the content reference is the
    logical path plus a digest of the file, and the timestamp is the file mtime.
    """
    source_name = "content-dir"

    def __init__(self, content_dir: Path):
        self.content_dir = Path(content_dir)

    @property
    def root(self) -> Path:
        return self.content_dir / CONTENT_PREFIX

    def _files(self) -> List[Path]:
        if not self.root.is_dir():
            raise IngestionError(f"Content directory not found: {self.root}")
        return sorted(
            p for p in self.root.rglob(f"*{ARTICLE_SUFFIX}")
            if p.is_file() and not any(part.startswith(".") for part in p.relative_to(self.root).parts)
        )

    def read(self) -> List[ArticleIngest]:
        articles = []

        for path in self._files():
            logical_path = path.relative_to(self.content_dir).as_posix()
            try:
                raw = path.read_bytes()
                mtime = path.stat().st_mtime
                text = raw.decode("utf-8")
            except OSError as e:
                raise IngestionError(f"Cannot read {logical_path}: {e}") from e
            except UnicodeDecodeError as e:
                raise IngestionError(f"{logical_path} is not valid UTF-8") from e

            frontmatter, _ = parse_frontmatter(logical_path, text)

            articles.append(ArticleIngest(
                id=to_route_path(logical_path),
                content_ref=f"{logical_path}#{content_digest(raw)}",
                draft=frontmatter.draft,
                modified_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
                title=frontmatter.title,
                tags=frontmatter.tags,
                template=frontmatter.template,
            ))

        logger.info(f"[{self.source_name}] Read {len(articles)} articles from {self.root}")
        return articles

    def fingerprint(self) -> Tuple[Tuple[str, int, int], ...]:
        """
        Cheap change detector: (path, size, mtime) for every article file.
        An unreadable or missing directory yields an empty fingerprint.
        """
        try:
            files = self._files()
            return tuple(
                (p.relative_to(self.content_dir).as_posix(), p.stat().st_size, p.stat().st_mtime_ns)
                for p in files
            )
        except (IngestionError, OSError):
            return ()
