import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Callable, Optional, TypeVar

from emphasize.config import PublicationMode
from emphasize.errors import StoreUnavailable
from emphasize.schemas import STATIC_ORIGIN, ArticleIngest, ArticleStatus
from emphasize.store import NullPublicationStore, PublicationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_timeout(fn: Callable[..., T], timeout: Optional[float], *args, article_id: Optional[str] = None) -> T:
    """
    Run a store call on a worker thread and wait at most `timeout` seconds.

    A call that overruns is reported as StoreUnavailable; its thread is
    abandoned rather than joined so the batch can move on. The abandoned call
    may still complete afterwards, so a timed-out write has unknown durability:
    the record may or may not be in the store. Re-running the batch settles it,
    since writes are idempotent upserts.
    """
    if timeout is None:
        return fn(*args)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store-call")
    try:
        future = executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout:
            future.cancel()
            raise StoreUnavailable(f"Store call timed out after {timeout:.1f}s (outcome unknown)", article_id) from None
    finally:
        executor.shutdown(wait=False)


class PersistenceGate:
    """
    Decides, once at construction, whether resolved articles reach the store.

    When closed, maybe_persist() returns without touching the store at all.
    The flag is never re-read, so one batch can't mix persisted and
    non-persisted articles.
    """

    def __init__(self, store: PublicationStore, enabled: bool, timeout: Optional[float] = None):
        self._store = store
        self._enabled = bool(enabled)
        self._timeout = timeout

    @classmethod
    def from_mode(cls, mode: PublicationMode, store: PublicationStore, timeout: Optional[float] = None) -> "PersistenceGate":
        """Select the gate at startup: a closed gate gets a store that holds nothing."""
        if not mode.persistence_enabled:
            logger.info("Persistence disabled: articles will only be kept in memory")
            return cls(NullPublicationStore(), enabled=False, timeout=timeout)
        return cls(store, enabled=True, timeout=timeout)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def store(self) -> PublicationStore:
        return self._store

    def maybe_persist(self, article: ArticleIngest, status: ArticleStatus, origin: str = STATIC_ORIGIN) -> None:
        """
        Write one resolved article through to the store if the gate is open.
        StoreError subclasses from the store propagate unchanged. A timeout
        leaves the write's outcome unknown (see call_with_timeout).
        """
        if not self._enabled:
            return
        call_with_timeout(self._store.put, self._timeout, article, status, origin, article_id=article.id)
