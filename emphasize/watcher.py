import asyncio
import logging
from typing import Optional

from emphasize.errors import IngestionError
from emphasize.pipeline import BatchReport, PublicationPipeline
from emphasize.source import ContentDirSource

logger = logging.getLogger(__name__)

SYNC_INTERVAL_SECONDS = 5.0


class ContentWatcher:
    """
    Background loop that re-ingests the content directory whenever its files
    change. The batch runs on a worker thread so requests keep being served
    from the current snapshot meanwhile.
    """

    def __init__(
        self,
        pipeline: PublicationPipeline,
        source: ContentDirSource,
        interval_seconds: float = SYNC_INTERVAL_SECONDS,
    ):
        self.pipeline = pipeline
        self.source = source
        self.interval_seconds = interval_seconds
        self._last_fingerprint = None

    async def run(self):
        """Entry point for the background task. Runs until cancelled."""
        logger.info(
            "ContentWatcher started: checking %s every %.1fs", self.source.root, self.interval_seconds
        )
        while True:
            await self.check_once()
            await asyncio.sleep(self.interval_seconds)

    async def check_once(self) -> Optional[BatchReport]:
        """Run a batch if the directory changed since the last successful one."""
        fingerprint = await asyncio.to_thread(self.source.fingerprint)
        if fingerprint == self._last_fingerprint:
            return None

        try:
            report = await asyncio.to_thread(self.pipeline.run, self.source)
        except IngestionError as e:
            # Previous snapshot keeps serving; retried once the files change again
            logger.error(f"[watcher] Sync failed: {e}")
            self._last_fingerprint = fingerprint
            return None

        self._last_fingerprint = fingerprint
        return report

    def sync_now(self) -> BatchReport:
        """Synchronous batch for POST /sync. Raises IngestionError on failure."""
        report = self.pipeline.run(self.source)
        self._last_fingerprint = self.source.fingerprint()
        return report
