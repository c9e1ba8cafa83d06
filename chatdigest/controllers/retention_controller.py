# chatdigest/controllers/retention_controller.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from chatdigest.controllers.summary_controller import Summarizer
from chatdigest.controllers.sync_controller import SyncOrchestrator
from chatdigest.errors import AuthError
from chatdigest.services.store import Store

logger = logging.getLogger(__name__)


class RetentionJob:
    """Background loop: purge expired rows, then sync and summarize everything known."""

    def __init__(
        self,
        store: Store,
        sync: SyncOrchestrator,
        summarizer: Summarizer,
        retention_window: timedelta,
        poll_interval: timedelta,
    ):
        self.store = store
        self.sync = sync
        self.summarizer = summarizer
        self.retention_window = retention_window
        self.poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None

    def purge_summaries(self) -> int:
        horizon = datetime.now(timezone.utc) - self.retention_window
        deleted = self.store.delete_summaries_before(horizon)
        logger.info(f"Deleted {deleted} old summaries")
        return deleted

    def purge_messages(self) -> int:
        horizon = datetime.now(timezone.utc) - self.retention_window
        deleted = self.store.delete_messages_before(horizon)
        logger.info(f"Deleted {deleted} old messages")
        return deleted

    async def sync_all(self) -> None:
        if self.sync.needs_sync_servers():
            await self.sync.sync_servers()
        for server in self.store.list_servers():
            try:
                if self.sync.needs_sync_channels(server.id):
                    await self.sync.sync_channels(server.id)
                await self.sync.sync_messages_for_server(server.id)
            except AuthError:
                raise
            except Exception as e:
                logger.error(f"Cannot sync server {server.name}: {e}", exc_info=True)

    async def run_once(self) -> None:
        logger.info("Syncing messages and summarizing")
        phases = (
            ("purge summaries", self.purge_summaries),
            ("purge messages", self.purge_messages),
            ("sync", self.sync_all),
            ("summarize", self.summarizer.summarize_all),
        )
        for name, phase in phases:
            try:
                result = phase()
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Retention job phase '{name}' failed: {e}", exc_info=True)
        logger.info("Synced messages and summarized")

    async def run_forever(self) -> None:
        while True:
            await self.run_once()
            logger.info(f"Sleeping for {self.poll_interval}")
            await asyncio.sleep(self.poll_interval.total_seconds())

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="retention-job")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
