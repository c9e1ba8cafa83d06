# chatdigest/controllers/sync_controller.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from chatdigest.cursor import time_to_cursor
from chatdigest.errors import AuthError, NotFound, PartialSyncFailure
from chatdigest.retry import RetryPolicy
from chatdigest.schemas import ChannelFailure, SyncReport
from chatdigest.services.crawler import Crawler
from chatdigest.services.store import Store

logger = logging.getLogger(__name__)


class EngineLocks:
    """The session mutex plus one lock per channel.

    Acquire a channel lock before the session lock, never the reverse.
    """

    def __init__(self):
        self.session = asyncio.Lock()
        self._channels: Dict[Tuple[str, str], asyncio.Lock] = {}

    def channel(self, server_id: str, channel_id: str) -> asyncio.Lock:
        key = (server_id, channel_id)
        if key not in self._channels:
            self._channels[key] = asyncio.Lock()
        return self._channels[key]


class SyncOrchestrator:
    """Runs crawler calls one at a time and reconciles the results into the store."""

    def __init__(
        self,
        crawler: Crawler,
        store: Store,
        locks: EngineLocks,
        retry_policy: RetryPolicy,
        retention_window: timedelta,
        staleness: timedelta = timedelta(hours=1),
    ):
        self.crawler = crawler
        self.store = store
        self.locks = locks
        self.retry_policy = retry_policy
        self.retention_window = retention_window
        self.staleness = staleness

    # ==================== Staleness gating ====================

    def _is_stale(self, last_sync: Optional[datetime], now: Optional[datetime]) -> bool:
        now = now or datetime.now(timezone.utc)
        return last_sync is None or last_sync < now - self.staleness

    def needs_sync_servers(self, now: Optional[datetime] = None) -> bool:
        return self._is_stale(self.store.last_server_sync(), now)

    def needs_sync_channels(self, server_id: str, now: Optional[datetime] = None) -> bool:
        return self._is_stale(self.store.last_channel_sync(server_id), now)

    # ==================== Sync operations ====================

    async def sync_servers(self) -> int:
        async with self.locks.session:
            logger.info("Syncing servers")
            servers = await self.retry_policy.run(self.crawler.list_servers, "Listing servers")
            count = self.store.replace_servers(servers)
            logger.info(f"Synced {count} servers")
            return count

    async def sync_channels(self, server_id: str) -> int:
        async with self.locks.session:
            logger.info(f"Syncing channels for server {server_id}")
            channels = await self.retry_policy.run(
                lambda: self.crawler.list_channels(server_id),
                f"Listing channels of server {server_id}",
            )
            count = self.store.upsert_channels(channels)
            logger.info(f"Synced {count} channels for server {server_id}")
            return count

    async def sync_messages(self, server_id: str, channel_id: str) -> int:
        """Fetch messages newer than the newest stored one and upsert them by id."""
        if not self.store.get_channel(server_id, channel_id):
            raise NotFound(f"Channel {channel_id} not found in server {server_id}")

        async with self.locks.channel(server_id, channel_id):
            async with self.locks.session:
                logger.info(f"Syncing messages for channel {channel_id}")
                horizon = datetime.now(timezone.utc) - self.retention_window
                purged = self.store.delete_messages_before(horizon, server_id, channel_id)
                if purged:
                    logger.info(f"Purged {purged} expired messages from channel {channel_id}")

                last_id = self.store.latest_message_id(server_id, channel_id) or time_to_cursor(horizon)
                messages = await self.retry_policy.run(
                    lambda: self.crawler.list_messages(server_id, channel_id, last_id, self.retention_window),
                    f"Listing messages of channel {channel_id}",
                )
                count = self.store.upsert_messages(messages)
                logger.info(f"Synced {count} messages for channel {channel_id}")
                return count

    async def sync_messages_for_server(self, server_id: str, channel_id: Optional[str] = None) -> SyncReport:
        """Sync one or every stored channel of a server, skipping channels that fail."""
        channels = self.store.list_channels(server_id=server_id, channel_id=channel_id)
        if channel_id and not channels:
            raise NotFound(f"Channel {channel_id} not found in server {server_id}")

        logger.info(f"Syncing messages for server {server_id} ({len(channels)} channels)")
        report = SyncReport(server_id=server_id)
        for channel in channels:
            try:
                report.messages_synced += await self.sync_messages(server_id, channel.id)
                report.channels_synced.append(channel.id)
            except AuthError:
                # Every remaining channel would fail the same way
                raise
            except Exception as e:
                failure = PartialSyncFailure(server_id, channel.id, str(e) or e.__class__.__name__)
                logger.warning(f"Cannot sync messages for {failure}")
                report.failures.append(ChannelFailure(channel_id=channel.id, reason=failure.reason))
        logger.info(
            f"Synced messages for server {server_id}: "
            f"{len(report.channels_synced)} ok, {len(report.failures)} failed"
        )
        return report

    async def post_message(self, server_id: str, channel_id: str, content: str) -> None:
        if not self.store.get_channel(server_id, channel_id):
            raise NotFound(f"Channel {channel_id} not found in server {server_id}")
        async with self.locks.session:
            # Not retried: a timeout after the Enter key may still have posted
            await self.crawler.post_message(server_id, channel_id, content)
