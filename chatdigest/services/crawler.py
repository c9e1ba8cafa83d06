# chatdigest/services/crawler.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from chatdigest.cursor import Cursor, cursor_to_time, cursor_value, time_to_cursor
from chatdigest.errors import CrawlError
from chatdigest.schemas import ChannelData, MessageData, ServerData
from chatdigest.services.session import RawMessage, SessionResource

logger = logging.getLogger(__name__)

BOT_AUTHOR = "Bot"


def _parse_timestamp(raw: RawMessage) -> datetime:
    if raw.timestamp:
        try:
            parsed = datetime.fromisoformat(raw.timestamp.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    # The snowflake encodes the creation time
    return cursor_to_time(raw.id)


def normalize_messages(server_id: str, channel_id: str, raw_messages: List[RawMessage]) -> List[MessageData]:
    """Turn raw markup rows (oldest first) into messages.

    Continuation rows carry no author and inherit the one above them; system or
    bot rows without an author are attributed to ``BOT_AUTHOR``.
    """
    messages: List[MessageData] = []
    previous: Optional[MessageData] = None
    for raw in raw_messages:
        author_id, author, is_bot = raw.author_id, raw.author, raw.is_bot
        if not author_id and not author:
            if raw.is_bot or raw.is_system:
                author_id, author, is_bot = "", BOT_AUTHOR, True
            elif previous is not None:
                author_id, author, is_bot = previous.author_id, previous.author, previous.is_bot
        elif raw.is_system:
            is_bot = True
        message = MessageData(
            id=raw.id,
            server_id=server_id,
            channel_id=channel_id,
            author_id=author_id or "",
            author=author or "",
            is_bot=is_bot,
            content=raw.content or "",
            reply_to_id=raw.reply_to_id or None,
            timestamp=_parse_timestamp(raw),
        )
        messages.append(message)
        previous = message
    return messages


class Crawler:
    """Scripted navigation and extraction against the shared browser session."""

    def __init__(
        self,
        session: SessionResource,
        scroll_pause_seconds: float = 1.0,
        stall_scroll_limit: int = 3,
        max_messages: int = 2000,
    ):
        self.session = session
        self.scroll_pause_seconds = scroll_pause_seconds
        self.stall_scroll_limit = stall_scroll_limit
        self.max_messages = max_messages

    async def list_servers(self) -> List[ServerData]:
        await self.session.ensure_authenticated()
        raw_servers = await self.session.driver.read_servers()
        servers: Dict[str, ServerData] = {}
        for raw in raw_servers:
            if raw.id and raw.id not in servers:
                servers[raw.id] = ServerData(id=raw.id, name=raw.name.strip())
        logger.info(f"Found {len(servers)} servers")
        return list(servers.values())

    async def list_channels(self, server_id: str) -> List[ChannelData]:
        await self.session.ensure_authenticated()
        raw_channels = await self.session.driver.read_channels(server_id)
        channels: Dict[str, ChannelData] = {}
        for raw in raw_channels:
            if raw.id and raw.id not in channels:
                channels[raw.id] = ChannelData(id=raw.id, server_id=server_id, name=raw.name.strip())
        logger.info(f"Found {len(channels)} channels in server {server_id}")
        return list(channels.values())

    async def list_messages(
        self,
        server_id: str,
        channel_id: str,
        since_cursor: Cursor,
        retention_window: timedelta,
    ) -> List[MessageData]:
        """Scrape messages newer than ``since_cursor``, paging back through history.

        Paging stops once the cursor or the retention horizon is reached, or after
        ``stall_scroll_limit`` loads that reveal nothing new. The result is ascending
        by id, holds only messages newer than ``since_cursor`` and never contains
        messages older than the horizon.

        At most ``max_messages`` are returned. Filling an empty channel (a cursor at
        or before the horizon) stops paging at the cap and keeps the newest messages.
        Resuming from stored history pages back to the cursor and keeps the oldest
        messages past it, so the next call continues without a gap.
        """
        await self.session.ensure_authenticated()
        driver = self.session.driver
        await driver.open_channel(server_id, channel_id)

        since = cursor_value(since_cursor)
        horizon = datetime.now(timezone.utc) - retention_window
        horizon_cursor = cursor_value(time_to_cursor(horizon))
        catching_up = since > horizon_cursor
        collected: Dict[str, RawMessage] = {}
        # Rows at or above this cursor were dropped to stay under the cap
        ceiling: Optional[int] = None
        stalled = 0

        while True:
            visible = await driver.read_visible_messages()
            fresh = [
                raw for raw in visible
                if raw.id and raw.id not in collected and (ceiling is None or cursor_value(raw.id) < ceiling)
            ]
            for raw in fresh:
                collected[raw.id] = raw
            stalled = 0 if fresh else stalled + 1
            if catching_up:
                ceiling = self._keep_oldest(collected, since, ceiling)

            if not collected:
                # Empty channel, or nothing rendered after repeated loads
                if stalled >= self.stall_scroll_limit:
                    break
            else:
                oldest = min(cursor_value(raw_id) for raw_id in collected)
                if oldest <= since:
                    break
                if oldest < horizon_cursor:
                    break
                if stalled >= self.stall_scroll_limit:
                    logger.info(f"Channel {channel_id}: no new messages after {stalled} loads, stopping")
                    break
                if not catching_up and len(collected) >= self.max_messages:
                    logger.warning(f"Channel {channel_id}: reached cap of {self.max_messages} messages")
                    break

            await driver.load_older()
            await asyncio.sleep(self.scroll_pause_seconds)

        if ceiling is not None:
            logger.warning(
                f"Channel {channel_id}: more than {self.max_messages} new messages, "
                f"keeping the oldest; the rest follow on the next sync"
            )

        # Rows at or below the cursor stay in until normalization so continuations can inherit their author
        ordered = sorted(collected.values(), key=lambda raw: cursor_value(raw.id))
        try:
            messages = normalize_messages(server_id, channel_id, ordered)
        except ValueError as e:
            raise CrawlError(f"Could not read messages of channel {channel_id}: {e}") from e
        messages = [
            message for message in messages
            if cursor_value(message.id) > since and message.timestamp >= horizon
        ]
        if len(messages) > self.max_messages:
            messages = messages[:self.max_messages] if catching_up else messages[-self.max_messages:]
        return messages

    def _keep_oldest(self, collected: Dict[str, RawMessage], since: int, ceiling: Optional[int]) -> Optional[int]:
        """Drop all but the oldest ``max_messages`` rows newer than ``since``; return the new ceiling."""
        newer = sorted((raw_id for raw_id in collected if cursor_value(raw_id) > since), key=cursor_value)
        if len(newer) <= self.max_messages:
            return ceiling
        for raw_id in newer[self.max_messages:]:
            del collected[raw_id]
        return cursor_value(newer[self.max_messages])

    async def post_message(self, server_id: str, channel_id: str, content: str) -> None:
        await self.session.ensure_authenticated()
        await self.session.driver.open_channel(server_id, channel_id)
        await self.session.driver.send_message(content)
        logger.info(f"Posted message to channel {channel_id}")
