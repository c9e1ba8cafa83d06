# chatdigest/controllers/summary_controller.py
"""Incremental, windowed summarization of stored channel messages.

Each channel's summaries form a time series of windows. The newest window
stays open (rewritten in place) until it holds ``capacity`` messages, after
which it is final and the next window starts right after it.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple, Union

from pydantic import TypeAdapter, ValidationError

from chatdigest.controllers.sync_controller import EngineLocks
from chatdigest.cursor import cursor_after, cursor_value, time_to_cursor
from chatdigest.errors import SummarizationParseFailure
from chatdigest.schemas import MessageData, RawSummary, StructuredSummary, SummaryRecord, Topic
from chatdigest.services.llm import TextGenerator
from chatdigest.services.store import Store

logger = logging.getLogger(__name__)

ANALYZER_SYSTEM_PROMPT = """You are a Discord Message Analyzer. Analyze the provided messages and extract key discussion topics.

Output a JSON array of topics with this schema:
{
  "topic": "string - specific subject being discussed",
  "creator": "string - username who started the topic",
  "top_active_users": "array of string - list of most engaged users",
  "number_of_messages": "number - count of messages in this topic",
  "number_of_users": "number - count of unique users in this topic",
  "summary": "string - key points and conclusions"
}

Guidelines:
- Focus on substantive discussions, not chit-chat
- Group related messages into coherent topics
- Note connections between topics
- Track who participates most actively
- Only include messages that contribute meaningfully

Output must be valid JSON with no other text."""

_TOPICS = TypeAdapter(List[Topic])


def format_messages(messages: List[MessageData]) -> str:
    lines = []
    for message in messages:
        reply = f"(reply to #{message.reply_to_id}) " if message.reply_to_id else ""
        lines.append(
            f"- #{message.id} {reply}[{message.timestamp.isoformat()}] "
            f"{message.author} <@{message.author_id}> : {message.content}"
        )
    return "Here are the Discord messages to analyze:\n\n" + "\n".join(lines)


def clean_model_output(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_topics(text: str) -> List[Topic]:
    try:
        return _TOPICS.validate_json(text)
    except ValidationError as e:
        raise SummarizationParseFailure(f"model output is not a topic list: {e.error_count()} errors") from e


def parse_summary(text: str) -> Union[StructuredSummary, RawSummary]:
    """Decode a stored summary into topics, or keep it as raw text."""
    try:
        return StructuredSummary(topics=parse_topics(text))
    except SummarizationParseFailure:
        return RawSummary(text=text)


def encode_summary(payload: Union[StructuredSummary, RawSummary]) -> str:
    if isinstance(payload, StructuredSummary):
        return json.dumps([topic.model_dump() for topic in payload.topics], ensure_ascii=False)
    return payload.text


@dataclass
class WindowOutcome:
    """Result of a single summarization pass over one channel."""

    action: str  # "created", "updated", "idle" or "stalled"
    num_messages: int = 0
    summary_id: Optional[int] = None
    window_full: bool = False

    @property
    def wrote(self) -> bool:
        return self.action in ("created", "updated")


class Summarizer:
    def __init__(
        self,
        store: Store,
        generator: TextGenerator,
        locks: EngineLocks,
        retention_window: timedelta,
        capacity: int = 200,
        min_messages: int = 10,
    ):
        self.store = store
        self.generator = generator
        self.locks = locks
        self.retention_window = retention_window
        self.capacity = capacity
        self.min_messages = min_messages

    async def analyze(self, messages: List[MessageData]) -> str:
        text = await self.generator.generate(
            ANALYZER_SYSTEM_PROMPT,
            [{"role": "user", "content": format_messages(messages)}],
        )
        return encode_summary(parse_summary(clean_model_output(text)))

    def _resume_point(self, latest: Optional[SummaryRecord]) -> Tuple[int, Optional[SummaryRecord]]:
        """Cursor to read after, and the open row to rewrite if any."""
        if latest is None:
            horizon = datetime.now(timezone.utc) - self.retention_window
            return cursor_value(time_to_cursor(horizon)), None
        if latest.num_messages < self.capacity:
            # Re-read the open window from its first message
            if latest.first_message_id:
                return cursor_value(latest.first_message_id) - 1, latest
            return cursor_value(time_to_cursor(latest.from_timestamp)) - 1, latest
        if latest.last_message_id:
            return cursor_value(latest.last_message_id), None
        return cursor_value(cursor_after(latest.to_timestamp)), None

    async def _summarize_window(self, server_id: str, channel_id: str) -> WindowOutcome:
        latest = self.store.latest_summary(server_id, channel_id)
        after, open_row = self._resume_point(latest)
        candidates = self.store.messages_after(server_id, channel_id, after, limit=self.capacity)

        if len(candidates) < self.min_messages:
            return WindowOutcome("idle", len(candidates))
        if open_row is not None and len(candidates) <= open_row.num_messages:
            return WindowOutcome("stalled", len(candidates), open_row.id)

        text = await self.analyze(candidates)
        if not text:
            logger.warning(f"Empty summary for channel {channel_id}, leaving window unchanged")
            return WindowOutcome("stalled", len(candidates))

        window_full = len(candidates) == self.capacity
        first, last = candidates[0].timestamp, candidates[-1].timestamp
        bounds = (candidates[0].id, candidates[-1].id)
        if open_row is not None:
            self.store.update_summary(open_row.id, text, len(candidates), first, last, *bounds)
            return WindowOutcome("updated", len(candidates), open_row.id, window_full)
        record = self.store.insert_summary(server_id, channel_id, text, len(candidates), first, last, *bounds)
        return WindowOutcome("created", len(candidates), record.id, window_full)

    async def summarize_window(self, server_id: str, channel_id: str) -> WindowOutcome:
        """Run one pass: extend the open window or start the next one."""
        async with self.locks.channel(server_id, channel_id):
            return await self._summarize_window(server_id, channel_id)

    async def summarize_channel(self, server_id: str, channel_id: str) -> int:
        """Summarize until the channel is caught up. Returns the number of windows written."""
        logger.info(f"Summarizing channel {channel_id}")
        written = 0
        async with self.locks.channel(server_id, channel_id):
            horizon = datetime.now(timezone.utc) - self.retention_window
            self.store.delete_summaries_before(horizon, server_id, channel_id)
            while True:
                outcome = await self._summarize_window(server_id, channel_id)
                if outcome.wrote:
                    written += 1
                    logger.info(f"Channel {channel_id}: {outcome.action} summary {outcome.summary_id} "
                                f"({outcome.num_messages} messages)")
                if not (outcome.wrote and outcome.window_full):
                    break
        return written

    async def summarize_all(self, server_id: Optional[str] = None, channel_id: Optional[str] = None) -> int:
        channels = self.store.list_channels(server_id=server_id, channel_id=channel_id)
        logger.info(f"Summarizing {len(channels)} channels")
        summarized = 0
        for channel in channels:
            try:
                await self.summarize_channel(channel.server_id, channel.id)
                summarized += 1
            except Exception as e:
                logger.error(f"Cannot summarize channel {channel.name}: {e}", exc_info=True)
        return summarized

    def summaries_for(
        self,
        server_id: str,
        channel_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[Tuple[SummaryRecord, Union[StructuredSummary, RawSummary]]]:
        if since is None:
            since = datetime.now(timezone.utc) - self.retention_window
        records = self.store.list_summaries(server_id=server_id, channel_id=channel_id, since=since)
        return [(record, parse_summary(record.summary)) for record in records]
