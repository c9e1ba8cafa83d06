# chatdigest/controllers/query_controller.py
"""On-demand entry points for request handlers and tool calls.

Failures come back as an ``"Error: <reason>"`` string instead of an exception.
"""

import functools
import logging
from typing import List, Optional, Union

from chatdigest.engine import Engine
from chatdigest.errors import ErrorMessage, NotFound, format_error
from chatdigest.schemas import (
    ChannelData,
    PostMessageResponse,
    ServerData,
    SummariesResponse,
    SummarizeResponse,
    SummaryOut,
    SyncReport,
)

logger = logging.getLogger(__name__)


def returns_error_string(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger.warning(f"{func.__name__} failed: {e}")
            return format_error(e)

    return wrapper


@returns_error_string
async def get_servers(engine: Engine, refresh: bool = False) -> Union[List[ServerData], ErrorMessage]:
    if refresh or engine.sync.needs_sync_servers():
        await engine.sync.sync_servers()
    return engine.store.list_servers()


@returns_error_string
async def get_channels(engine: Engine, server_id: str, refresh: bool = False) -> Union[List[ChannelData], ErrorMessage]:
    if refresh or engine.sync.needs_sync_channels(server_id):
        await engine.sync.sync_channels(server_id)
    return engine.store.list_channels(server_id=server_id)


@returns_error_string
async def sync_messages(engine: Engine, server_id: str, channel_id: Optional[str] = None) -> Union[SyncReport, ErrorMessage]:
    return await engine.sync.sync_messages_for_server(server_id, channel_id)


@returns_error_string
async def summarize(
    engine: Engine,
    server_id: Optional[str] = None,
    channel_id: Optional[str] = None,
) -> Union[SummarizeResponse, ErrorMessage]:
    if server_id and channel_id:
        if not engine.store.get_channel(server_id, channel_id):
            raise NotFound(f"Channel {channel_id} not found in server {server_id}")
        await engine.summarizer.summarize_channel(server_id, channel_id)
        return SummarizeResponse(status="success", channels_summarized=1)
    count = await engine.summarizer.summarize_all(server_id=server_id, channel_id=channel_id)
    return SummarizeResponse(status="success", channels_summarized=count)


@returns_error_string
async def get_summaries(
    engine: Engine,
    server_id: str,
    channel_id: Optional[str] = None,
) -> Union[SummariesResponse, ErrorMessage]:
    channels = engine.store.list_channels(server_id=server_id)
    if not channels:
        raise NotFound(f"Server {server_id} has no known channels")
    names = {channel.id: channel.name for channel in channels}
    if channel_id and channel_id not in names:
        raise NotFound(f"Channel {channel_id} not found in server {server_id}")

    summaries = [
        SummaryOut(
            channel_id=record.channel_id,
            channel_name=names.get(record.channel_id),
            num_messages=record.num_messages,
            from_timestamp=record.from_timestamp,
            to_timestamp=record.to_timestamp,
            summary=payload,
        )
        for record, payload in engine.summarizer.summaries_for(server_id, channel_id)
    ]
    return SummariesResponse(server_id=server_id, channels=channels, summaries=summaries)


@returns_error_string
async def post_message(engine: Engine, server_id: str, channel_id: str, content: str) -> Union[PostMessageResponse, ErrorMessage]:
    await engine.sync.post_message(server_id, channel_id, content)
    return PostMessageResponse(status="success", channel_id=channel_id)
