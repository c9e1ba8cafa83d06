# chatdigest/schemas.py
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(_utc)]


class ServerData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    synced_at: Optional[UTCDateTime] = None


class ChannelData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    server_id: str
    name: str
    synced_at: Optional[UTCDateTime] = None


class MessageData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    server_id: str
    channel_id: str
    author_id: str = ""
    author: str = ""
    is_bot: bool = False
    content: str = ""
    reply_to_id: Optional[str] = None
    timestamp: UTCDateTime


# --- Summary payload -------------------------------------------------------

class Topic(BaseModel):
    topic: str
    creator: str = ""
    top_active_users: List[str] = Field(default_factory=list)
    number_of_messages: int = 0
    number_of_users: int = 0
    summary: str = ""


class StructuredSummary(BaseModel):
    kind: Literal["structured"] = "structured"
    topics: List[Topic]


class RawSummary(BaseModel):
    kind: Literal["raw"] = "raw"
    text: str


SummaryPayload = Annotated[Union[StructuredSummary, RawSummary], Field(discriminator="kind")]


class SummaryRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    server_id: str
    channel_id: str
    summary: str
    num_messages: int
    from_timestamp: UTCDateTime
    to_timestamp: UTCDateTime
    first_message_id: Optional[str] = None
    last_message_id: Optional[str] = None


# --- API responses ---------------------------------------------------------

class SyncResponse(BaseModel):
    status: str
    servers_synced: int = 0
    channels_synced: int = 0
    messages_synced: int = 0


class ChannelFailure(BaseModel):
    channel_id: str
    reason: str


class SyncReport(BaseModel):
    server_id: str
    channels_synced: List[str] = Field(default_factory=list)
    messages_synced: int = 0
    failures: List[ChannelFailure] = Field(default_factory=list)


class SummaryOut(BaseModel):
    channel_id: str
    channel_name: Optional[str] = None
    num_messages: int
    from_timestamp: datetime
    to_timestamp: datetime
    summary: SummaryPayload


class SummariesResponse(BaseModel):
    server_id: str
    channels: List[ChannelData]
    summaries: List[SummaryOut]


class SummarizeResponse(BaseModel):
    status: str
    channels_summarized: int


class PostMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, description="Text to post into the channel.")


class PostMessageResponse(BaseModel):
    status: str
    channel_id: str
