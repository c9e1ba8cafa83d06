# chatdigest/models.py
from sqlalchemy import BigInteger, Boolean, Column, DateTime, Index, Integer, String, Text, func

from .database import Base


class Server(Base):
    __tablename__ = "servers"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    synced_at = Column(DateTime, default=func.now())


class Channel(Base):
    __tablename__ = "channels"
    id = Column(String, primary_key=True)
    server_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    synced_at = Column(DateTime, default=func.now(), onupdate=func.now())


class Message(Base):
    __tablename__ = "messages"
    id = Column(String, primary_key=True)
    # Numeric mirror of the snowflake id so range queries never compare strings
    cursor = Column(BigInteger, nullable=False)
    server_id = Column(String, nullable=False)
    channel_id = Column(String, nullable=False)
    author_id = Column(String, nullable=False, default="")
    author = Column(String, nullable=False, default="")
    is_bot = Column(Boolean, nullable=False, default=False)
    content = Column(Text, nullable=False, default="")
    reply_to_id = Column(String, nullable=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    crawled_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_messages_channel_cursor", "server_id", "channel_id", "cursor"),
    )


class Summary(Base):
    __tablename__ = "summaries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    server_id = Column(String, nullable=False)
    channel_id = Column(String, nullable=False, index=True)
    summary = Column(Text, nullable=False)
    num_messages = Column(Integer, nullable=False)
    from_timestamp = Column(DateTime, nullable=False, index=True)
    to_timestamp = Column(DateTime, nullable=False, index=True)
    # Exact window bounds; messages can share a millisecond
    first_message_id = Column(String, nullable=True)
    last_message_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
