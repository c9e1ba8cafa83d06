# chatdigest/services/store.py
"""Typed persistence facade over the SQLAlchemy models.

Every write runs in its own transaction. Upserts use the dialect's native
``INSERT ... ON CONFLICT DO UPDATE`` so the check-then-act for a row is a single
statement.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from chatdigest.cursor import Cursor, cursor_value
from chatdigest.models import Channel, Message, Server, Summary
from chatdigest.schemas import ChannelData, MessageData, ServerData, SummaryRecord

logger = logging.getLogger(__name__)

UPSERT_CHUNK_SIZE = 50


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Store:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ==================== Helpers ====================

    def _upsert(self, db: Session, model, rows: List[dict], update_columns: Sequence[str]) -> None:
        if not rows:
            return
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            logger.debug(f"No native upsert for {dialect}, merging {len(rows)} rows")
            for row in rows:
                db.merge(model(**row))
            return
        # Chunked to stay under SQLite's bound-parameter limit
        for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
            stmt = insert(model).values(rows[start:start + UPSERT_CHUNK_SIZE])
            stmt = stmt.on_conflict_do_update(
                index_elements=[model.id],
                set_={column: stmt.excluded[column] for column in update_columns},
            )
            db.execute(stmt)

    # ==================== Servers ====================

    def replace_servers(self, servers: Iterable[ServerData], synced_at: Optional[datetime] = None) -> int:
        """Delete every server row and insert ``servers`` in one transaction."""
        synced_at = _naive_utc(synced_at or _utcnow())
        rows = {}
        for server in servers:
            rows.setdefault(server.id, {"id": server.id, "name": server.name, "synced_at": synced_at})
        with self._session_factory.begin() as db:
            db.execute(delete(Server))
            if rows:
                db.add_all(Server(**row) for row in rows.values())
        return len(rows)

    def list_servers(self) -> List[ServerData]:
        with self._session_factory() as db:
            rows = db.scalars(select(Server).order_by(Server.name)).all()
            return [ServerData.model_validate(row) for row in rows]

    def get_server(self, server_id: str) -> Optional[ServerData]:
        with self._session_factory() as db:
            row = db.get(Server, server_id)
            return ServerData.model_validate(row) if row else None

    def last_server_sync(self) -> Optional[datetime]:
        with self._session_factory() as db:
            value = db.scalar(select(func.max(Server.synced_at)))
            return value.replace(tzinfo=timezone.utc) if value else None

    # ==================== Channels ====================

    def _channel_row(self, channel: ChannelData, synced_at: datetime) -> dict:
        return {
            "id": channel.id,
            "server_id": channel.server_id,
            "name": channel.name,
            "synced_at": synced_at,
        }

    def upsert_channels(self, channels: Iterable[ChannelData], synced_at: Optional[datetime] = None) -> int:
        """Update channels that exist by id, insert the rest."""
        synced_at = _naive_utc(synced_at or _utcnow())
        rows = {}
        for channel in channels:
            rows[channel.id] = self._channel_row(channel, synced_at)
        with self._session_factory.begin() as db:
            self._upsert(db, Channel, list(rows.values()), ("server_id", "name", "synced_at"))
        return len(rows)

    def replace_channels(self, server_id: str, channels: Iterable[ChannelData], synced_at: Optional[datetime] = None) -> int:
        """Drop every channel of ``server_id`` and insert ``channels``."""
        synced_at = _naive_utc(synced_at or _utcnow())
        rows = {}
        for channel in channels:
            rows.setdefault(channel.id, self._channel_row(channel, synced_at))
        with self._session_factory.begin() as db:
            db.execute(delete(Channel).where(Channel.server_id == server_id))
            self._upsert(db, Channel, list(rows.values()), ("server_id", "name", "synced_at"))
        return len(rows)

    def list_channels(self, server_id: Optional[str] = None, channel_id: Optional[str] = None) -> List[ChannelData]:
        query = select(Channel).order_by(Channel.server_id, Channel.name)
        if server_id:
            query = query.where(Channel.server_id == server_id)
        if channel_id:
            query = query.where(Channel.id == channel_id)
        with self._session_factory() as db:
            return [ChannelData.model_validate(row) for row in db.scalars(query).all()]

    def get_channel(self, server_id: str, channel_id: str) -> Optional[ChannelData]:
        with self._session_factory() as db:
            row = db.scalars(
                select(Channel).where(Channel.id == channel_id, Channel.server_id == server_id)
            ).first()
            return ChannelData.model_validate(row) if row else None

    def last_channel_sync(self, server_id: str) -> Optional[datetime]:
        with self._session_factory() as db:
            value = db.scalar(select(func.max(Channel.synced_at)).where(Channel.server_id == server_id))
            return value.replace(tzinfo=timezone.utc) if value else None

    # ==================== Messages ====================

    def upsert_messages(self, messages: Iterable[MessageData]) -> int:
        rows = {}
        for message in messages:
            rows[message.id] = {
                "id": message.id,
                "cursor": cursor_value(message.id),
                "server_id": message.server_id,
                "channel_id": message.channel_id,
                "author_id": message.author_id,
                "author": message.author,
                "is_bot": message.is_bot,
                "content": message.content,
                "reply_to_id": message.reply_to_id,
                "timestamp": _naive_utc(message.timestamp),
                "crawled_at": _naive_utc(_utcnow()),
            }
        with self._session_factory.begin() as db:
            self._upsert(
                db,
                Message,
                list(rows.values()),
                ("cursor", "server_id", "channel_id", "author_id", "author", "is_bot",
                 "content", "reply_to_id", "timestamp", "crawled_at"),
            )
        return len(rows)

    def get_message(self, message_id: str) -> Optional[MessageData]:
        with self._session_factory() as db:
            row = db.get(Message, message_id)
            return MessageData.model_validate(row) if row else None

    def count_messages(self, server_id: str, channel_id: str) -> int:
        with self._session_factory() as db:
            return db.scalar(
                select(func.count(Message.id)).where(
                    Message.server_id == server_id, Message.channel_id == channel_id
                )
            )

    def latest_message_id(self, server_id: str, channel_id: str) -> Optional[str]:
        with self._session_factory() as db:
            return db.scalars(
                select(Message.id)
                .where(Message.server_id == server_id, Message.channel_id == channel_id)
                .order_by(Message.cursor.desc())
                .limit(1)
            ).first()

    def messages_after(
        self,
        server_id: str,
        channel_id: str,
        after: Cursor,
        limit: int,
        include_bots: bool = False,
    ) -> List[MessageData]:
        """Messages with a cursor strictly greater than ``after``, oldest first."""
        query = (
            select(Message)
            .where(
                Message.server_id == server_id,
                Message.channel_id == channel_id,
                Message.cursor > cursor_value(after),
            )
            .order_by(Message.cursor.asc())
            .limit(limit)
        )
        if not include_bots:
            query = query.where(Message.is_bot.is_(False))
        with self._session_factory() as db:
            return [MessageData.model_validate(row) for row in db.scalars(query).all()]

    def delete_messages_before(
        self,
        cutoff: datetime,
        server_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> int:
        stmt = delete(Message).where(Message.timestamp < _naive_utc(cutoff))
        if server_id:
            stmt = stmt.where(Message.server_id == server_id)
        if channel_id:
            stmt = stmt.where(Message.channel_id == channel_id)
        with self._session_factory.begin() as db:
            return db.execute(stmt).rowcount

    # ==================== Summaries ====================

    def latest_summary(self, server_id: str, channel_id: str) -> Optional[SummaryRecord]:
        with self._session_factory() as db:
            row = db.scalars(
                select(Summary)
                .where(Summary.server_id == server_id, Summary.channel_id == channel_id)
                .order_by(Summary.to_timestamp.desc(), Summary.id.desc())
                .limit(1)
            ).first()
            return SummaryRecord.model_validate(row) if row else None

    def insert_summary(
        self,
        server_id: str,
        channel_id: str,
        summary: str,
        num_messages: int,
        from_timestamp: datetime,
        to_timestamp: datetime,
        first_message_id: Optional[str] = None,
        last_message_id: Optional[str] = None,
    ) -> SummaryRecord:
        with self._session_factory.begin() as db:
            row = Summary(
                server_id=server_id,
                channel_id=channel_id,
                summary=summary,
                num_messages=num_messages,
                from_timestamp=_naive_utc(from_timestamp),
                to_timestamp=_naive_utc(to_timestamp),
                first_message_id=first_message_id,
                last_message_id=last_message_id,
            )
            db.add(row)
            db.flush()
            return SummaryRecord.model_validate(row)

    def update_summary(
        self,
        summary_id: int,
        summary: str,
        num_messages: int,
        from_timestamp: datetime,
        to_timestamp: datetime,
        first_message_id: Optional[str] = None,
        last_message_id: Optional[str] = None,
    ) -> None:
        with self._session_factory.begin() as db:
            db.execute(
                update(Summary)
                .where(Summary.id == summary_id)
                .values(
                    summary=summary,
                    num_messages=num_messages,
                    from_timestamp=_naive_utc(from_timestamp),
                    to_timestamp=_naive_utc(to_timestamp),
                    first_message_id=first_message_id,
                    last_message_id=last_message_id,
                )
            )

    def list_summaries(
        self,
        server_id: Optional[str] = None,
        channel_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[SummaryRecord]:
        query = select(Summary).order_by(Summary.to_timestamp.asc(), Summary.id.asc())
        if server_id:
            query = query.where(Summary.server_id == server_id)
        if channel_id:
            query = query.where(Summary.channel_id == channel_id)
        if since:
            query = query.where(Summary.to_timestamp >= _naive_utc(since))
        with self._session_factory() as db:
            return [SummaryRecord.model_validate(row) for row in db.scalars(query).all()]

    def delete_summaries_before(
        self,
        cutoff: datetime,
        server_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> int:
        stmt = delete(Summary).where(Summary.to_timestamp < _naive_utc(cutoff))
        if server_id:
            stmt = stmt.where(Summary.server_id == server_id)
        if channel_id:
            stmt = stmt.where(Summary.channel_id == channel_id)
        with self._session_factory.begin() as db:
            return db.execute(stmt).rowcount
