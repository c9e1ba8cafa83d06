# chatdigest/cursor.py
"""Conversions between wall-clock time and snowflake cursors.

A snowflake carries milliseconds since the platform epoch in its high bits and
worker/sequence bits in the low 22. Synthesized cursors leave the low bits at
zero, so a real id from the same millisecond compares greater-or-equal.
"""

from datetime import datetime, timedelta, timezone
from typing import Union

DISCORD_EPOCH_MS = 1420070400000  # 2015-01-01T00:00:00Z
CURSOR_SHIFT = 22

Cursor = Union[str, int]


def _as_utc(t: datetime) -> datetime:
    if t.tzinfo is None:
        return t.replace(tzinfo=timezone.utc)
    return t.astimezone(timezone.utc)


def _epoch_ms(t: datetime) -> int:
    delta = _as_utc(t) - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def time_to_cursor(t: datetime) -> str:
    return str((_epoch_ms(t) - DISCORD_EPOCH_MS) << CURSOR_SHIFT)


def cursor_after(t: datetime) -> str:
    """Largest cursor that still falls inside the millisecond of ``t``."""
    return str(((_epoch_ms(t) - DISCORD_EPOCH_MS + 1) << CURSOR_SHIFT) - 1)


def cursor_value(c: Cursor) -> int:
    return int(c)


def cursor_to_time(c: Cursor) -> datetime:
    ms = (cursor_value(c) >> CURSOR_SHIFT) + DISCORD_EPOCH_MS
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=ms)
