"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from chatdigest.config import Settings
from chatdigest.cursor import time_to_cursor
from chatdigest.database import create_session_factory
from chatdigest.engine import Engine
from chatdigest.services.session import RawChannel, RawMessage, RawServer
from chatdigest.services.store import Store


def make_id(timestamp: datetime, seq: int = 0) -> str:
    """A snowflake for ``timestamp`` with ``seq`` in the low bits."""
    return str(int(time_to_cursor(timestamp)) + seq)


def make_history(count: int, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=10),
                 authors: Tuple[str, ...] = ("alice", "bob", "carol")) -> List[RawMessage]:
    """``count`` raw messages, oldest first, one ``step`` apart."""
    start = start or datetime.now(timezone.utc) - timedelta(hours=12)
    history = []
    for i in range(count):
        ts = start + step * i
        author = authors[i % len(authors)]
        history.append(RawMessage(
            id=make_id(ts),
            author_id=f"{author}-id",
            author=author,
            content=f"message {i}",
            timestamp=ts.isoformat(),
        ))
    return history


class FakeDriver:
    """A scripted PageDriver.

    ``history[(server_id, channel_id)]`` is the channel's messages oldest first. The
    visible window is the newest ``page_size`` messages, growing by ``page_size``
    on each ``load_older``.
    """

    def __init__(self, page_size: int = 50):
        self.page_size = page_size
        self.authenticated = True
        self.servers: List[RawServer] = []
        self.channels: Dict[str, List[RawChannel]] = {}
        self.history: Dict[Tuple[str, str], List[RawMessage]] = {}
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.sent: List[Tuple[str, str, str]] = []
        self.auth_checks = 0
        self.login_calls = 0
        self.open_calls: List[Tuple[str, str]] = []
        self.load_calls = 0
        self.started = False
        self._current: Optional[Tuple[str, str]] = None
        self._visible = 0

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.started = False

    async def is_authenticated(self, timeout: float) -> bool:
        self.auth_checks += 1
        return self.authenticated

    async def open_login(self) -> None:
        self.login_calls += 1

    async def read_servers(self) -> List[RawServer]:
        return list(self.servers)

    async def read_channels(self, server_id: str) -> List[RawChannel]:
        return list(self.channels.get(server_id, []))

    async def open_channel(self, server_id: str, channel_id: str) -> None:
        key = (server_id, channel_id)
        self.open_calls.append(key)
        if key in self.failures:
            raise self.failures[key]
        self._current = key
        self._visible = self.page_size

    async def read_visible_messages(self) -> List[RawMessage]:
        history = self.history.get(self._current, [])
        return history[-self._visible:] if self._visible else []

    async def load_older(self) -> None:
        self.load_calls += 1
        self._visible += self.page_size

    async def send_message(self, content: str) -> None:
        self.sent.append((self._current[0], self._current[1], content))


class DummyLLM:
    """Returns a one-topic summary naming how many messages it was given."""

    def __init__(self, reply: Optional[str] = None):
        self.reply = reply
        self.calls: List[str] = []

    async def generate(self, system: str, messages) -> str:
        prompt = messages[-1]["content"]
        self.calls.append(prompt)
        if self.reply is not None:
            return self.reply
        count = sum(1 for line in prompt.splitlines() if line.startswith("- #"))
        return json.dumps([{
            "topic": "general",
            "creator": "alice",
            "top_active_users": ["alice", "bob"],
            "number_of_messages": count,
            "number_of_users": 3,
            "summary": f"{count} messages",
        }])


@pytest.fixture
def settings(tmp_path):
    return Settings(
        storage_path=str(tmp_path),
        scroll_pause_seconds=0,
        retry_delay_seconds=0,
        auth_check_timeout_seconds=0.1,
        run_retention_job=False,
    )


@pytest.fixture
def store(tmp_path):
    return Store(create_session_factory(f"sqlite:///{tmp_path / 'test.db'}"))


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def llm():
    return DummyLLM()


@pytest.fixture
def engine(settings, store, driver, llm):
    return Engine(settings, store, driver, llm)
