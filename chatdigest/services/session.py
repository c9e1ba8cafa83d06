# chatdigest/services/session.py
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from chatdigest.errors import AuthError

logger = logging.getLogger(__name__)


@dataclass
class RawServer:
    id: str
    name: str


@dataclass
class RawChannel:
    id: str
    name: str


@dataclass
class RawMessage:
    """A message as read from markup, before normalization.

    ``author_id``/``author`` are empty for grouped continuation messages.
    ``timestamp`` is the raw ISO string from the markup, empty when absent.
    """

    id: str
    author_id: str = ""
    author: str = ""
    content: str = ""
    timestamp: str = ""
    reply_to_id: Optional[str] = None
    is_bot: bool = False
    is_system: bool = False


class PageDriver(Protocol):
    """Browser-automation capability the session is built on.

    Every method is a blocking-with-timeout step; exceeding the timeout raises
    ``NavigationTimeout``.
    """

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def is_authenticated(self, timeout: float) -> bool: ...

    async def open_login(self) -> None: ...

    async def read_servers(self) -> List[RawServer]: ...

    async def read_channels(self, server_id: str) -> List[RawChannel]: ...

    async def open_channel(self, server_id: str, channel_id: str) -> None: ...

    async def read_visible_messages(self) -> List[RawMessage]: ...

    async def load_older(self) -> None: ...

    async def send_message(self, content: str) -> None: ...


class SessionResource:
    """The single logged-in browser session shared by every scrape."""

    def __init__(self, driver: PageDriver, auth_check_timeout: float = 10.0):
        self.driver = driver
        self.auth_check_timeout = auth_check_timeout
        self._started = False

    async def start(self) -> None:
        if not self._started:
            await self.driver.start()
            self._started = True

    async def close(self) -> None:
        if self._started:
            await self.driver.close()
            self._started = False

    async def ensure_authenticated(self) -> None:
        """Check for the logged-in marker, checking once more after opening the login page."""
        await self.start()
        if await self.driver.is_authenticated(self.auth_check_timeout):
            return
        logger.info("Session not authenticated, reloading login page and probing again")
        await self.driver.open_login()
        if await self.driver.is_authenticated(self.auth_check_timeout):
            return
        raise AuthError("browser session is not logged in; sign in through the session profile and retry")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
