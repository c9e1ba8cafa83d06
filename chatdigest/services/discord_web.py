# chatdigest/services/discord_web.py
"""Playwright implementation of the page driver for the Discord web client."""

import logging
from typing import Awaitable, List, Optional, TypeVar

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page, Playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from chatdigest.config import Settings
from chatdigest.errors import CrawlError, NavigationTimeout
from chatdigest.services.session import RawChannel, RawMessage, RawServer

logger = logging.getLogger(__name__)

T = TypeVar("T")

ONLINE_MARKER = 'rect[mask="url(#svg-mask-status-online)"]'
CHANNEL_LIST = "#channels"
MESSAGE_SCROLLER = 'main[class*="chatContent"] div[class*="scroller"][role="group"][data-jump-section="global"]'
MESSAGE_TEXTBOX = 'main[class*="chatContent"] div[role="textbox"]'

READ_SERVERS_JS = """
() => Array.from(document.querySelectorAll('div[class*="blobContainer"][data-dnd-name]')).map(blob => {
    const item = blob.querySelector('div[role="treeitem"][data-list-item-id]');
    const listId = item ? item.getAttribute('data-list-item-id') : '';
    return { id: (listId || '').split('___').pop(), name: blob.getAttribute('data-dnd-name') || '' };
})
"""

READ_CHANNELS_JS = """
(serverId) => Array.from(document.querySelectorAll('li a[href*="/channels/' + serverId + '/"]')).map(a => ({
    id: a.getAttribute('href').split('/').pop(),
    name: (a.textContent || '').trim(),
}))
"""

SCROLL_CHANNELS_JS = """
(el) => {
    const before = el.scrollTop;
    el.scrollTo({ top: Math.min(el.scrollTop + el.offsetHeight, el.scrollHeight) });
    return el.scrollTop > before;
}
"""

READ_MESSAGES_JS = """
(channelId) => Array.from(document.querySelectorAll('li[id^="chat-messages-' + channelId + '-"]')).map(li => {
    const id = li.id.split('-')[3];
    const name = li.querySelector('#message-username-' + id);
    const avatar = li.querySelector('img[class*="avatar"]');
    const avatarMatch = avatar ? (avatar.getAttribute('src') || '').match(/avatars\\/(\\d+)\\//) : null;
    const time = li.querySelector('#message-timestamp-' + id);
    const content = li.querySelector('#message-content-' + id);
    const replyContent = li.querySelector('[id^="message-reply-context-"] [id^="message-content-"]');
    return {
        id: id,
        author: name ? (name.getAttribute('data-text') || name.textContent || '').trim() : '',
        author_id: avatarMatch ? avatarMatch[1] : '',
        content: content ? (content.textContent || '') : '',
        timestamp: time ? (time.getAttribute('datetime') || '') : '',
        reply_to_id: replyContent ? replyContent.id.split('-').pop() : null,
        is_bot: !!li.querySelector('[class*="botTag"]'),
        is_system: !!li.querySelector('[class*="systemMessage"]'),
    };
})
"""


class DiscordWebDriver:
    """Drives one persistent Chromium profile logged into the Discord web client."""

    def __init__(self, settings: Settings):
        self.base_url = settings.platform_url.rstrip("/")
        self.profile_dir = settings.browser_profile_dir
        self.headless = settings.headless
        self.navigation_timeout_ms = settings.navigation_timeout_seconds * 1000
        self.element_timeout_ms = settings.element_timeout_seconds * 1000
        self.scroll_pause_ms = settings.scroll_pause_seconds * 1000
        self._playwright: Optional[Playwright] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._channel_id: Optional[str] = None

    @property
    def page(self) -> Page:
        if not self._page:
            raise CrawlError("Browser session not started.")
        return self._page

    async def _step(self, description: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"{description} timed out") from e
        except PlaywrightError as e:
            raise CrawlError(f"{description} failed: {e.message}") from e

    async def start(self) -> None:
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        self._playwright = await async_playwright().start()
        self._context = await self._playwright.chromium.launch_persistent_context(
            str(self.profile_dir), headless=self.headless
        )
        self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()
        self._page.set_default_timeout(self.navigation_timeout_ms)
        logger.info(f"Browser session started with profile {self.profile_dir}")

    async def close(self) -> None:
        if self._context:
            await self._context.close()
        if self._playwright:
            await self._playwright.stop()
        self._context = None
        self._page = None
        self._playwright = None

    async def is_authenticated(self, timeout: float) -> bool:
        if not self.page.url.startswith(self.base_url):
            await self._step("Opening app", self.page.goto(f"{self.base_url}/channels/@me", wait_until="domcontentloaded"))
        try:
            await self.page.wait_for_selector(ONLINE_MARKER, timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            return False

    async def open_login(self) -> None:
        await self._step("Opening login page", self.page.goto(f"{self.base_url}/login", wait_until="networkidle"))

    async def read_servers(self) -> List[RawServer]:
        await self._step("Opening server list", self.page.goto(f"{self.base_url}/channels/@me", wait_until="networkidle"))
        rows = await self._step("Reading server list", self.page.evaluate(READ_SERVERS_JS))
        return [RawServer(id=row["id"], name=row["name"]) for row in rows if row["id"].isdigit()]

    async def read_channels(self, server_id: str) -> List[RawChannel]:
        await self._step(f"Opening server {server_id}", self.page.goto(f"{self.base_url}/channels/{server_id}"))
        scroller = await self._step(
            "Waiting for channel list",
            self.page.wait_for_selector(CHANNEL_LIST, timeout=self.navigation_timeout_ms),
        )
        await self._step("Scrolling channel list", scroller.evaluate("(el) => el.scrollTo({ top: 0 })"))
        channels: List[RawChannel] = []
        # The sidebar is virtualized, so collect while paging down until it stops moving
        while True:
            rows = await self._step("Reading channel list", self.page.evaluate(READ_CHANNELS_JS, server_id))
            channels.extend(RawChannel(id=row["id"], name=row["name"]) for row in rows)
            moved = await self._step("Scrolling channel list", scroller.evaluate(SCROLL_CHANNELS_JS))
            if not moved:
                break
            await self.page.wait_for_timeout(self.scroll_pause_ms)
        return channels

    async def open_channel(self, server_id: str, channel_id: str) -> None:
        await self._step(
            f"Opening channel {channel_id}",
            self.page.goto(f"{self.base_url}/channels/{server_id}/{channel_id}", wait_until="domcontentloaded"),
        )
        await self._step(
            "Waiting for chat content",
            self.page.wait_for_selector(MESSAGE_SCROLLER, timeout=self.element_timeout_ms),
        )
        await self._step(
            "Scrolling to newest messages",
            self.page.eval_on_selector(MESSAGE_SCROLLER, "(el) => el.scrollTo({ top: el.scrollHeight })"),
        )
        self._channel_id = channel_id

    async def read_visible_messages(self) -> List[RawMessage]:
        if not self._channel_id:
            raise CrawlError("No channel is open.")
        rows = await self._step("Reading messages", self.page.evaluate(READ_MESSAGES_JS, self._channel_id))
        return [RawMessage(**row) for row in rows if row["id"]]

    async def load_older(self) -> None:
        await self._step(
            "Loading older messages",
            self.page.eval_on_selector(MESSAGE_SCROLLER, "(el) => el.scrollTo({ top: 0 })"),
        )

    async def send_message(self, content: str) -> None:
        textbox = await self._step(
            "Waiting for message box",
            self.page.wait_for_selector(MESSAGE_TEXTBOX, timeout=self.element_timeout_ms),
        )
        await self._step("Typing message", textbox.click())
        await self._step("Typing message", self.page.keyboard.insert_text(content))
        await self._step("Sending message", self.page.keyboard.press("Enter"))
