# chatdigest/engine.py
import logging
from typing import Optional

from chatdigest.config import Settings
from chatdigest.controllers.retention_controller import RetentionJob
from chatdigest.controllers.summary_controller import Summarizer
from chatdigest.controllers.sync_controller import EngineLocks, SyncOrchestrator
from chatdigest.database import create_session_factory
from chatdigest.retry import RetryPolicy
from chatdigest.services.crawler import Crawler
from chatdigest.services.llm import OpenAIChatGenerator, TextGenerator
from chatdigest.services.session import PageDriver, SessionResource
from chatdigest.services.store import Store

logger = logging.getLogger(__name__)


class Engine:
    """Owns the browser session, the locks and every component that shares them."""

    def __init__(self, settings: Settings, store: Store, driver: PageDriver, generator: TextGenerator):
        self.settings = settings
        self.store = store
        self.locks = EngineLocks()
        self.session = SessionResource(driver, auth_check_timeout=settings.auth_check_timeout_seconds)
        self.crawler = Crawler(
            self.session,
            scroll_pause_seconds=settings.scroll_pause_seconds,
            stall_scroll_limit=settings.stall_scroll_limit,
            max_messages=settings.max_messages_per_scrape,
        )
        self.sync = SyncOrchestrator(
            self.crawler,
            store,
            self.locks,
            RetryPolicy(max_attempts=settings.max_sync_retries, delay_seconds=settings.retry_delay_seconds),
            retention_window=settings.retention_window,
            staleness=settings.sync_staleness,
        )
        self.summarizer = Summarizer(
            store,
            generator,
            self.locks,
            retention_window=settings.retention_window,
            capacity=settings.summary_window_capacity,
            min_messages=settings.min_messages_to_summarize,
        )
        self.retention = RetentionJob(
            store,
            self.sync,
            self.summarizer,
            retention_window=settings.retention_window,
            poll_interval=settings.poll_interval,
        )

    @classmethod
    def from_settings(cls, settings: Settings, generator: Optional[TextGenerator] = None) -> "Engine":
        from chatdigest.services.discord_web import DiscordWebDriver

        store = Store(create_session_factory(settings.database_url))
        if generator is None:
            generator = OpenAIChatGenerator(
                model=settings.llm_model_id,
                base_url=settings.llm_base_url,
                api_key=settings.llm_api_key,
            )
        return cls(settings, store, DiscordWebDriver(settings), generator)

    async def start(self) -> None:
        await self.session.start()
        if self.settings.run_retention_job:
            self.retention.start()
        logger.info("Engine started")

    async def stop(self) -> None:
        await self.retention.stop()
        await self.session.close()
        logger.info("Engine stopped")

    async def __aenter__(self) -> "Engine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
