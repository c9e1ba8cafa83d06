# chatdigest/config.py
from datetime import timedelta
from pathlib import Path

from pydantic_settings import BaseSettings

DAY_MS = 24 * 60 * 60 * 1000


class Settings(BaseSettings):
    # Database
    db_type: str = "sqlite"
    db_username: str = ""
    db_password: str = ""
    db_host: str = "localhost"
    db_name: str = "chatdigest"
    storage_path: str = "storage"

    # Browser session
    platform_url: str = "https://discord.com"
    headless: bool = False
    auth_check_timeout_seconds: float = 10.0
    navigation_timeout_seconds: float = 30.0
    element_timeout_seconds: float = 5.0
    scroll_pause_seconds: float = 1.0   # DOM settling between scroll steps
    stall_scroll_limit: int = 3         # Empty "load older" rounds before giving up
    max_messages_per_scrape: int = 2000

    # Sync
    max_sync_retries: int = 3
    retry_delay_seconds: float = 1.0
    sync_staleness_seconds: int = 60 * 60

    # Summarization
    summary_window_capacity: int = 200
    min_messages_to_summarize: int = 10
    llm_model_id: str = "gpt-4o-mini"
    llm_base_url: str | None = None
    llm_api_key: str = "no-need"

    # Retention job
    retention_window_ms: int = 3 * DAY_MS
    poll_interval_ms: int = 5 * 60 * 1000
    run_retention_job: bool = True

    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        if self.db_type == "sqlite":
            return f"sqlite:///{Path(self.storage_path) / f'{self.db_name}.db'}"
        return f"{self.db_type}://{self.db_username}:{self.db_password}@{self.db_host}/{self.db_name}"

    @property
    def browser_profile_dir(self) -> Path:
        return Path(self.storage_path) / "chromium"

    @property
    def retention_window(self) -> timedelta:
        return timedelta(milliseconds=self.retention_window_ms)

    @property
    def sync_staleness(self) -> timedelta:
        return timedelta(seconds=self.sync_staleness_seconds)

    @property
    def poll_interval(self) -> timedelta:
        return timedelta(milliseconds=self.poll_interval_ms)

    class Config:
        env_file = ".env"


settings = Settings()
