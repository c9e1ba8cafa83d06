# debug_crawler.py
"""
Debugging script for the chat crawler.
Checks the login state of the browser profile, what the crawler can see and
what is already stored, without writing anything.
"""

import os
import sys
import asyncio
from datetime import datetime, timedelta, timezone

# Add the current directory to Python path
sys.path.insert(0, os.getcwd())

from chatdigest.config import settings
from chatdigest.cursor import time_to_cursor
from chatdigest.database import create_session_factory
from chatdigest.errors import AuthError
from chatdigest.services.crawler import Crawler
from chatdigest.services.discord_web import DiscordWebDriver
from chatdigest.services.session import SessionResource
from chatdigest.services.store import Store


def check_configuration():
    """Print the settings the crawler will run with."""
    print("=== CHECKING CONFIGURATION ===")
    print(f"🌐 Platform URL: {settings.platform_url}")
    print(f"🗂️  Browser profile: {settings.browser_profile_dir}")
    print(f"🗄️  Database URL: {settings.database_url}")
    print(f"⏳ Retention window: {settings.retention_window}")
    print(f"🤖 LLM model: {settings.llm_model_id} @ {settings.llm_base_url or 'default endpoint'}")


def debug_database_state(store: Store):
    """Check the current state of the database."""
    print("\n=== DEBUGGING DATABASE STATE ===")

    servers = store.list_servers()
    if not servers:
        print("  ⚠️  No servers found!")
    for server in servers:
        print(f"\n📋 {server.name} ({server.id})")
        for channel in store.list_channels(server_id=server.id):
            count = store.count_messages(server.id, channel.id)
            latest = store.latest_message_id(server.id, channel.id)
            summary = store.latest_summary(server.id, channel.id)
            print(f"  - #{channel.name}: {count} messages, latest id = {latest}, synced_at = {channel.synced_at}")
            if summary:
                print(f"    📝 last summary: {summary.num_messages} messages, "
                      f"{summary.from_timestamp} -> {summary.to_timestamp}")


async def debug_session(crawler: Crawler, session: SessionResource):
    """Check the login state and list what the browser can reach."""
    print("\n=== DEBUGGING BROWSER SESSION ===")
    try:
        await session.ensure_authenticated()
    except AuthError as e:
        print(f"  ❌ {e}")
        return
    print("  ✅ Session is logged in")

    servers = await crawler.list_servers()
    print(f"  📊 Servers visible: {len(servers)}")
    for server in servers:
        channels = await crawler.list_channels(server.id)
        print(f"\n🔍 {server.name} ({server.id}): {len(channels)} channels")
        for channel in channels[:10]:
            print(f"    - #{channel.name} ({channel.id})")
        if len(channels) > 10:
            print(f"    ... and {len(channels) - 10} more")


async def test_message_detection(crawler: Crawler, store: Store, server_id: str, channel_id: str):
    """Scrape one channel and report how many rows would be new."""
    print(f"\n=== TESTING MESSAGE DETECTION FOR {server_id}/{channel_id} ===")
    horizon = datetime.now(timezone.utc) - settings.retention_window
    since = store.latest_message_id(server_id, channel_id) or time_to_cursor(horizon)
    print(f"  📍 Reading messages after cursor {since}")

    messages = await crawler.list_messages(server_id, channel_id, since, settings.retention_window)
    print(f"  📨 Messages found: {len(messages)}")
    new = [m for m in messages if store.get_message(m.id) is None]
    print(f"  ✨ Messages that would be added: {len(new)}")
    for message in new[:5]:
        preview = message.content[:50] + "..." if len(message.content) > 50 else message.content
        print(f"    - {message.timestamp} {message.author}: '{preview}'")


async def main():
    print("🐛 CHAT CRAWLER DEBUGGER")
    print("=" * 50)

    check_configuration()

    store = Store(create_session_factory(settings.database_url))
    debug_database_state(store)

    async with SessionResource(DiscordWebDriver(settings), settings.auth_check_timeout_seconds) as session:
        crawler = Crawler(
            session,
            scroll_pause_seconds=settings.scroll_pause_seconds,
            stall_scroll_limit=settings.stall_scroll_limit,
            max_messages=settings.max_messages_per_scrape,
        )
        await debug_session(crawler, session)
        if len(sys.argv) == 3:
            await test_message_detection(crawler, store, sys.argv[1], sys.argv[2])

    print("\n" + "=" * 50)
    print("🎯 DEBUGGING COMPLETE")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nDebugging interrupted by user.")
