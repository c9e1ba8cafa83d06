import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from chatdigest.errors import CrawlError, NavigationTimeout, NotFound
from chatdigest.retry import RetryPolicy
from chatdigest.services.session import RawChannel, RawServer

from conftest import make_history


async def _seed_channels(engine, driver, names=("A", "B", "C")):
    driver.servers = [RawServer("s1", "one")]
    driver.channels["s1"] = [RawChannel(name, name.lower()) for name in names]
    await engine.sync.sync_servers()
    await engine.sync.sync_channels("s1")


@pytest.mark.asyncio
async def test_sync_servers_and_channels(engine, driver, store):
    await _seed_channels(engine, driver)

    assert [s.id for s in store.list_servers()] == ["s1"]
    assert sorted(c.id for c in store.list_channels(server_id="s1")) == ["A", "B", "C"]
    assert not engine.sync.needs_sync_servers()
    assert engine.sync.needs_sync_servers(now=datetime.now(timezone.utc) + timedelta(hours=2))


@pytest.mark.asyncio
async def test_resync_renames_the_channel_in_place(engine, driver, store):
    driver.servers = [RawServer("s1", "one")]
    driver.channels["s1"] = [RawChannel("c1", "general")]
    await engine.sync.sync_channels("s1")
    driver.channels["s1"] = [RawChannel("c1", "general-chat")]
    await engine.sync.sync_channels("s1")

    channels = store.list_channels(server_id="s1")
    assert [(c.id, c.name) for c in channels] == [("c1", "general-chat")]


@pytest.mark.asyncio
async def test_partial_failure_does_not_stop_other_channels(engine, driver, store):
    await _seed_channels(engine, driver)
    for hours, name in enumerate(("A", "B", "C"), start=10):
        start = datetime.now(timezone.utc) - timedelta(hours=hours)
        driver.history[("s1", name)] = make_history(20, start=start)
    driver.failures[("s1", "B")] = CrawlError("channel list did not render")

    report = await engine.sync.sync_messages_for_server("s1")

    assert report.channels_synced == ["A", "C"]
    assert [f.channel_id for f in report.failures] == ["B"]
    assert "did not render" in report.failures[0].reason
    assert store.count_messages("s1", "A") == 20
    assert store.count_messages("s1", "B") == 0
    assert store.count_messages("s1", "C") == 20


@pytest.mark.asyncio
async def test_timeouts_are_retried_up_to_the_limit(engine, driver):
    await _seed_channels(engine, driver, names=("A",))
    driver.failures[("s1", "A")] = NavigationTimeout("Timed out opening channel A")

    report = await engine.sync.sync_messages_for_server("s1")

    assert driver.open_calls == [("s1", "A")] * 3
    assert report.failures[0].channel_id == "A"


@pytest.mark.asyncio
async def test_retry_recovers_from_a_transient_failure():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 2:
            raise NavigationTimeout("slow page")
        return "ok"

    assert await RetryPolicy(max_attempts=3, delay_seconds=0).run(flaky) == "ok"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_second_sync_only_adds_newer_messages(engine, driver, store):
    await _seed_channels(engine, driver, names=("A",))
    history = make_history(60)
    driver.history[("s1", "A")] = history[:40]
    assert await engine.sync.sync_messages("s1", "A") == 40

    driver.history[("s1", "A")] = history
    await engine.sync.sync_messages("s1", "A")

    assert store.count_messages("s1", "A") == 60
    assert store.latest_message_id("s1", "A") == history[-1].id


@pytest.mark.asyncio
async def test_unknown_channel_is_not_found(engine, driver):
    await _seed_channels(engine, driver, names=("A",))

    with pytest.raises(NotFound):
        await engine.sync.sync_messages_for_server("s1", "missing")
    with pytest.raises(NotFound):
        await engine.sync.post_message("s1", "missing", "hi")


@pytest.mark.asyncio
async def test_concurrent_channel_syncs_never_share_the_session(engine, driver):
    await _seed_channels(engine, driver, names=("A", "B"))
    for hours, name in enumerate(("A", "B"), start=10):
        start = datetime.now(timezone.utc) - timedelta(hours=hours)
        driver.history[("s1", name)] = make_history(10, start=start)

    active = []
    overlaps = []
    original = driver.open_channel

    async def tracking_open(server_id, channel_id):
        active.append(channel_id)
        if len(active) > 1:
            overlaps.append(tuple(active))
        await asyncio.sleep(0)
        await original(server_id, channel_id)

    driver.open_channel = tracking_open
    original_list = engine.crawler.list_messages

    async def list_and_release(*args, **kwargs):
        try:
            return await original_list(*args, **kwargs)
        finally:
            active.pop()

    engine.crawler.list_messages = list_and_release

    await asyncio.gather(engine.sync.sync_messages("s1", "A"), engine.sync.sync_messages("s1", "B"))

    assert overlaps == []


@pytest.mark.asyncio
async def test_post_message_goes_through_the_session(engine, driver):
    await _seed_channels(engine, driver, names=("A",))

    await engine.sync.post_message("s1", "A", "hello there")

    assert driver.sent == [("s1", "A", "hello there")]


@pytest.mark.asyncio
async def test_syncs_past_the_cap_leave_no_gap(engine, driver, store):
    await _seed_channels(engine, driver, names=("A",))
    engine.crawler.max_messages = 120
    history = make_history(400)
    driver.history[("s1", "A")] = history[:40]
    await engine.sync.sync_messages("s1", "A")

    driver.history[("s1", "A")] = history
    assert await engine.sync.sync_messages("s1", "A") == 120
    assert await engine.sync.sync_messages("s1", "A") == 120

    stored = store.messages_after("s1", "A", "0", limit=1000)
    assert [m.id for m in stored] == [raw.id for raw in history[:280]]

    await engine.sync.sync_messages("s1", "A")
    assert store.count_messages("s1", "A") == 400
