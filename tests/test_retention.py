import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from chatdigest.errors import AuthError
from chatdigest.schemas import ChannelData, MessageData
from chatdigest.services.crawler import normalize_messages
from chatdigest.services.session import RawChannel, RawServer

from conftest import make_history, make_id

NOW = datetime.now(timezone.utc)


def _old_rows(store):
    ts = NOW - timedelta(days=5)
    store.upsert_messages([MessageData(id=make_id(ts), server_id="s1", channel_id="c1", timestamp=ts)])
    store.insert_summary("s1", "c1", "stale", 200, ts, ts + timedelta(hours=1))


@pytest.mark.asyncio
async def test_run_once_purges_syncs_and_summarizes(engine, driver, store):
    _old_rows(store)
    driver.servers = [RawServer("s1", "one")]
    driver.channels["s1"] = [RawChannel("c1", "general")]
    driver.history[("s1", "c1")] = make_history(20)

    await engine.retention.run_once()

    assert store.count_messages("s1", "c1") == 20
    summaries = store.list_summaries("s1", "c1")
    assert [s.num_messages for s in summaries] == [20]


@pytest.mark.asyncio
async def test_a_failing_phase_does_not_stop_the_rest(engine, driver, store):
    _old_rows(store)
    store.upsert_channels([ChannelData(id="c1", server_id="s1", name="general")])
    store.upsert_messages(normalize_messages("s1", "c1", make_history(15)))
    driver.authenticated = False

    await engine.retention.run_once()

    # Sync failed on auth, the purges and the summarizer still ran
    assert store.get_message(make_id(NOW - timedelta(days=5))) is None
    summaries = store.list_summaries("s1", "c1")
    assert [s.num_messages for s in summaries] == [15]


@pytest.mark.asyncio
async def test_sync_all_stops_on_auth_error(engine, driver, store):
    driver.authenticated = False

    with pytest.raises(AuthError):
        await engine.retention.sync_all()


@pytest.mark.asyncio
async def test_sync_all_skips_fresh_listings(engine, driver, store):
    driver.servers = [RawServer("s1", "one")]
    driver.channels["s1"] = [RawChannel("c1", "general")]
    await engine.sync.sync_servers()
    await engine.sync.sync_channels("s1")
    driver.servers = [RawServer("s2", "two")]

    await engine.retention.sync_all()

    assert [s.id for s in store.list_servers()] == ["s1"]


@pytest.mark.asyncio
async def test_start_and_stop(engine, store):
    task = engine.retention.start()
    assert engine.retention.start() is task
    await asyncio.sleep(0)

    await engine.retention.stop()

    assert task.done()
