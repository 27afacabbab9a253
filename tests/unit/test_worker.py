"""Badge worker: one stream entry drives one evaluation."""

from __future__ import annotations

import pytest
import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import FakeRedis, add_uploads, make_account
from studyhub.gamification.badge_service import get_badges_for_account
from studyhub.gamification.worker import (
    GamificationWorkerSettings,
    consume_batch,
    drain_activity_events,
    ensure_consumer_group,
    process_activity,
)


class _StreamRedis(FakeRedis):
    """Serves queued entries to XREADGROUP and records XACKs."""

    def __init__(self, entries: list[dict]) -> None:
        super().__init__()
        self.pending = [(f"{i + 1}-0", fields) for i, fields in enumerate(entries)]
        self.acked: list[str] = []
        self.groups: list[tuple[str, str]] = []

    async def xreadgroup(self, groupname, consumername, streams, count=None, block=None):
        [stream] = streams
        batch, self.pending = self.pending[:count], self.pending[count:]
        return [[stream, batch]] if batch else []

    async def xack(self, stream, group, *ids):
        self.acked.extend(ids)
        return len(ids)

    async def xgroup_create(self, stream, group, id="$", mkstream=False):
        if (stream, group) in self.groups:
            raise aioredis.ResponseError("BUSYGROUP Consumer Group name already exists")
        self.groups.append((stream, group))
        return True


@pytest.mark.asyncio
async def test_process_activity_awards_badges(db_session: AsyncSession, fake_redis):
    account_id = await make_account(db_session, "alice")
    await add_uploads(db_session, account_id, 1)

    awarded = await process_activity(fake_redis, {"account_id": str(account_id), "reason": "material_upload"})

    assert set(awarded) == {"pioneer", "first_upload"}
    codes = {b["code"] for b in await get_badges_for_account(db_session, account_id)}
    assert codes == {"pioneer", "first_upload"}


@pytest.mark.asyncio
async def test_process_activity_is_idempotent(db_session: AsyncSession):
    account_id = await make_account(db_session, "alice")
    event = {"account_id": str(account_id), "reason": "comment"}

    assert await process_activity(None, event) == ["pioneer"]
    assert await process_activity(None, event) == []


@pytest.mark.asyncio
async def test_deleted_account_is_skipped(database):
    assert await process_activity(None, {"account_id": "777", "reason": "comment"}) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("event", [{}, {"account_id": "abc"}, {"reason": "comment"}])
async def test_malformed_events_are_dropped(database, event):
    assert await process_activity(None, event) == []


@pytest.mark.asyncio
async def test_consume_batch_evaluates_and_acks(db_session: AsyncSession):
    account_id = await make_account(db_session, "alice")
    await add_uploads(db_session, account_id, 1)
    client = _StreamRedis([
        {"account_id": str(account_id), "reason": "material_upload"},
        {"account_id": "oops", "reason": "comment"},
    ])

    assert await consume_batch(client) == 2

    assert client.acked == ["1-0", "2-0"]
    assert client.channels() == ["pubsub:badge_earned", "pubsub:badge_earned"]
    codes = {b["code"] for b in await get_badges_for_account(db_session, account_id)}
    assert codes == {"pioneer", "first_upload"}


@pytest.mark.asyncio
async def test_drain_reads_until_stream_is_empty(db_session: AsyncSession, monkeypatch):
    monkeypatch.setenv("STUDYHUB_ACTIVITY_BATCH_SIZE", "2")
    from studyhub.config import get_settings

    get_settings.cache_clear()
    account_id = await make_account(db_session, "alice")
    client = _StreamRedis([{"account_id": str(account_id), "reason": "comment"}] * 5)

    assert await drain_activity_events({"stream_redis": client}) == 5
    assert client.pending == []
    assert len(client.acked) == 5


@pytest.mark.asyncio
async def test_drain_on_empty_stream(database):
    assert await drain_activity_events({"stream_redis": _StreamRedis([])}) == 0


@pytest.mark.asyncio
async def test_consumer_group_creation_is_idempotent(database):
    client = _StreamRedis([])
    await ensure_consumer_group(client)
    await ensure_consumer_group(client)
    assert client.groups == [("gamification:activity", "badge-evaluators")]


def test_worker_settings_schedule_the_drain():
    [job] = GamificationWorkerSettings.cron_jobs
    assert job.coroutine is drain_activity_events
    assert job.run_at_startup is True
    assert drain_activity_events in GamificationWorkerSettings.functions
