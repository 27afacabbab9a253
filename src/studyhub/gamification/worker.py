"""Badge evaluation arq worker.

Consumes the activity stream that the ledger appends to after
point-earning activity, and runs the badge evaluator for each account.

The arq cron job drains the stream every ten seconds and once at startup.

Start with: arq studyhub.workers.settings.WorkerSettings
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron

from studyhub.config import get_settings
from studyhub.database import close_db, get_session_factory, init_db
from studyhub.exceptions import AccountNotFoundError
from studyhub.gamification.badge_evaluator import BadgeEvaluator

logger = logging.getLogger(__name__)


async def gamification_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections and the consumer group."""
    settings = get_settings()
    await init_db(settings.database_url)

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )

    await ensure_consumer_group(redis_client)

    ctx["stream_redis"] = redis_client
    logger.info("Badge worker started")


async def gamification_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    redis_client: aioredis.Redis | None = ctx.get("stream_redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Badge worker shut down")


async def process_activity(redis_client: object | None, data: dict) -> list[str]:
    """Evaluate and award badges for the account named in one stream entry."""
    try:
        account_id = int(data["account_id"])
    except (KeyError, TypeError, ValueError):
        logger.warning("Dropping malformed activity event: %r", data)
        return []

    async with get_session_factory()() as db:
        try:
            awarded = await BadgeEvaluator(db, redis_client).run(account_id)
        except AccountNotFoundError:
            logger.info("Account %s no longer exists, skipping badge evaluation", account_id)
            return []

    if awarded:
        logger.info("Awarded badges %s to account %s (%s)", awarded, account_id, data.get("reason"))
    return awarded


async def ensure_consumer_group(redis_client: aioredis.Redis) -> None:
    """Create the evaluator consumer group (and the stream) if missing."""
    settings = get_settings()
    try:
        await redis_client.xgroup_create(
            settings.activity_stream, settings.activity_consumer_group, id="0", mkstream=True,
        )
    except aioredis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise


async def consume_batch(redis_client: aioredis.Redis) -> int:
    """Read one batch of new stream entries, evaluate and ack each.

    Returns the number of entries read. A failed entry is logged and left
    pending for inspection with XPENDING.
    """
    settings = get_settings()
    stream = settings.activity_stream
    group = settings.activity_consumer_group

    events = await redis_client.xreadgroup(
        groupname=group,
        consumername=settings.activity_consumer_name,
        streams={stream: ">"},
        count=settings.activity_batch_size,
    )

    read = 0
    for _stream_name, messages in events or []:
        for msg_id, raw_data in messages:
            read += 1
            try:
                await process_activity(redis_client, dict(raw_data))
                await redis_client.xack(stream, group, msg_id)
            except Exception:
                logger.exception("Failed to process %s from %s", msg_id, stream)
    return read


async def drain_activity_events(ctx: dict) -> int:  # type: ignore[type-arg]
    """Periodic task: work through everything queued on the activity stream."""
    redis_client: aioredis.Redis = ctx["stream_redis"]
    total = 0
    while True:
        try:
            read = await consume_batch(redis_client)
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            break
        if not read:
            break
        total += read

    if total:
        logger.info("Processed %d activity events", total)
    return total


class GamificationWorkerSettings:
    """arq worker settings for the badge evaluator."""

    functions = [drain_activity_events]
    cron_jobs = [
        cron(drain_activity_events, second={0, 10, 20, 30, 40, 50}, run_at_startup=True),
    ]
    on_startup = gamification_startup
    on_shutdown = gamification_shutdown
    max_jobs = 2
    job_timeout = 300
    allow_abort_jobs = True
