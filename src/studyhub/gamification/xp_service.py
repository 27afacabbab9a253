"""XP ledger: point grants with level promotion, escrow debits and credits.

Every balance mutation is a single conditional UPDATE so concurrent writers
on the same account cannot lose each other's changes:

- grants read (xp, level), compute the promotion, then compare-and-swap;
  a lost race re-reads and retries
- debits only apply while the balance covers the amount
- credits are additive
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.config import get_settings
from studyhub.db.models import Account, XPLedger, utcnow
from studyhub.exceptions import (
    AccountNotFoundError,
    InsufficientPointsError,
    InvalidAmountError,
    LedgerConflictError,
)
from studyhub.gamification.level_thresholds import next_level

logger = logging.getLogger(__name__)

# Points per content-creation activity.
ACTIVITY_POINTS: dict[str, int] = {
    "material_upload": 50,
    "comment": 5,
    "rating": 10,
    "community_post": 20,
    "bounty_answer": 2,
}


@dataclass(frozen=True)
class LedgerUpdate:
    account_id: int
    balance: int
    level: int
    leveled_up: bool
    granted: bool = True


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        msg = f"Point amount must be a positive integer, got {amount!r}"
        raise InvalidAmountError(msg)


async def read_balance(db: AsyncSession, account_id: int) -> tuple[int, int] | None:
    """Return (xp, level) straight from the database, or None for unknown accounts."""
    result = await db.execute(
        select(Account.xp, Account.level).where(Account.id == account_id)
    )
    row = result.one_or_none()
    if row is None:
        return None
    return row.xp, row.level


async def _already_granted(db: AsyncSession, idempotency_key: str) -> bool:
    result = await db.execute(
        select(XPLedger.id).where(XPLedger.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none() is not None


async def _unchanged(db: AsyncSession, account_id: int) -> LedgerUpdate:
    current = await read_balance(db, account_id)
    if current is None:
        raise AccountNotFoundError(account_id)
    return LedgerUpdate(account_id, current[0], current[1], leveled_up=False, granted=False)


async def _apply_grant(db: AsyncSession, entry: XPLedger) -> tuple[int, int, int]:
    """Compare-and-swap the balance, then record ``entry``.

    Returns (old_level, new_xp, new_level).
    """
    account_id = entry.account_id
    max_retries = get_settings().ledger_max_retries
    for attempt in range(1, max_retries + 1):
        current = await read_balance(db, account_id)
        if current is None:
            raise AccountNotFoundError(account_id)
        old_xp, old_level = current
        new_xp = old_xp + entry.amount
        new_level = next_level(old_level, new_xp)

        result = await db.execute(
            update(Account)
            .where(
                Account.id == account_id,
                Account.xp == old_xp,
                Account.level == old_level,
            )
            .values(xp=new_xp, level=new_level)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            break
        logger.info(
            "Balance of account %s changed during grant, retrying (attempt %d/%d)",
            account_id, attempt, max_retries,
        )
    else:
        msg = f"Could not apply {entry.amount} XP to account {account_id} after {max_retries} attempts"
        raise LedgerConflictError(msg)

    db.add(entry)
    await db.flush()
    return old_level, new_xp, new_level


async def grant_points(
    db: AsyncSession,
    account_id: int,
    amount: int,
    source: str,
    source_id: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> LedgerUpdate:
    """Add ``amount`` XP to an account and promote it at most one level.

    Raises AccountNotFoundError for unknown accounts. A repeated
    ``idempotency_key`` leaves the balance untouched and returns
    ``granted=False``. Does not commit; once the caller has committed it
    hands the result to ``publish_level_up``.
    """
    _check_amount(amount)

    if idempotency_key is not None and await _already_granted(db, idempotency_key):
        return await _unchanged(db, account_id)

    entry = XPLedger(
        account_id=account_id,
        amount=amount,
        source=source,
        source_id=source_id,
        description=description,
        idempotency_key=idempotency_key,
        created_at=utcnow(),
    )
    if idempotency_key is None:
        old_level, new_xp, new_level = await _apply_grant(db, entry)
    else:
        # A concurrent grant with the same key fails the unique index; the
        # savepoint takes the balance update back with it.
        try:
            async with db.begin_nested():
                old_level, new_xp, new_level = await _apply_grant(db, entry)
        except IntegrityError:
            logger.info("Grant %s already recorded for account %s", idempotency_key, account_id)
            return await _unchanged(db, account_id)

    return LedgerUpdate(account_id, new_xp, new_level, leveled_up=new_level > old_level)


async def debit_points(
    db: AsyncSession,
    account_id: int,
    amount: int,
    source: str,
    source_id: str | None = None,
    description: str | None = None,
) -> int:
    """Remove ``amount`` XP if the balance covers it. Level is left as is.

    Returns the new balance. Does not commit.
    """
    _check_amount(amount)

    result = await db.execute(
        update(Account)
        .where(Account.id == account_id, Account.xp >= amount)
        .values(xp=Account.xp - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        if await read_balance(db, account_id) is None:
            raise AccountNotFoundError(account_id)
        raise InsufficientPointsError(account_id, amount)

    db.add(XPLedger(
        account_id=account_id,
        amount=-amount,
        source=source,
        source_id=source_id,
        description=description,
        created_at=utcnow(),
    ))
    await db.flush()

    balance = await read_balance(db, account_id)
    return balance[0] if balance else 0


async def credit_points(
    db: AsyncSession,
    account_id: int,
    amount: int,
    source: str,
    source_id: str | None = None,
    description: str | None = None,
) -> int:
    """Return ``amount`` XP to an account without promoting it (refunds).

    Returns the new balance. Does not commit.
    """
    _check_amount(amount)

    result = await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(xp=Account.xp + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AccountNotFoundError(account_id)

    db.add(XPLedger(
        account_id=account_id,
        amount=amount,
        source=source,
        source_id=source_id,
        description=description,
        created_at=utcnow(),
    ))
    await db.flush()

    balance = await read_balance(db, account_id)
    return balance[0] if balance else 0


async def reward_activity(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    activity: str,
    source_id: str | int,
) -> LedgerUpdate:
    """Grant the policy amount for a content-creation activity and commit.

    Called by the upload/comment/rating/post handlers. The idempotency key is
    derived from the activity and its source, so a second rating of the same
    material earns nothing. Queues an out-of-band badge evaluation.
    """
    try:
        amount = ACTIVITY_POINTS[activity]
    except KeyError:
        msg = f"Unknown activity: {activity}"
        raise ValueError(msg) from None

    try:
        update_ = await grant_points(
            db,
            account_id,
            amount,
            source=activity,
            source_id=str(source_id),
            description=f"{activity.replace('_', ' ').capitalize()} reward",
            idempotency_key=f"{activity}:{account_id}:{source_id}",
        )
    except Exception:
        await db.rollback()
        raise

    await db.commit()

    if update_.granted:
        await publish_level_up(redis, update_)
        await enqueue_badge_evaluation(redis, account_id, activity)
    return update_


async def enqueue_badge_evaluation(redis: object | None, account_id: int, reason: str) -> None:
    """Append the account to the activity stream consumed by the badge worker."""
    if redis is None:
        return
    try:
        await redis.xadd(  # type: ignore[union-attr]
            get_settings().activity_stream,
            {"account_id": str(account_id), "reason": reason},
            maxlen=100_000,
            approximate=True,
        )
    except Exception:
        logger.warning("Failed to queue badge evaluation for account %s", account_id, exc_info=True)


async def get_xp_history(
    db: AsyncSession,
    account_id: int,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[XPLedger], int]:
    """Return one page of ledger entries (newest first) and the total count."""
    total = (await db.execute(
        select(func.count()).select_from(XPLedger).where(XPLedger.account_id == account_id)
    )).scalar_one()

    result = await db.execute(
        select(XPLedger)
        .where(XPLedger.account_id == account_id)
        .order_by(XPLedger.created_at.desc(), XPLedger.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def publish_level_up(redis: object | None, update_: LedgerUpdate) -> None:
    """Broadcast a committed promotion for activity feeds and toasts.

    No-op unless the grant moved the account up a level.
    """
    if not update_.leveled_up:
        return
    logger.info("Account %s reached level %d", update_.account_id, update_.level)
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            "pubsub:level_up",
            json.dumps({
                "account_id": update_.account_id,
                "old_level": update_.level - 1,
                "new_level": update_.level,
            }),
        )
    except Exception:
        logger.warning("Failed to publish level_up broadcast", exc_info=True)
