"""Badge grants, rarity and the per-account badge listing."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.db.models import Account, AccountBadge, BadgeDefinition, utcnow

logger = logging.getLogger(__name__)

# Upper bounds (inclusive) of rarity_percent for each tier, rarest first.
RARITY_TIERS: list[tuple[int, str]] = [
    (5, "legendary"),
    (15, "epic"),
    (30, "rare"),
]


@dataclass(frozen=True)
class BadgeRef:
    """Detached snapshot of a definition; survives session rollbacks."""

    id: int
    code: str
    name: str
    icon: str

    @classmethod
    def of(cls, badge: BadgeDefinition) -> BadgeRef:
        return cls(id=badge.id, code=badge.code, name=badge.name, icon=badge.icon)


def rarity_percent(holders: int, total_accounts: int) -> int:
    """Share of accounts holding a badge, rounded half up, clamped to [1, 100]."""
    if total_accounts <= 0:
        return 1
    pct = math.floor(100 * holders / total_accounts + 0.5)
    return min(100, max(1, pct))


def rarity_tier(percent: int) -> str:
    for bound, tier in RARITY_TIERS:
        if percent <= bound:
            return tier
    return "common"


async def get_badge_by_code(db: AsyncSession, code: str) -> BadgeDefinition | None:
    """Fetch a badge definition by code."""
    result = await db.execute(
        select(BadgeDefinition).where(BadgeDefinition.code == code)
    )
    return result.scalar_one_or_none()


async def has_badge(db: AsyncSession, account_id: int, badge_id: int) -> bool:
    """Check if the account already holds a specific badge."""
    result = await db.execute(
        select(AccountBadge.id).where(
            AccountBadge.account_id == account_id,
            AccountBadge.badge_id == badge_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def award_badge(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    badge: BadgeRef,
) -> bool:
    """Grant a badge and commit. Returns False if the account already holds it.

    Grants are permanent; nothing in the service removes an AccountBadge row.
    """
    if await has_badge(db, account_id, badge.id):
        return False

    db.add(AccountBadge(
        account_id=account_id,
        badge_id=badge.id,
        earned_at=utcnow(),
    ))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return False  # Race condition: badge already awarded

    logger.info("Account %s earned badge %s", account_id, badge.code)
    await _emit_badge_earned(redis, account_id, badge)
    return True


async def _total_accounts(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(Account))).scalar_one()


def _holders_subquery():
    return (
        select(
            AccountBadge.badge_id.label("badge_id"),
            func.count(AccountBadge.id).label("holders"),
        )
        .group_by(AccountBadge.badge_id)
        .subquery()
    )


async def get_badges_for_account(db: AsyncSession, account_id: int) -> list[dict]:
    """Earned badges with rarity, most recently earned first."""
    total = await _total_accounts(db)
    holders = _holders_subquery()

    result = await db.execute(
        select(
            BadgeDefinition.code,
            BadgeDefinition.name,
            BadgeDefinition.description,
            BadgeDefinition.icon,
            AccountBadge.earned_at,
            holders.c.holders,
        )
        .join(BadgeDefinition, BadgeDefinition.id == AccountBadge.badge_id)
        .join(holders, holders.c.badge_id == AccountBadge.badge_id)
        .where(AccountBadge.account_id == account_id)
        .order_by(AccountBadge.earned_at.desc(), AccountBadge.id.desc())
    )

    badges = []
    for row in result:
        pct = rarity_percent(row.holders, total)
        badges.append({
            "code": row.code,
            "name": row.name,
            "description": row.description,
            "icon": row.icon,
            "rarity_percent": pct,
            "rarity_tier": rarity_tier(pct),
            "earned_at": row.earned_at,
        })
    return badges


async def list_badge_catalogue(db: AsyncSession) -> list[dict]:
    """All badge definitions with holder counts and rarity."""
    total = await _total_accounts(db)
    holders = _holders_subquery()

    result = await db.execute(
        select(BadgeDefinition, func.coalesce(holders.c.holders, 0).label("holders"))
        .outerjoin(holders, holders.c.badge_id == BadgeDefinition.id)
        .order_by(BadgeDefinition.sort_order, BadgeDefinition.id)
    )

    items = []
    for badge, count in result:
        pct = rarity_percent(count, total)
        items.append({
            "code": badge.code,
            "name": badge.name,
            "description": badge.description,
            "icon": badge.icon,
            "holders": count,
            "rarity_percent": pct,
            "rarity_tier": rarity_tier(pct),
        })
    return items


async def _emit_badge_earned(
    redis: object | None,
    account_id: int,
    badge: BadgeRef,
) -> None:
    """Publish a badge-earned event for the profile toast."""
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            "pubsub:badge_earned",
            json.dumps({
                "account_id": account_id,
                "badge_code": badge.code,
                "badge_name": badge.name,
                "icon": badge.icon,
            }),
        )
    except Exception:
        logger.warning("Failed to publish badge_earned notification", exc_info=True)
