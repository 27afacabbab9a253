"""Badge evaluator: checks the rule set against an account's activity counts.

Evaluation (pure reads) and awarding (writes) are separate phases. The
profile endpoint runs both before listing badges; the gamification worker
runs them out-of-band after point-earning activity.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.config import get_settings
from studyhub.db.models import Account, BadgeDefinition, Comment, Favorite, Material
from studyhub.exceptions import AccountNotFoundError
from studyhub.gamification.badge_service import BadgeRef, award_badge

logger = logging.getLogger(__name__)

Metric = Callable[[AsyncSession, int], Awaitable[int]]


async def count_uploads(db: AsyncSession, account_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(Material).where(Material.account_id == account_id)
    )
    return result.scalar_one()


async def count_comments(db: AsyncSession, account_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(Comment).where(Comment.account_id == account_id)
    )
    return result.scalar_one()


async def count_favorites_received(db: AsyncSession, account_id: int) -> int:
    """Favorites on all of the account's own uploads."""
    result = await db.execute(
        select(func.count(Favorite.id))
        .join(Material, Material.id == Favorite.material_id)
        .where(Material.account_id == account_id)
    )
    return result.scalar_one()


async def account_number(db: AsyncSession, account_id: int) -> int:
    """The account id itself; ids are handed out in registration order."""
    return account_id


@dataclass(frozen=True)
class BadgeRule:
    code: str
    metric: Metric
    threshold: int
    at_most: bool = False

    async def check(self, db: AsyncSession, account_id: int) -> bool:
        value = await self.metric(db, account_id)
        if self.at_most:
            return value <= self.threshold
        return value >= self.threshold


def default_rules() -> list[BadgeRule]:
    return [
        BadgeRule("pioneer", account_number, get_settings().pioneer_account_limit, at_most=True),
        BadgeRule("first_upload", count_uploads, 1),
        BadgeRule("active_contributor", count_uploads, 5),
        BadgeRule("popular_author", count_favorites_received, 50),
        BadgeRule("commentator", count_comments, 10),
    ]


class BadgeEvaluator:
    """Evaluates badge rules for one account at a time."""

    def __init__(
        self,
        db: AsyncSession,
        redis: object | None,
        rules: list[BadgeRule] | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.rules = rules if rules is not None else default_rules()
        self._badge_cache: dict[str, BadgeRef] | None = None

    async def _load_badges(self) -> dict[str, BadgeRef]:
        """Load and cache all badge definitions."""
        if self._badge_cache is None:
            result = await self.db.execute(select(BadgeDefinition))
            self._badge_cache = {b.code: BadgeRef.of(b) for b in result.scalars()}
        return self._badge_cache

    async def evaluate(self, account_id: int) -> list[str]:
        """Return the codes of every rule the account currently satisfies.

        Each rule runs in its own savepoint, so a rule whose query fails is
        rolled back, logged and skipped while the others still run.
        """
        exists = await self.db.execute(select(Account.id).where(Account.id == account_id))
        if exists.scalar_one_or_none() is None:
            raise AccountNotFoundError(account_id)

        satisfied: list[str] = []
        for rule in self.rules:
            try:
                async with self.db.begin_nested():
                    matched = await rule.check(self.db, account_id)
                if matched:
                    satisfied.append(rule.code)
            except Exception:
                logger.warning(
                    "Badge rule %s failed for account %s", rule.code, account_id, exc_info=True,
                )
        return satisfied

    async def award(self, account_id: int, codes: list[str]) -> list[str]:
        """Grant every listed badge the account does not hold yet.

        Returns the codes newly granted.
        """
        badges = await self._load_badges()
        awarded: list[str] = []
        for code in codes:
            badge = badges.get(code)
            if badge is None:
                logger.warning("Badge not found: %s", code)
                continue
            if await award_badge(self.db, self.redis, account_id, badge):
                awarded.append(code)
        return awarded

    async def run(self, account_id: int) -> list[str]:
        """Evaluate then award. Returns the codes newly granted."""
        return await self.award(account_id, await self.evaluate(account_id))
