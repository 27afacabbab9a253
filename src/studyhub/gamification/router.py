"""Reputation endpoints: XP, badges, catalogue, levels and leaderboard."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.config import get_settings
from studyhub.database import get_session
from studyhub.db.models import Account, Material
from studyhub.dependencies import get_redis_dep
from studyhub.exceptions import StudyHubError
from studyhub.gamification.badge_evaluator import BadgeEvaluator
from studyhub.gamification.badge_service import get_badges_for_account, list_badge_catalogue
from studyhub.gamification.level_thresholds import level_progress, level_table
from studyhub.gamification.schemas import (
    AccountBadgesResponse,
    AllBadgesResponse,
    AllLevelsResponse,
    BadgeDefinitionResponse,
    EarnedBadgeResponse,
    LeaderboardEntry,
    LeaderboardResponse,
    LevelEntry,
    XPHistoryEntry,
    XPHistoryResponse,
    XPResponse,
)
from studyhub.gamification.xp_service import get_xp_history, read_balance
from studyhub.middleware.error_handler import domain_http_exception

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


async def _require_balance(db: AsyncSession, account_id: int) -> tuple[int, int]:
    balance = await read_balance(db, account_id)
    if balance is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return balance


@router.get("/accounts/{account_id}/xp", response_model=XPResponse)
async def get_account_xp(account_id: int, db: AsyncSession = Depends(get_session)):
    """Balance, level and progress towards the next level."""
    xp, level = await _require_balance(db, account_id)
    progress = level_progress(level, xp)
    return XPResponse(
        account_id=account_id,
        xp=xp,
        level=level,
        threshold=progress["threshold"],
        xp_to_next=progress["xp_to_next"],
        progress_percent=progress["progress_percent"],
    )


@router.get("/accounts/{account_id}/xp/history", response_model=XPHistoryResponse)
async def get_account_xp_history(
    account_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """XP ledger history (paginated, newest first)."""
    await _require_balance(db, account_id)
    entries, total = await get_xp_history(db, account_id, page, per_page)
    return XPHistoryResponse(
        entries=[
            XPHistoryEntry(
                amount=e.amount,
                source=e.source,
                source_id=e.source_id,
                description=e.description,
                created_at=e.created_at,
            )
            for e in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/accounts/{account_id}/badges", response_model=AccountBadgesResponse)
async def get_account_badges(
    account_id: int,
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
):
    """Earned badges with rarity. Grants anything newly earned first."""
    newly_awarded: list[str] = []
    try:
        if get_settings().badge_evaluate_on_read:
            newly_awarded = await BadgeEvaluator(db, redis).run(account_id)
        else:
            await _require_balance(db, account_id)
    except StudyHubError as e:
        raise domain_http_exception(e) from e

    badges = await get_badges_for_account(db, account_id)
    return AccountBadgesResponse(
        account_id=account_id,
        badges=[EarnedBadgeResponse(**b) for b in badges],
        newly_awarded=newly_awarded,
    )


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_session)):
    """All badge definitions with holder counts and rarity."""
    items = await list_badge_catalogue(db)
    return AllBadgesResponse(badges=[BadgeDefinitionResponse(**b) for b in items])


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels(max_level: int = Query(20, ge=1, le=100)):
    return AllLevelsResponse(levels=[LevelEntry(**row) for row in level_table(max_level)])


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    limit: int | None = Query(None, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
):
    """Top accounts by XP, with how many materials each has uploaded."""
    size = limit or get_settings().leaderboard_size
    uploads = (
        select(func.count(Material.id))
        .where(Material.account_id == Account.id)
        .correlate(Account)
        .scalar_subquery()
    )
    result = await db.execute(
        select(Account.id, Account.username, Account.avatar, Account.xp, Account.level, uploads.label("uploads"))
        .where(Account.is_banned.is_(False))
        .order_by(Account.xp.desc(), Account.id.asc())
        .limit(size)
    )
    return LeaderboardResponse(
        entries=[
            LeaderboardEntry(
                rank=rank,
                account_id=row.id,
                username=row.username,
                avatar=row.avatar,
                xp=row.xp,
                level=row.level,
                upload_count=row.uploads,
            )
            for rank, row in enumerate(result, start=1)
        ]
    )
