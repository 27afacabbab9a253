"""Pydantic response models for the reputation endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# --- XP ---


class XPResponse(BaseModel):
    account_id: int
    xp: int
    level: int
    threshold: int
    xp_to_next: int
    progress_percent: float


class XPHistoryEntry(BaseModel):
    amount: int
    source: str
    source_id: str | None = None
    description: str | None = None
    created_at: datetime | None = None


class XPHistoryResponse(BaseModel):
    entries: list[XPHistoryEntry]
    total: int
    page: int
    per_page: int


class LevelEntry(BaseModel):
    level: int
    threshold: int


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]


# --- Badges ---


class EarnedBadgeResponse(BaseModel):
    code: str
    name: str
    description: str
    icon: str
    rarity_percent: int
    rarity_tier: str
    earned_at: datetime


class AccountBadgesResponse(BaseModel):
    account_id: int
    badges: list[EarnedBadgeResponse]
    newly_awarded: list[str] = []


class BadgeDefinitionResponse(BaseModel):
    code: str
    name: str
    description: str
    icon: str
    holders: int
    rarity_percent: int
    rarity_tier: str


class AllBadgesResponse(BaseModel):
    badges: list[BadgeDefinitionResponse]


# --- Leaderboard ---


class LeaderboardEntry(BaseModel):
    rank: int
    account_id: int
    username: str
    avatar: str | None = None
    xp: int
    level: int
    upload_count: int


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
