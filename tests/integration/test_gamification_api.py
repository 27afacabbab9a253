"""Integration tests for the XP, badge and leaderboard endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import add_uploads, make_account
from studyhub.gamification.seed import BADGE_SEED_DATA
from studyhub.gamification.xp_service import grant_points


class TestXPEndpoints:

    @pytest.mark.asyncio
    async def test_xp(self, client: AsyncClient, db_session: AsyncSession):
        account_id = await make_account(db_session, "alice", xp=250, level=2)

        response = await client.get(f"/api/v1/accounts/{account_id}/xp")

        assert response.status_code == 200
        assert response.json() == {
            "account_id": account_id,
            "xp": 250,
            "level": 2,
            "threshold": 400,
            "xp_to_next": 150,
            "progress_percent": 50.0,
        }

    @pytest.mark.asyncio
    async def test_xp_unknown_account(self, client: AsyncClient):
        response = await client.get("/api/v1/accounts/999/xp")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_history(self, client: AsyncClient, db_session: AsyncSession):
        account_id = await make_account(db_session, "alice")
        await grant_points(db_session, account_id, 50, source="material_upload", source_id="1")
        await grant_points(db_session, account_id, 5, source="comment", source_id="2")
        await db_session.commit()

        response = await client.get(f"/api/v1/accounts/{account_id}/xp/history")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [e["source"] for e in data["entries"]] == ["comment", "material_upload"]

    @pytest.mark.asyncio
    async def test_history_pagination_bounds(self, client: AsyncClient, db_session: AsyncSession):
        account_id = await make_account(db_session, "alice")
        response = await client.get(f"/api/v1/accounts/{account_id}/xp/history", params={"per_page": 500})
        assert response.status_code == 422


class TestBadgeEndpoints:

    @pytest.mark.asyncio
    async def test_catalogue(self, client: AsyncClient):
        response = await client.get("/api/v1/badges")
        assert response.status_code == 200
        codes = [b["code"] for b in response.json()["badges"]]
        assert codes == [b["code"] for b in BADGE_SEED_DATA]

    @pytest.mark.asyncio
    async def test_profile_fetch_grants_earned_badges(self, client: AsyncClient, db_session: AsyncSession):
        account_id = await make_account(db_session, "alice")
        await add_uploads(db_session, account_id, 1)

        response = await client.get(f"/api/v1/accounts/{account_id}/badges")

        assert response.status_code == 200
        data = response.json()
        assert set(data["newly_awarded"]) == {"pioneer", "first_upload"}
        badge = data["badges"][0]
        assert set(badge) == {
            "code", "name", "description", "icon", "rarity_percent", "rarity_tier", "earned_at",
        }
        assert all(b["rarity_percent"] == 100 for b in data["badges"])

        again = (await client.get(f"/api/v1/accounts/{account_id}/badges")).json()
        assert again["newly_awarded"] == []
        assert len(again["badges"]) == 2

    @pytest.mark.asyncio
    async def test_profile_fetch_read_only_mode(
        self, client: AsyncClient, db_session: AsyncSession, monkeypatch,
    ):
        from studyhub.config import get_settings

        account_id = await make_account(db_session, "alice")
        monkeypatch.setenv("STUDYHUB_BADGE_EVALUATE_ON_READ", "false")
        get_settings.cache_clear()

        data = (await client.get(f"/api/v1/accounts/{account_id}/badges")).json()

        assert data["badges"] == []
        assert data["newly_awarded"] == []

    @pytest.mark.asyncio
    async def test_badges_unknown_account(self, client: AsyncClient):
        response = await client.get("/api/v1/accounts/999/badges")
        assert response.status_code == 404


class TestLevelsAndLeaderboard:

    @pytest.mark.asyncio
    async def test_levels(self, client: AsyncClient):
        response = await client.get("/api/v1/levels", params={"max_level": 3})
        assert response.json()["levels"] == [
            {"level": 1, "threshold": 100},
            {"level": 2, "threshold": 400},
            {"level": 3, "threshold": 900},
        ]

    @pytest.mark.asyncio
    async def test_leaderboard(self, client: AsyncClient, db_session: AsyncSession):
        low = await make_account(db_session, "low", xp=10)
        high = await make_account(db_session, "high", xp=500, level=3)
        await make_account(db_session, "banned", xp=9000, is_banned=True)
        await add_uploads(db_session, high, 2)

        response = await client.get("/api/v1/leaderboard")

        entries = response.json()["entries"]
        assert [(e["rank"], e["account_id"]) for e in entries] == [(1, high), (2, low)]
        assert entries[0]["upload_count"] == 2
        assert entries[1]["upload_count"] == 0

    @pytest.mark.asyncio
    async def test_leaderboard_limit(self, client: AsyncClient, db_session: AsyncSession):
        for i in range(3):
            await make_account(db_session, f"user{i}", xp=i)
        response = await client.get("/api/v1/leaderboard", params={"limit": 2})
        assert len(response.json()["entries"]) == 2
