"""Integration tests for the bounty endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import auth_headers, get_balance, make_account


async def _post_bounty(client: AsyncClient, poster: int, reward: int = 80, **overrides):
    body = {"title": "Integrals", "description": "How do I solve this?", "reward_xp": reward}
    body.update(overrides)
    return await client.post("/api/v1/bounties", json=body, headers=auth_headers(poster))


class TestCreateBounty:

    @pytest.mark.asyncio
    async def test_create(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=110, level=2)

        response = await _post_bounty(client, poster, tags=["calculus"])

        assert response.status_code == 201
        data = response.json()
        assert data["remaining_xp"] == 30
        assert data["bounty"]["status"] == "open"
        assert data["bounty"]["reward_xp"] == 80
        assert data["bounty"]["tags"] == ["calculus"]
        assert data["bounty"]["author"] == {"id": poster, "username": "poster", "level": 2}
        assert await get_balance(db_session, poster) == (30, 2)

    @pytest.mark.asyncio
    async def test_insufficient_xp(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=30)

        response = await _post_bounty(client, poster)

        assert response.status_code == 400
        assert response.json()["detail"] == "Not enough XP: 80 required"
        assert await get_balance(db_session, poster) == (30, 1)

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        response = await client.post("/api/v1/bounties", json={"title": "t", "description": "d", "reward_xp": 5})
        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_invalid_token(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/bounties",
            json={"title": "t", "description": "d", "reward_xp": 5},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_banned_account(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=100, is_banned=True)
        response = await _post_bounty(client, poster)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_zero_reward_rejected(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=100)
        response = await _post_bounty(client, poster, reward=0)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=100)
        response = await _post_bounty(client, poster, title="   ")
        assert response.status_code == 400


class TestBountyLifecycle:

    @pytest.mark.asyncio
    async def test_answer_and_accept(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=100)
        helper = await make_account(db_session, "helper")
        bounty_id = (await _post_bounty(client, poster)).json()["bounty"]["id"]

        response = await client.post(
            f"/api/v1/bounties/{bounty_id}/answers",
            json={"content": "Use substitution"},
            headers=auth_headers(helper),
        )
        assert response.status_code == 201
        answer = response.json()
        assert answer["is_accepted"] is False
        assert answer["author"]["username"] == "helper"

        # only the poster may accept
        response = await client.post(
            f"/api/v1/bounties/{bounty_id}/answers/{answer['id']}/accept",
            headers=auth_headers(helper),
        )
        assert response.status_code == 403

        response = await client.post(
            f"/api/v1/bounties/{bounty_id}/answers/{answer['id']}/accept",
            headers=auth_headers(poster),
        )
        assert response.status_code == 200
        assert response.json() == {
            "bounty_id": bounty_id,
            "answer_id": answer["id"],
            "status": "solved",
            "solved_by": helper,
            "reward_xp": 80,
        }
        assert await get_balance(db_session, helper) == (82, 1)

        # accepting again is rejected
        response = await client.post(
            f"/api/v1/bounties/{bounty_id}/answers/{answer['id']}/accept",
            headers=auth_headers(poster),
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Bounty is no longer open"

        detail = (await client.get(f"/api/v1/bounties/{bounty_id}")).json()
        assert detail["status"] == "solved"
        assert detail["answers"][0]["is_accepted"] is True

    @pytest.mark.asyncio
    async def test_answer_missing_bounty(self, client: AsyncClient, db_session: AsyncSession):
        helper = await make_account(db_session, "helper")
        response = await client.post(
            "/api/v1/bounties/999/answers", json={"content": "hi"}, headers=auth_headers(helper),
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_accept_missing_answer(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=100)
        bounty_id = (await _post_bounty(client, poster)).json()["bounty"]["id"]

        response = await client.post(
            f"/api/v1/bounties/{bounty_id}/answers/999/accept", headers=auth_headers(poster),
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Answer not found"

    @pytest.mark.asyncio
    async def test_cancel_refunds(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=100)
        bounty_id = (await _post_bounty(client, poster)).json()["bounty"]["id"]

        response = await client.delete(f"/api/v1/bounties/{bounty_id}", headers=auth_headers(poster))

        assert response.status_code == 200
        assert response.json() == {"bounty_id": bounty_id, "refunded_xp": 80}
        assert await get_balance(db_session, poster) == (100, 1)
        assert (await client.get(f"/api/v1/bounties/{bounty_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_cancel_by_stranger_forbidden(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=100)
        stranger = await make_account(db_session, "stranger")
        bounty_id = (await _post_bounty(client, poster)).json()["bounty"]["id"]

        response = await client.delete(f"/api/v1/bounties/{bounty_id}", headers=auth_headers(stranger))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_cancel_by_admin(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=100)
        admin = await make_account(db_session, "admin", role="admin")
        bounty_id = (await _post_bounty(client, poster)).json()["bounty"]["id"]

        response = await client.delete(f"/api/v1/bounties/{bounty_id}", headers=auth_headers(admin, "admin"))
        assert response.status_code == 200
        assert await get_balance(db_session, poster) == (100, 1)


class TestBountyReads:

    @pytest.mark.asyncio
    async def test_list(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=100)
        await _post_bounty(client, poster, reward=10, title="First")
        await _post_bounty(client, poster, reward=10, title="Second")

        response = await client.get("/api/v1/bounties", params={"per_page": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["per_page"] == 1
        assert [b["title"] for b in data["bounties"]] == ["Second"]

    @pytest.mark.asyncio
    async def test_answer_comments(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster", xp=100)
        helper = await make_account(db_session, "helper")
        bounty_id = (await _post_bounty(client, poster)).json()["bounty"]["id"]
        answer_id = (await client.post(
            f"/api/v1/bounties/{bounty_id}/answers", json={"content": "Try this"}, headers=auth_headers(helper),
        )).json()["id"]

        response = await client.post(
            f"/api/v1/bounties/answers/{answer_id}/comments",
            json={"content": "Could you expand?"},
            headers=auth_headers(poster),
        )
        assert response.status_code == 201
        assert response.json()["username"] == "poster"

        response = await client.get(f"/api/v1/bounties/answers/{answer_id}/comments")
        assert [c["content"] for c in response.json()["comments"]] == ["Could you expand?"]

    @pytest.mark.asyncio
    async def test_comment_on_missing_answer(self, client: AsyncClient, db_session: AsyncSession):
        poster = await make_account(db_session, "poster")
        response = await client.post(
            "/api/v1/bounties/answers/999/comments", json={"content": "hello"}, headers=auth_headers(poster),
        )
        assert response.status_code == 404
