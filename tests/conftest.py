"""Shared test fixtures.

Every test gets its own throwaway SQLite database; Redis is left
uninitialized so the API runs in its degraded, Redis-free mode unless a
test installs a fake client.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.auth.jwt import create_access_token
from studyhub.config import get_settings
from studyhub.database import close_db, create_tables, get_session_factory, init_db
from studyhub.db.models import Account, Comment, Favorite, Material
from studyhub.gamification.seed import seed_badges
from studyhub.main import create_app


@pytest.fixture(autouse=True)
def _test_settings(tmp_path, monkeypatch):
    """Point the settings at a per-test database file."""
    monkeypatch.setenv("STUDYHUB_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'studyhub.db'}")
    monkeypatch.setenv("STUDYHUB_JWT_SECRET", "test-secret-key-with-at-least-32-bytes")
    monkeypatch.setenv("STUDYHUB_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Create the schema and seed badge definitions."""
    await init_db(get_settings().database_url)
    await create_tables()
    async with get_session_factory()() as session:
        await seed_badges(session)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for service calls and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def other_session(database) -> AsyncGenerator[AsyncSession, None]:
    """A second, independent session for simulating concurrent writers."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(database) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client bound to the app."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# --- Helpers ---


async def make_account(
    db: AsyncSession,
    username: str,
    xp: int = 0,
    level: int = 1,
    role: str = "user",
    is_banned: bool = False,
) -> int:
    """Insert an account and return its id."""
    account = Account(username=username, xp=xp, level=level, role=role, is_banned=is_banned)
    db.add(account)
    await db.commit()
    return account.id


async def get_balance(db: AsyncSession, account_id: int) -> tuple[int, int]:
    """(xp, level) read straight from the table."""
    result = await db.execute(select(Account.xp, Account.level).where(Account.id == account_id))
    row = result.one()
    return row.xp, row.level


async def add_uploads(db: AsyncSession, account_id: int, count: int) -> list[int]:
    materials = [Material(account_id=account_id, title=f"Notes {i}") for i in range(count)]
    db.add_all(materials)
    await db.commit()
    return [m.id for m in materials]


async def add_comments(db: AsyncSession, account_id: int, material_id: int, count: int) -> None:
    db.add_all(
        Comment(account_id=account_id, material_id=material_id, content=f"comment {i}")
        for i in range(count)
    )
    await db.commit()


async def add_favorites(db: AsyncSession, material_id: int, fan_ids: list[int]) -> None:
    db.add_all(Favorite(account_id=fan_id, material_id=material_id) for fan_id in fan_ids)
    await db.commit()


def auth_headers(account_id: int, role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(account_id, role)}"}


class FakeRedis:
    """Records publish/xadd calls made by the services."""

    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []
        self.streams: dict[str, list[dict]] = {}

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    async def xadd(self, stream: str, fields: dict, **kwargs) -> str:
        entries = self.streams.setdefault(stream, [])
        entries.append(fields)
        return f"{len(entries)}-0"

    def channels(self) -> list[str]:
        return [channel for channel, _ in self.published]


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
