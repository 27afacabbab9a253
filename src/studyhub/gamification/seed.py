"""Badge seed data. Codes are stable; the frontend keys icons and copy off them."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.db.models import BadgeDefinition, utcnow

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    {
        "code": "pioneer",
        "name": "Pioneer",
        "description": "One of the first members to join",
        "icon": "\U0001F680",
        "sort_order": 1,
    },
    {
        "code": "first_upload",
        "name": "First Contribution",
        "description": "Uploaded a first study material",
        "icon": "\U0001F331",
        "sort_order": 2,
    },
    {
        "code": "active_contributor",
        "name": "Active Contributor",
        "description": "Uploaded 5 or more study materials",
        "icon": "\U0001F525",
        "sort_order": 3,
    },
    {
        "code": "popular_author",
        "name": "Popular Author",
        "description": "Uploads were favorited 50 times in total",
        "icon": "⭐",
        "sort_order": 4,
    },
    {
        "code": "commentator",
        "name": "Commentator",
        "description": "Wrote 10 comments",
        "icon": "\U0001F4AC",
        "sort_order": 5,
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Insert the badge definitions if the table is empty. Returns rows inserted."""
    existing = (await db.execute(select(func.count()).select_from(BadgeDefinition))).scalar_one()
    if existing:
        return 0

    now = utcnow()
    for badge_data in BADGE_SEED_DATA:
        db.add(BadgeDefinition(**badge_data, created_at=now))

    await db.commit()
    logger.info("Seeded %d badge definitions", len(BADGE_SEED_DATA))
    return len(BADGE_SEED_DATA)
