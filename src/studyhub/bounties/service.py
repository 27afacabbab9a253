"""Bounty escrow business logic.

Rules:
- Posting a bounty debits the stake from the poster; the debit only applies
  while the balance covers it
- Answers are accepted only while the bounty is open; answering earns a small
  fixed reward
- Accepting marks the bounty solved, flags the answer and pays the full stake
  to its author, all in one transaction
- Cancelling (poster or admin, open bounties only) refunds the stake and
  deletes the bounty with its answers and their comments
- open -> solved and open -> cancelled are guarded updates on ``status``, so
  of two concurrent transitions exactly one wins
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.db.models import Account, Bounty, BountyAnswer, BountyAnswerComment, utcnow
from studyhub.exceptions import (
    AnswerNotFoundError,
    BountyNotFoundError,
    BountyNotOpenError,
    BountyValidationError,
    NotBountyOwnerError,
)
from studyhub.gamification.xp_service import (
    ACTIVITY_POINTS,
    credit_points,
    debit_points,
    enqueue_badge_evaluation,
    grant_points,
    publish_level_up,
)

logger = logging.getLogger(__name__)

STATUS_OPEN = "open"
STATUS_SOLVED = "solved"
STATUS_CANCELLED = "cancelled"


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        msg = f"{field} must not be empty"
        raise BountyValidationError(msg)
    return value


async def get_bounty(db: AsyncSession, bounty_id: int) -> Bounty | None:
    """Get a bounty by ID."""
    result = await db.execute(select(Bounty).where(Bounty.id == bounty_id))
    return result.scalar_one_or_none()


async def get_answer(db: AsyncSession, answer_id: int) -> BountyAnswer | None:
    result = await db.execute(select(BountyAnswer).where(BountyAnswer.id == answer_id))
    return result.scalar_one_or_none()


async def create_bounty(
    db: AsyncSession,
    poster_id: int,
    title: str,
    description: str,
    reward_xp: int,
    tags: list[str] | None = None,
    images: list[str] | None = None,
) -> tuple[Bounty, int]:
    """Stake ``reward_xp`` and open a bounty. Returns (bounty, remaining balance)."""
    _require_text(title, "title")
    _require_text(description, "description")
    if isinstance(reward_xp, bool) or not isinstance(reward_xp, int) or reward_xp <= 0:
        msg = "reward_xp must be a positive integer"
        raise BountyValidationError(msg)

    try:
        bounty = Bounty(
            account_id=poster_id,
            title=title,
            description=description,
            reward_xp=reward_xp,
            status=STATUS_OPEN,
            tags=tags,
            images=images,
            created_at=utcnow(),
        )
        db.add(bounty)
        await db.flush()

        remaining = await debit_points(
            db,
            poster_id,
            reward_xp,
            source="bounty_stake",
            source_id=str(bounty.id),
            description=f"Stake for bounty #{bounty.id}",
        )
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    logger.info("Account %s opened bounty %s staking %d XP", poster_id, bounty.id, reward_xp)
    return bounty, remaining


async def submit_answer(
    db: AsyncSession,
    redis: object | None,
    bounty_id: int,
    author_id: int,
    content: str,
    images: list[str] | None = None,
) -> BountyAnswer:
    """Answer an open bounty and reward the author."""
    _require_text(content, "content")

    try:
        bounty = await get_bounty(db, bounty_id)
        if bounty is None:
            raise BountyNotFoundError(bounty_id)
        if bounty.status != STATUS_OPEN:
            raise BountyNotOpenError(bounty_id)

        answer = BountyAnswer(
            bounty_id=bounty_id,
            account_id=author_id,
            content=content,
            images=images,
            is_accepted=False,
            created_at=utcnow(),
        )
        db.add(answer)
        await db.flush()

        granted = await grant_points(
            db,
            author_id,
            ACTIVITY_POINTS["bounty_answer"],
            source="bounty_answer",
            source_id=str(answer.id),
            description=f"Answered bounty #{bounty_id}",
        )
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    await publish_level_up(redis, granted)
    await enqueue_badge_evaluation(redis, author_id, "bounty_answer")
    return answer


async def accept_answer(
    db: AsyncSession,
    redis: object | None,
    bounty_id: int,
    answer_id: int,
    acting_account_id: int,
) -> Bounty:
    """Close a bounty in favour of one answer and pay out the stake."""
    try:
        bounty = await get_bounty(db, bounty_id)
        if bounty is None:
            raise BountyNotFoundError(bounty_id)
        if bounty.account_id != acting_account_id:
            raise NotBountyOwnerError(bounty_id, action="accept answers on")
        if bounty.status != STATUS_OPEN:
            raise BountyNotOpenError(bounty_id)

        answer = await get_answer(db, answer_id)
        if answer is None or answer.bounty_id != bounty_id:
            raise AnswerNotFoundError(answer_id)
        author_id = answer.account_id
        reward = bounty.reward_xp

        # The status guard is the serialization point between competing accepts/cancels.
        transition = await db.execute(
            update(Bounty)
            .where(Bounty.id == bounty_id, Bounty.status == STATUS_OPEN)
            .values(status=STATUS_SOLVED, solved_by=author_id)
            .execution_options(synchronize_session=False)
        )
        if transition.rowcount != 1:
            raise BountyNotOpenError(bounty_id)

        await db.execute(
            update(BountyAnswer)
            .where(BountyAnswer.id == answer_id)
            .values(is_accepted=True)
            .execution_options(synchronize_session=False)
        )

        payout = await grant_points(
            db,
            author_id,
            reward,
            source="bounty_reward",
            source_id=str(bounty_id),
            description=f"Accepted answer on bounty #{bounty_id}",
        )
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    await db.refresh(bounty)
    await db.refresh(answer)
    await publish_level_up(redis, payout)
    logger.info(
        "Bounty %s solved by account %s (answer %s), %d XP paid",
        bounty_id, author_id, answer_id, reward,
    )
    return bounty


async def cancel_bounty(
    db: AsyncSession,
    bounty_id: int,
    acting_account_id: int,
    is_admin: bool = False,
) -> int:
    """Withdraw an open bounty, refund the poster and delete it. Returns the refund."""
    try:
        bounty = await get_bounty(db, bounty_id)
        if bounty is None:
            raise BountyNotFoundError(bounty_id)
        if bounty.account_id != acting_account_id and not is_admin:
            raise NotBountyOwnerError(bounty_id, action="cancel")
        if bounty.status != STATUS_OPEN or bounty.solved_by is not None:
            raise BountyNotOpenError(bounty_id)
        poster_id = bounty.account_id
        refund = bounty.reward_xp

        transition = await db.execute(
            update(Bounty)
            .where(
                Bounty.id == bounty_id,
                Bounty.status == STATUS_OPEN,
                Bounty.solved_by.is_(None),
            )
            .values(status=STATUS_CANCELLED)
            .execution_options(synchronize_session=False)
        )
        if transition.rowcount != 1:
            raise BountyNotOpenError(bounty_id)

        answer_ids = select(BountyAnswer.id).where(BountyAnswer.bounty_id == bounty_id)
        await db.execute(
            delete(BountyAnswerComment)
            .where(BountyAnswerComment.answer_id.in_(answer_ids))
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(BountyAnswer)
            .where(BountyAnswer.bounty_id == bounty_id)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(Bounty)
            .where(Bounty.id == bounty_id)
            .execution_options(synchronize_session=False)
        )
        db.expunge(bounty)

        await credit_points(
            db,
            poster_id,
            refund,
            source="bounty_refund",
            source_id=str(bounty_id),
            description=f"Refund for cancelled bounty #{bounty_id}",
        )
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    logger.info("Bounty %s cancelled by account %s, %d XP refunded", bounty_id, acting_account_id, refund)
    return refund


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


async def list_bounties(
    db: AsyncSession,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[dict], int]:
    """Open bounties first, newest first within each group."""
    total = (await db.execute(select(func.count()).select_from(Bounty))).scalar_one()

    answer_count = (
        select(func.count(BountyAnswer.id))
        .where(BountyAnswer.bounty_id == Bounty.id)
        .correlate(Bounty)
        .scalar_subquery()
    )
    result = await db.execute(
        select(Bounty, Account.username, Account.level, answer_count.label("answer_count"))
        .join(Account, Account.id == Bounty.account_id)
        .order_by((Bounty.status == STATUS_OPEN).desc(), Bounty.created_at.desc(), Bounty.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    items = [
        {
            "bounty": bounty,
            "username": username,
            "level": level,
            "answer_count": count,
        }
        for bounty, username, level, count in result
    ]
    return items, total


async def get_bounty_detail(db: AsyncSession, bounty_id: int) -> dict:
    """A bounty with its poster and answers (accepted first, then oldest first)."""
    result = await db.execute(
        select(Bounty, Account.username, Account.level)
        .join(Account, Account.id == Bounty.account_id)
        .where(Bounty.id == bounty_id)
    )
    row = result.one_or_none()
    if row is None:
        raise BountyNotFoundError(bounty_id)

    answers = await db.execute(
        select(BountyAnswer, Account.username, Account.level)
        .join(Account, Account.id == BountyAnswer.account_id)
        .where(BountyAnswer.bounty_id == bounty_id)
        .order_by(BountyAnswer.is_accepted.desc(), BountyAnswer.created_at.asc(), BountyAnswer.id.asc())
    )
    return {
        "bounty": row.Bounty,
        "username": row.username,
        "level": row.level,
        "answers": [
            {"answer": answer, "username": username, "level": level}
            for answer, username, level in answers
        ],
    }


async def add_answer_comment(
    db: AsyncSession,
    answer_id: int,
    author_id: int,
    content: str,
) -> BountyAnswerComment:
    _require_text(content, "content")
    if await get_answer(db, answer_id) is None:
        raise AnswerNotFoundError(answer_id)

    comment = BountyAnswerComment(
        answer_id=answer_id,
        account_id=author_id,
        content=content,
        created_at=utcnow(),
    )
    db.add(comment)
    await db.commit()
    return comment


async def list_answer_comments(db: AsyncSession, answer_id: int) -> list[dict]:
    result = await db.execute(
        select(BountyAnswerComment, Account.username)
        .join(Account, Account.id == BountyAnswerComment.account_id)
        .where(BountyAnswerComment.answer_id == answer_id)
        .order_by(BountyAnswerComment.created_at.asc(), BountyAnswerComment.id.asc())
    )
    return [{"comment": comment, "username": username} for comment, username in result]
