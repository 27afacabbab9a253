"""Bounty API endpoints: listing, escrow operations and answer comments."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.auth.dependencies import get_current_account
from studyhub.bounties.schemas import (
    AcceptAnswerResponse,
    AnswerCommentListResponse,
    AnswerCommentRequest,
    AnswerCommentResponse,
    AnswerResponse,
    AuthorResponse,
    BountyDetailResponse,
    BountyListResponse,
    BountyResponse,
    CancelBountyResponse,
    CreateBountyRequest,
    CreateBountyResponse,
    SubmitAnswerRequest,
)
from studyhub.bounties.service import (
    accept_answer,
    add_answer_comment,
    cancel_bounty,
    create_bounty,
    get_bounty_detail,
    list_answer_comments,
    list_bounties,
    submit_answer,
)
from studyhub.database import get_session
from studyhub.db.models import Account, Bounty, BountyAnswer
from studyhub.dependencies import get_redis_dep
from studyhub.exceptions import StudyHubError
from studyhub.middleware.error_handler import domain_http_exception

router = APIRouter(prefix="/api/v1", tags=["Bounties"])


# ── Helpers ──


def _bounty_response(
    bounty: Bounty,
    username: str,
    level: int,
    answer_count: int = 0,
) -> BountyResponse:
    return BountyResponse(
        id=bounty.id,
        title=bounty.title,
        description=bounty.description,
        reward_xp=bounty.reward_xp,
        status=bounty.status,
        solved_by=bounty.solved_by,
        tags=bounty.tags or [],
        images=bounty.images or [],
        created_at=bounty.created_at,
        author=AuthorResponse(id=bounty.account_id, username=username, level=level),
        answer_count=answer_count,
    )


def _answer_response(answer: BountyAnswer, username: str, level: int) -> AnswerResponse:
    return AnswerResponse(
        id=answer.id,
        bounty_id=answer.bounty_id,
        content=answer.content,
        images=answer.images or [],
        is_accepted=answer.is_accepted,
        created_at=answer.created_at,
        author=AuthorResponse(id=answer.account_id, username=username, level=level),
    )


# ── Read side ──


@router.get("/bounties", response_model=BountyListResponse)
async def list_bounties_endpoint(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """List bounties, open ones first (paginated, public)."""
    items, total = await list_bounties(db, page, per_page)
    return BountyListResponse(
        bounties=[
            _bounty_response(i["bounty"], i["username"], i["level"], i["answer_count"])
            for i in items
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/bounties/{bounty_id}", response_model=BountyDetailResponse)
async def get_bounty_endpoint(bounty_id: int, db: AsyncSession = Depends(get_session)):
    """Bounty detail with its answers, the accepted one first."""
    try:
        detail = await get_bounty_detail(db, bounty_id)
    except StudyHubError as e:
        raise domain_http_exception(e) from e

    answers = [_answer_response(a["answer"], a["username"], a["level"]) for a in detail["answers"]]
    base = _bounty_response(detail["bounty"], detail["username"], detail["level"], len(answers))
    return BountyDetailResponse(**base.model_dump(), answers=answers)


# ── Escrow ──


@router.post("/bounties", response_model=CreateBountyResponse, status_code=201)
async def create_bounty_endpoint(
    body: CreateBountyRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Post a bounty, staking ``reward_xp`` from the caller's balance."""
    try:
        bounty, remaining = await create_bounty(
            db,
            account.id,
            body.title,
            body.description,
            body.reward_xp,
            tags=body.tags,
            images=body.images,
        )
    except StudyHubError as e:
        raise domain_http_exception(e) from e

    return CreateBountyResponse(
        bounty=_bounty_response(bounty, account.username, account.level),
        remaining_xp=remaining,
    )


@router.delete("/bounties/{bounty_id}", response_model=CancelBountyResponse)
async def cancel_bounty_endpoint(
    bounty_id: int,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Cancel an open bounty (poster or admin) and refund the stake."""
    try:
        refund = await cancel_bounty(db, bounty_id, account.id, is_admin=account.is_admin)
    except StudyHubError as e:
        raise domain_http_exception(e) from e
    return CancelBountyResponse(bounty_id=bounty_id, refunded_xp=refund)


@router.post("/bounties/{bounty_id}/answers", response_model=AnswerResponse, status_code=201)
async def submit_answer_endpoint(
    bounty_id: int,
    body: SubmitAnswerRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
):
    """Answer an open bounty."""
    try:
        answer = await submit_answer(db, redis, bounty_id, account.id, body.content, images=body.images)
    except StudyHubError as e:
        raise domain_http_exception(e) from e
    return _answer_response(answer, account.username, account.level)


@router.post(
    "/bounties/{bounty_id}/answers/{answer_id}/accept",
    response_model=AcceptAnswerResponse,
)
async def accept_answer_endpoint(
    bounty_id: int,
    answer_id: int,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
):
    """Accept an answer and pay the stake to its author."""
    try:
        bounty = await accept_answer(db, redis, bounty_id, answer_id, account.id)
    except StudyHubError as e:
        raise domain_http_exception(e) from e
    return AcceptAnswerResponse(
        bounty_id=bounty.id,
        answer_id=answer_id,
        status=bounty.status,
        solved_by=bounty.solved_by,
        reward_xp=bounty.reward_xp,
    )


# ── Answer comments ──


@router.get("/bounties/answers/{answer_id}/comments", response_model=AnswerCommentListResponse)
async def list_answer_comments_endpoint(answer_id: int, db: AsyncSession = Depends(get_session)):
    rows = await list_answer_comments(db, answer_id)
    return AnswerCommentListResponse(
        comments=[
            AnswerCommentResponse(
                id=r["comment"].id,
                answer_id=r["comment"].answer_id,
                content=r["comment"].content,
                created_at=r["comment"].created_at,
                author_id=r["comment"].account_id,
                username=r["username"],
            )
            for r in rows
        ]
    )


@router.post(
    "/bounties/answers/{answer_id}/comments",
    response_model=AnswerCommentResponse,
    status_code=201,
)
async def add_answer_comment_endpoint(
    answer_id: int,
    body: AnswerCommentRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    try:
        comment = await add_answer_comment(db, answer_id, account.id, body.content)
    except StudyHubError as e:
        raise domain_http_exception(e) from e
    return AnswerCommentResponse(
        id=comment.id,
        answer_id=comment.answer_id,
        content=comment.content,
        created_at=comment.created_at,
        author_id=comment.account_id,
        username=account.username,
    )
