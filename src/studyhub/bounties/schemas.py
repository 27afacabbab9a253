"""Pydantic schemas for bounty endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


# --- Requests ---


class CreateBountyRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    description: str = Field(..., min_length=1)
    reward_xp: int = Field(..., gt=0)
    tags: list[str] | None = Field(None, max_length=10)
    images: list[str] | None = Field(None, max_length=5)


class SubmitAnswerRequest(BaseModel):
    content: str = Field(..., min_length=1)
    images: list[str] | None = Field(None, max_length=5)


class AnswerCommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)


# --- Responses ---


class AuthorResponse(BaseModel):
    id: int
    username: str
    level: int


class BountyResponse(BaseModel):
    id: int
    title: str
    description: str
    reward_xp: int
    status: str
    solved_by: int | None = None
    tags: list[str] = []
    images: list[str] = []
    created_at: datetime
    author: AuthorResponse
    answer_count: int = 0


class BountyListResponse(BaseModel):
    bounties: list[BountyResponse]
    total: int
    page: int
    per_page: int


class CreateBountyResponse(BaseModel):
    bounty: BountyResponse
    remaining_xp: int


class AnswerResponse(BaseModel):
    id: int
    bounty_id: int
    content: str
    images: list[str] = []
    is_accepted: bool
    created_at: datetime
    author: AuthorResponse


class BountyDetailResponse(BountyResponse):
    answers: list[AnswerResponse] = []


class AcceptAnswerResponse(BaseModel):
    bounty_id: int
    answer_id: int
    status: str
    solved_by: int
    reward_xp: int


class CancelBountyResponse(BaseModel):
    bounty_id: int
    refunded_xp: int


class AnswerCommentResponse(BaseModel):
    id: int
    answer_id: int
    content: str
    created_at: datetime
    author_id: int
    username: str


class AnswerCommentListResponse(BaseModel):
    comments: list[AnswerCommentResponse]
