"""Questions, version history, answers and replies."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from qaguard.auth import get_context, require_user
from qaguard.db.tables import UserRow
from qaguard.services import posting, versioning

router = APIRouter(prefix="/api/v1", tags=["questions"])


class QuestionRequest(BaseModel):
    title: str = Field(min_length=1, max_length=150)
    body: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list, max_length=10)


class EditQuestionRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=150)
    body: Optional[str] = Field(None, min_length=1)
    tags: Optional[list[str]] = Field(None, max_length=10)


class RollbackRequest(BaseModel):
    version: int = Field(ge=1)


class BodyRequest(BaseModel):
    body: str = Field(min_length=1)


@router.post("/questions", status_code=201)
async def create_question(req: QuestionRequest, user: UserRow = Depends(require_user), ctx=Depends(get_context)):
    question = await posting.create_question(ctx, user.id, req.title, req.body, req.tags)
    return versioning.question_payload(question)


@router.get("/questions/{question_id}")
async def get_question(question_id: str, ctx=Depends(get_context)):
    return await versioning.get_question(ctx, question_id)


@router.patch("/questions/{question_id}")
async def edit_question(
    question_id: str, req: EditQuestionRequest, user: UserRow = Depends(require_user), ctx=Depends(get_context),
):
    version = await versioning.edit_question(
        ctx, question_id, user.id, title=req.title, body=req.body, tags=req.tags,
    )
    return versioning.version_payload(version)


@router.post("/questions/{question_id}/rollback")
async def rollback_question(
    question_id: str, req: RollbackRequest, user: UserRow = Depends(require_user), ctx=Depends(get_context),
):
    version = await versioning.rollback_question(ctx, question_id, req.version, user.id)
    return versioning.version_payload(version)


@router.get("/questions/{question_id}/versions")
async def list_versions(
    question_id: str,
    cursor: Optional[int] = Query(None, ge=1),
    limit: int = Query(versioning.DEFAULT_PAGE_SIZE, ge=1, le=versioning.MAX_PAGE_SIZE),
    ctx=Depends(get_context),
):
    return await versioning.list_versions(ctx, question_id, cursor=cursor, limit=limit)


@router.get("/questions/{question_id}/versions/{version}")
async def get_version(question_id: str, version: int, ctx=Depends(get_context)):
    return await versioning.get_version(ctx, question_id, version)


@router.post("/questions/{question_id}/answers", status_code=201)
async def create_answer(
    question_id: str, req: BodyRequest, user: UserRow = Depends(require_user), ctx=Depends(get_context),
):
    answer = await posting.create_answer(ctx, user.id, question_id, req.body)
    return {"id": answer.id, "questionId": answer.question_id, "moderationStatus": answer.moderation_status.value}


@router.post("/answers/{answer_id}/replies", status_code=201)
async def create_reply(
    answer_id: str, req: BodyRequest, user: UserRow = Depends(require_user), ctx=Depends(get_context),
):
    reply = await posting.create_reply(ctx, user.id, answer_id, req.body)
    return {"id": reply.id, "answerId": reply.answer_id, "moderationStatus": reply.moderation_status.value}
