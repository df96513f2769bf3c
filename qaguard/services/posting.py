"""Content creation entry points. Each new item is queued for moderation."""
from __future__ import annotations

import logging

from qaguard.cache import invalidate_question
from qaguard.db.content_tables import AnswerRow, QuestionRow, ReplyRow
from qaguard.errors import InvalidState, NotFound, PermissionDenied
from qaguard.models.moderation import ContentType
from qaguard.queue.broker import enqueue_committed
from qaguard.queue.jobs import ContentModerationJob
from qaguard.services.enforcer import get_active_ban
from qaguard.services.versioning import new_question

logger = logging.getLogger(__name__)


async def ensure_can_post(ctx, user_id: str) -> None:
    """Users serving a ban cannot post. Expired TEMP bans no longer count."""
    ban = await get_active_ban(ctx, user_id)
    if ban is not None:
        raise PermissionDenied(f"Account is banned ({ban.ban_type.value})")


async def _queue_moderation(ctx, content_type: ContentType, content_id: str, version: int | None = None) -> None:
    await enqueue_committed(
        ctx.db,
        ContentModerationJob(content_id=content_id, content_type=content_type, version=version),
        max_attempts=ctx.job_max_attempts,
    )


async def create_question(ctx, user_id: str, title: str, body: str, tags: list[str] | None = None) -> QuestionRow:
    await ensure_can_post(ctx, user_id)
    async with ctx.content_db() as session:
        async with session.begin():
            question, first = new_question(user_id, title, body, tags or [])
            session.add(question)
            await session.flush()
            session.add(first)
    await invalidate_question(ctx.cache, question.id)
    await _queue_moderation(ctx, ContentType.QUESTION, question.id, version=1)
    logger.info("Question %s created by %s", question.id, user_id)
    return question


async def create_answer(ctx, user_id: str, question_id: str, body: str) -> AnswerRow:
    await ensure_can_post(ctx, user_id)
    async with ctx.content_db() as session:
        async with session.begin():
            question = await session.get(QuestionRow, question_id)
            if question is None or question.is_deleted:
                raise NotFound(f"Question {question_id} not found")
            if not question.is_active:
                raise InvalidState(f"Question {question_id} is not accepting answers")
            answer = AnswerRow(
                question_id=question_id, user_id=user_id, body=body, question_version=question.current_version,
            )
            session.add(answer)
    await _queue_moderation(ctx, ContentType.ANSWER, answer.id)
    return answer


async def create_reply(ctx, user_id: str, answer_id: str, body: str) -> ReplyRow:
    await ensure_can_post(ctx, user_id)
    async with ctx.content_db() as session:
        async with session.begin():
            answer = await session.get(AnswerRow, answer_id)
            if answer is None or answer.is_deleted:
                raise NotFound(f"Answer {answer_id} not found")
            if not answer.is_active:
                raise InvalidState(f"Answer {answer_id} is not accepting replies")
            reply = ReplyRow(answer_id=answer_id, user_id=user_id, body=body)
            session.add(reply)
    await _queue_moderation(ctx, ContentType.REPLY, reply.id)
    return reply
