"""Question version controller.

Every edit or rollback writes a new QuestionVersion numbered from the
latest stored version, flips the previous active version off and mirrors
the new content onto the question, all in one content-store transaction.
Rollback never revives an old row: it copies it forward.
"""
from __future__ import annotations

import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from qaguard.cache import content_key, invalidate_question, version_history_key, version_key
from qaguard.db.content_tables import QuestionRow, QuestionVersionRow
from qaguard.errors import Conflict, InvalidState, NotFound, PermissionDenied
from qaguard.models.moderation import ContentType, EditedBy
from qaguard.queue.broker import enqueue_committed
from qaguard.queue.jobs import ContentModerationJob, QuestionVersionJob

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def same_tags(a: Optional[Iterable[str]], b: Optional[Iterable[str]]) -> bool:
    return set(a or []) == set(b or [])


def question_payload(question: QuestionRow) -> dict:
    return {
        "id": question.id,
        "userId": question.user_id,
        "title": question.title,
        "body": question.body,
        "tags": list(question.tags or []),
        "currentVersion": question.current_version,
        "moderationStatus": question.moderation_status.value,
        "isActive": bool(question.is_active),
        "createdAt": question.created_at.isoformat() if question.created_at else None,
    }


def version_payload(version: QuestionVersionRow) -> dict:
    return {
        "questionId": version.question_id,
        "version": version.version,
        "title": version.title,
        "body": version.body,
        "tags": list(version.tags or []),
        "editedBy": version.edited_by.value,
        "editorId": version.editor_id,
        "basedOnVersion": version.based_on_version,
        "isActive": bool(version.is_active),
        "supersededByRollback": bool(version.superseded_by_rollback),
        "moderationStatus": version.moderation_status.value,
    }


async def _active_version(session, question_id: str) -> Optional[QuestionVersionRow]:
    result = await session.execute(
        select(QuestionVersionRow)
        .where(QuestionVersionRow.question_id == question_id)
        .where(QuestionVersionRow.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def _editable_question(session, question_id: str, editor_id: Optional[str], edited_by: EditedBy) -> QuestionRow:
    question = await session.get(QuestionRow, question_id)
    if question is None or question.is_deleted:
        raise NotFound(f"Question {question_id} not found")
    if not question.is_active:
        raise InvalidState(f"Question {question_id} is not active")
    if edited_by == EditedBy.USER and question.user_id != editor_id:
        raise PermissionDenied("Only the author can edit this question")
    return question


async def _record_version(
    session,
    question: QuestionRow,
    *,
    title: str,
    body: str,
    tags: list[str],
    edited_by: EditedBy,
    editor_id: Optional[str],
    based_on: int,
) -> QuestionVersionRow:
    latest = (await session.execute(
        select(func.max(QuestionVersionRow.version)).where(QuestionVersionRow.question_id == question.id)
    )).scalar()
    number = max(latest or 0, question.current_version or 0) + 1

    await session.execute(
        update(QuestionVersionRow)
        .where(QuestionVersionRow.question_id == question.id)
        .where(QuestionVersionRow.is_active.is_(True))
        .values(is_active=False)
    )
    version = QuestionVersionRow(
        question_id=question.id,
        version=number,
        title=title,
        body=body,
        tags=list(tags),
        edited_by=edited_by,
        editor_id=editor_id,
        based_on_version=based_on,
        is_active=True,
    )
    session.add(version)

    question.title = title
    question.body = body
    question.tags = list(tags)
    question.current_version = number
    await session.flush()
    return version


async def _commit_version(ctx, work) -> Optional[QuestionVersionRow]:
    """Run `work(session)` in a content transaction, then queue moderation for the new version."""
    try:
        async with ctx.content_db() as session:
            async with session.begin():
                version = await work(session)
    except IntegrityError as exc:
        raise Conflict("Question was modified concurrently", retry_after=1) from exc
    if version is None:
        return None

    await invalidate_question(ctx.cache, version.question_id, version.version)
    await enqueue_committed(
        ctx.db,
        ContentModerationJob(
            content_id=version.question_id, content_type=ContentType.QUESTION, version=version.version,
        ),
        max_attempts=ctx.job_max_attempts,
    )
    return version


def new_question(user_id: str, title: str, body: str, tags: list[str]) -> tuple[QuestionRow, QuestionVersionRow]:
    """A question and its version 1, ready to add to one session."""
    question = QuestionRow(
        id=str(uuid.uuid4()), user_id=user_id, title=title, body=body, tags=list(tags), current_version=1,
    )
    first = QuestionVersionRow(
        question_id=question.id,
        version=1,
        title=title,
        body=body,
        tags=list(tags),
        edited_by=EditedBy.USER,
        editor_id=user_id,
        based_on_version=1,
        is_active=True,
    )
    return question, first


async def edit_question(
    ctx,
    question_id: str,
    editor_id: Optional[str],
    *,
    title: Optional[str] = None,
    body: Optional[str] = None,
    tags: Optional[list[str]] = None,
    edited_by: EditedBy = EditedBy.USER,
) -> QuestionVersionRow:
    async def work(session):
        question = await _editable_question(session, question_id, editor_id, edited_by)
        active = await _active_version(session, question_id)
        new_title = title if title is not None else active.title
        new_body = body if body is not None else active.body
        new_tags = tags if tags is not None else list(active.tags or [])
        if new_title == active.title and new_body == active.body and same_tags(new_tags, active.tags):
            raise InvalidState("Nothing changed: title, body and tags match the current version")
        return await _record_version(
            session, question,
            title=new_title, body=new_body, tags=new_tags,
            edited_by=edited_by, editor_id=editor_id, based_on=active.version,
        )

    version = await _commit_version(ctx, work)
    logger.info("Question %s edited -> v%d", question_id, version.version)
    return version


async def rollback_question(ctx, question_id: str, target_version: int, editor_id: Optional[str]) -> QuestionVersionRow:
    async def work(session):
        question = await _editable_question(session, question_id, editor_id, EditedBy.USER)
        if target_version >= question.current_version:
            raise InvalidState(
                f"Can only roll back to a version before {question.current_version}, got {target_version}"
            )
        source = (await session.execute(
            select(QuestionVersionRow)
            .where(QuestionVersionRow.question_id == question_id)
            .where(QuestionVersionRow.version == target_version)
        )).scalar_one_or_none()
        if source is None:
            raise NotFound(f"Question {question_id} has no version {target_version}")
        if source.is_active:
            raise InvalidState(f"Version {target_version} is already active")

        await session.execute(
            update(QuestionVersionRow)
            .where(QuestionVersionRow.question_id == question_id)
            .where(QuestionVersionRow.version > target_version)
            .values(superseded_by_rollback=True)
        )
        return await _record_version(
            session, question,
            title=source.title, body=source.body, tags=list(source.tags or []),
            edited_by=EditedBy.USER, editor_id=editor_id, based_on=target_version,
        )

    version = await _commit_version(ctx, work)
    logger.info("Question %s rolled back to v%d as v%d", question_id, target_version, version.version)
    return version


async def record_version_from_job(ctx, job: QuestionVersionJob) -> Optional[QuestionVersionRow]:
    """Apply a queued version. Identical content is a no-op."""
    async def work(session):
        question = await _editable_question(session, job.question_id, job.editor_id, job.edited_by)
        active = await _active_version(session, job.question_id)
        if active.title == job.title and active.body == job.body and same_tags(active.tags, job.tags):
            logger.info("Queued version for question %s matches v%d", job.question_id, active.version)
            return None
        return await _record_version(
            session, question,
            title=job.title, body=job.body, tags=job.tags,
            edited_by=job.edited_by, editor_id=job.editor_id, based_on=active.version,
        )

    return await _commit_version(ctx, work)


async def get_question(ctx, question_id: str) -> dict:
    key = content_key(question_id)
    cached = await ctx.cache.get(key)
    if cached is not None:
        return cached
    async with ctx.content_db() as session:
        question = await session.get(QuestionRow, question_id)
    if question is None or question.is_deleted:
        raise NotFound(f"Question {question_id} not found")
    payload = question_payload(question)
    await ctx.cache.set(key, payload)
    return payload


async def get_version(ctx, question_id: str, version: int) -> dict:
    key = version_key(question_id, version)
    cached = await ctx.cache.get(key)
    if cached is not None:
        return cached
    async with ctx.content_db() as session:
        row = (await session.execute(
            select(QuestionVersionRow)
            .where(QuestionVersionRow.question_id == question_id)
            .where(QuestionVersionRow.version == version)
        )).scalar_one_or_none()
    if row is None:
        raise NotFound(f"Question {question_id} has no version {version}")
    payload = version_payload(row)
    await ctx.cache.set(key, payload)
    return payload


async def list_versions(ctx, question_id: str, cursor: Optional[int] = None, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    """Newest first. `cursor` is an exclusive upper bound on the version number."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    key = version_history_key(question_id, cursor, limit)
    cached = await ctx.cache.get(key)
    if cached is not None:
        return cached

    async with ctx.content_db() as session:
        question = await session.get(QuestionRow, question_id)
        if question is None or question.is_deleted:
            raise NotFound(f"Question {question_id} not found")
        stmt = select(QuestionVersionRow).where(QuestionVersionRow.question_id == question_id)
        if cursor is not None:
            stmt = stmt.where(QuestionVersionRow.version < cursor)
        rows = (await session.execute(stmt.order_by(QuestionVersionRow.version.desc()).limit(limit))).scalars().all()

    page = {
        "items": [version_payload(r) for r in rows],
        "nextCursor": rows[-1].version if len(rows) == limit else None,
    }
    await ctx.cache.set(key, page)
    return page
