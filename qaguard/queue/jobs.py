"""Job payload schemas — one tagged union, validated at dequeue time.

Payloads are stored with camelCase keys, matching what the API layer
enqueues:
    content-moderation   {contentId, contentType, version?}
    report-moderation    {reportId}
    question-versioning  {questionId, title, body, tags, editorId, version, basedOnVersion}
    moderation-metrics   {userId, decision, sourceKey}
"""
from __future__ import annotations

import hashlib
from typing import Annotated, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from qaguard.models.moderation import ContentDecision, ContentType, EditedBy

CONTENT_MODERATION_QUEUE = "content-moderation"
REPORT_MODERATION_QUEUE = "report-moderation"
QUESTION_VERSIONING_QUEUE = "question-versioning"
MODERATION_METRICS_QUEUE = "moderation-metrics"


class _Job(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    queue: ClassVar[str]

    def dedupe_key(self) -> str:
        raise NotImplementedError

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ContentModerationJob(_Job):
    queue: ClassVar[str] = CONTENT_MODERATION_QUEUE

    kind: Literal["content.moderate"] = "content.moderate"
    content_id: str
    content_type: ContentType
    version: Optional[int] = Field(default=None, ge=1)

    def dedupe_key(self) -> str:
        return f"content-moderation:{self.content_type.value}:{self.content_id}:{self.version or 0}"


class ReportModerationJob(_Job):
    queue: ClassVar[str] = REPORT_MODERATION_QUEUE

    kind: Literal["report.moderate"] = "report.moderate"
    report_id: str

    def dedupe_key(self) -> str:
        return f"report-moderation:{self.report_id}"


class QuestionVersionJob(_Job):
    queue: ClassVar[str] = QUESTION_VERSIONING_QUEUE

    kind: Literal["question.version"] = "question.version"
    question_id: str
    title: str = Field(min_length=1, max_length=150)
    body: str = Field(min_length=1)
    tags: list[str] = []
    editor_id: Optional[str] = None
    edited_by: EditedBy = EditedBy.USER
    # Advisory only; the handler numbers from the latest stored version
    version: Optional[int] = None
    based_on_version: Optional[int] = None

    def dedupe_key(self) -> str:
        digest = hashlib.sha256(
            "\x1f".join([self.title, self.body, ",".join(sorted(self.tags)), self.editor_id or ""]).encode()
        ).hexdigest()[:16]
        return f"question-version:{self.question_id}:{self.version or 0}:{digest}"


class TrustAdjustmentJob(_Job):
    queue: ClassVar[str] = MODERATION_METRICS_QUEUE

    kind: Literal["trust.adjust"] = "trust.adjust"
    user_id: str
    decision: ContentDecision
    source_key: str

    def dedupe_key(self) -> str:
        return f"trust:{self.source_key}"


Job = Annotated[
    Union[ContentModerationJob, ReportModerationJob, QuestionVersionJob, TrustAdjustmentJob],
    Field(discriminator="kind"),
]

_job_adapter: TypeAdapter = TypeAdapter(Job)


def parse_job(payload: dict) -> _Job:
    """Validate a stored payload. Raises pydantic.ValidationError on a bad shape."""
    return _job_adapter.validate_python(payload)
