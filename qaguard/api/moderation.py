"""Reports, moderator review queue and the user-facing ban/warning endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from qaguard.auth import get_context, require_admin, require_user
from qaguard.db.tables import UserRow
from qaguard.models.moderation import ContentType, ReportReason
from qaguard.services import enforcer, report_moderation, trust_ledger
from qaguard.services.report_moderation import ModerationAction, report_payload

router = APIRouter(prefix="/api/v1", tags=["moderation"])


class CreateReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_id: str = Field(alias="targetId")
    target_user_id: str = Field(alias="targetUserId")
    target_type: ContentType = Field(alias="targetType")
    report_reason: ReportReason = Field(alias="reportReason")
    report_comment: Optional[str] = Field(None, alias="reportComment", min_length=3, max_length=150)


@router.post("/reports", status_code=201)
async def file_report(req: CreateReportRequest, user: UserRow = Depends(require_user), ctx=Depends(get_context)):
    report = await report_moderation.create_report(
        ctx, user.id,
        target_id=req.target_id,
        target_user_id=req.target_user_id,
        target_type=req.target_type,
        reason=req.report_reason,
        comment=req.report_comment,
    )
    return report_payload(report)


@router.get("/reports/review")
async def review_queue(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    admin: UserRow = Depends(require_admin),
    ctx=Depends(get_context),
):
    """Reports the AI deferred to a human."""
    reports = await report_moderation.list_reports_for_review(ctx, limit=limit, offset=offset)
    return {"reports": [report_payload(r) for r in reports]}


@router.get("/reports/{report_id}")
async def get_report(report_id: str, admin: UserRow = Depends(require_admin), ctx=Depends(get_context)):
    return report_payload(await report_moderation.get_report(ctx, report_id))


@router.post("/reports/{report_id}/resolve")
async def resolve_report(
    report_id: str, action: ModerationAction, admin: UserRow = Depends(require_admin), ctx=Depends(get_context),
):
    report = await report_moderation.resolve_report(ctx, report_id, admin.id, action)
    return report_payload(report)


@router.get("/users/{user_id}/strikes")
async def user_strikes(user_id: str, admin: UserRow = Depends(require_admin), ctx=Depends(get_context)):
    async with ctx.db() as session:
        trust = await trust_ledger.read_trust(session, user_id)
        strikes = await trust_ledger.list_strikes(session, user_id)
    return {
        "totalStrikes": trust.total_strikes,
        "trustScore": trust.trust_score,
        "strikes": [
            {
                "id": s.id,
                "decision": s.ai_decision.value,
                "severity": s.severity,
                "riskScore": s.risk_score,
                "targetId": s.target_content_id,
                "targetType": s.target_type.value,
                "targetVersion": s.target_content_version,
                "strikedBy": s.striked_by.value,
            }
            for s in strikes
        ],
    }


# ---- Current user ----

@router.get("/me/ban")
async def my_ban(user: UserRow = Depends(require_user), ctx=Depends(get_context)):
    ban = await enforcer.get_active_ban(ctx, user.id)
    return {"ban": enforcer.ban_payload(ban) if ban else None}


@router.get("/me/warnings")
async def my_warnings(user: UserRow = Depends(require_user), ctx=Depends(get_context)):
    warnings = await enforcer.list_pending_warnings(ctx, user.id)
    return {"warnings": [enforcer.warning_payload(w) for w in warnings]}


@router.post("/me/warnings/{warning_id}/ack")
async def acknowledge_warning(warning_id: str, user: UserRow = Depends(require_user), ctx=Depends(get_context)):
    warning = await enforcer.acknowledge_warning(ctx, user.id, warning_id)
    return enforcer.warning_payload(warning)


@router.post("/me/activate")
async def activate(user: UserRow = Depends(require_user), ctx=Depends(get_context)):
    """Lift an expired suspension."""
    account = await enforcer.activate_account(ctx, user.id)
    return {"status": account.status.value}
