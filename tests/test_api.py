"""API tests — thin HTTP surface over the services."""
from __future__ import annotations

import pytest

from qaguard.models.moderation import ReportDecision
from qaguard.services.mod_points import mod_points_key
from tests.conftest import auth_headers, run_jobs


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["db"] == "connected"
    assert data["content_db"] == "connected"


@pytest.mark.asyncio
async def test_auth_required(client):
    resp = await client.post("/api/v1/questions", json={"title": "t", "body": "b"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Authentication required"

    resp = await client.post(
        "/api/v1/questions", json={"title": "t", "body": "b"}, headers={"Authorization": "Bearer not.a.token"},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_question_lifecycle(client, author):
    headers = auth_headers(author.id)
    resp = await client.post(
        "/api/v1/questions", json={"title": "Sorting", "body": "How?", "tags": ["py"]}, headers=headers,
    )
    assert resp.status_code == 201
    question = resp.json()
    assert question["currentVersion"] == 1
    assert question["moderationStatus"] == "PENDING"

    resp = await client.patch(f"/api/v1/questions/{question['id']}", json={"body": "How, exactly?"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["version"] == 2

    resp = await client.patch(f"/api/v1/questions/{question['id']}", json={"tags": ["py"]}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_state"

    resp = await client.post(f"/api/v1/questions/{question['id']}/rollback", json={"version": 2}, headers=headers)
    assert resp.status_code == 400

    resp = await client.post(f"/api/v1/questions/{question['id']}/rollback", json={"version": 1}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["version"] == 3
    assert resp.json()["basedOnVersion"] == 1

    resp = await client.get(f"/api/v1/questions/{question['id']}/versions")
    assert [v["version"] for v in resp.json()["items"]] == [3, 2, 1]

    resp = await client.get(f"/api/v1/questions/{question['id']}")
    assert resp.json()["body"] == "How?"


@pytest.mark.asyncio
async def test_unknown_question_404(client):
    resp = await client.get("/api/v1/questions/nope")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_other_user_cannot_edit(client, author, reporter):
    resp = await client.post(
        "/api/v1/questions", json={"title": "Mine", "body": "Body"}, headers=auth_headers(author.id),
    )
    qid = resp.json()["id"]
    resp = await client.patch(f"/api/v1/questions/{qid}", json={"title": "Yours"}, headers=auth_headers(reporter.id))
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"


@pytest.mark.asyncio
async def test_report_and_review_flow(client, ctx, author, reporter, admin):
    ctx.oracle.flag("borderline", harassment=0.3)
    resp = await client.post(
        "/api/v1/questions", json={"title": "Q", "body": "Body"}, headers=auth_headers(author.id),
    )
    qid = resp.json()["id"]
    resp = await client.post(
        f"/api/v1/questions/{qid}/answers", json={"body": "a borderline answer"}, headers=auth_headers(author.id),
    )
    assert resp.status_code == 201
    answer_id = resp.json()["id"]

    resp = await client.post("/api/v1/reports", json={
        "targetId": answer_id, "targetUserId": author.id, "targetType": "Answer",
        "reportReason": "HARASSMENT", "reportComment": "Not nice",
    }, headers=auth_headers(reporter.id))
    assert resp.status_code == 201
    report_id = resp.json()["id"]

    # severity 30 is below every report threshold, so the report goes to review
    await run_jobs(ctx)

    resp = await client.get("/api/v1/reports/review", headers=auth_headers(reporter.id))
    assert resp.status_code == 403

    resp = await client.get("/api/v1/reports/review", headers=auth_headers(admin.id))
    assert [r["id"] for r in resp.json()["reports"]] == [report_id]

    resp = await client.post(
        f"/api/v1/reports/{report_id}/resolve", json={"action": "BAN_USER_TEMP", "reasons": ["abusive"]},
        headers=auth_headers(admin.id),
    )
    assert resp.status_code == 400
    assert "banDurationMs" in resp.json()["message"]

    resp = await client.post(
        f"/api/v1/reports/{report_id}/resolve",
        json={"action": "BAN_USER_TEMP", "reasons": ["abusive"], "banDurationMs": 3600 * 1000},
        headers=auth_headers(admin.id),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "RESOLVED"

    resp = await client.get("/api/v1/me/ban", headers=auth_headers(author.id))
    assert resp.json()["ban"]["banType"] == "TEMP"

    resp = await client.post("/api/v1/me/activate", headers=auth_headers(author.id))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_cooldown_returns_429(client, ctx, admin):
    await ctx.counters.incr_with_ttl(mod_points_key(admin.id), ctx.mod_points_limit, ctx.mod_points_window)
    resp = await client.post(
        "/api/v1/reports/whatever/resolve", json={"action": ReportDecision.IGNORE.value},
        headers=auth_headers(admin.id),
    )
    assert resp.status_code == 429
    assert resp.json()["error"] == "cooldown"
    assert int(resp.headers["Retry-After"]) > 0


@pytest.mark.asyncio
async def test_invalid_report_comment_422(client, reporter):
    resp = await client.post("/api/v1/reports", json={
        "targetId": "x", "targetUserId": "y", "targetType": "Answer", "reportReason": "SPAM", "reportComment": "no",
    }, headers=auth_headers(reporter.id))
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_warnings_endpoint(client, ctx, author):
    ctx.oracle.flag("rude", harassment=0.3)
    await client.post("/api/v1/questions", json={"title": "Q", "body": "rude"}, headers=auth_headers(author.id))
    await run_jobs(ctx)

    resp = await client.get("/api/v1/me/warnings", headers=auth_headers(author.id))
    warnings = resp.json()["warnings"]
    assert len(warnings) == 1
    assert warnings[0]["delivered"] is True

    resp = await client.post(f"/api/v1/me/warnings/{warnings[0]['id']}/ack", headers=auth_headers(author.id))
    assert resp.json()["seen"] is True
    resp = await client.get("/api/v1/me/warnings", headers=auth_headers(author.id))
    assert resp.json()["warnings"] == []
