"""Tests for folding oracle verdicts into risk assessments."""
from __future__ import annotations

import asyncio

import pytest

from qaguard.models.moderation import OracleResult
from qaguard.services.risk_scorer import assess, compose_text, score_text


def test_unflagged_text_is_clean():
    result = assess(OracleResult(flagged=False, category_scores={"harassment": 0.2}))
    assert result.confidence == 1.0
    assert result.severity == 0
    assert result.reasons == ["No violations detected"]
    assert result.degraded is False


def test_hate_group_scaled_by_100():
    result = assess(OracleResult(flagged=True, category_scores={"harassment": 0.8, "hate": 0.4}))
    assert result.severity == 80
    assert result.confidence == pytest.approx(0.8)
    assert result.reasons == ["Hate/Harassment detected"]


def test_violence_group_scaled_by_120_and_capped():
    result = assess(OracleResult(flagged=True, category_scores={"violence": 0.9}))
    assert result.severity == 100
    assert result.confidence == pytest.approx(0.9)
    assert result.reasons == ["Inappropriate/Violent content detected"]


def test_severity_is_max_of_both_groups():
    result = assess(OracleResult(flagged=True, category_scores={"hate": 0.5, "sexual": 0.5}))
    assert result.severity == 60
    assert len(result.reasons) == 2


def test_flagged_without_scores_defaults_to_50():
    result = assess(OracleResult(flagged=True))
    assert result.severity == 50
    assert result.confidence == 0.0
    assert result.reasons == ["Flagged but unclear"]


def test_compose_text():
    assert compose_text("body", "title") == "Title: title\nBody: body"
    assert compose_text("body") == "Body: body"


class _BrokenOracle:
    async def moderate(self, text):
        raise RuntimeError("upstream 500")


class _SlowOracle:
    async def moderate(self, text):
        await asyncio.sleep(1)
        return OracleResult(flagged=False)


@pytest.mark.asyncio
async def test_oracle_error_fails_safe():
    result = await score_text(_BrokenOracle(), "anything")
    assert result.degraded is True
    assert result.confidence == 0
    assert result.severity == 50
    assert result.reasons == []


@pytest.mark.asyncio
async def test_oracle_timeout_fails_safe():
    result = await score_text(_SlowOracle(), "anything", timeout=0.01)
    assert result.degraded is True
    assert result.severity == 50
