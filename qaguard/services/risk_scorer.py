"""Risk scorer — content text -> {confidence, reasons, severity}.

Classification is delegated to an external moderation oracle. Category scores
are folded into two groups:
- Hate/harassment: max score x 100
- Sexual/violence: max score x 120, capped at 100

Severity is the larger of the two. Flagged text with no quantifiable
sub-score gets severity 50. Any oracle failure (timeout, HTTP error,
malformed body) fails safe: confidence 0, severity 50, no reasons, marked
`degraded` so callers escalate instead of acting on it.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import httpx

from qaguard.models.moderation import OracleResult, RiskAssessment

logger = logging.getLogger(__name__)

HATE_CATEGORIES = ("harassment", "harassment/threatening", "hate", "hate/threatening")
VIOLENCE_CATEGORIES = ("sexual", "sexual/minors", "violence", "violence/graphic")

HATE_SCALE = 100
VIOLENCE_SCALE = 120
UNCLEAR_SEVERITY = 50

FAILSAFE_SEVERITY = 50


class ModerationOracle(Protocol):
    async def moderate(self, text: str) -> OracleResult: ...


class OpenAIModerationOracle:
    """Client for an OpenAI-compatible /moderations endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        model: str = "omni-moderation-latest",
        timeout: float = 10.0,
    ):
        self.model = model
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
        )

    async def moderate(self, text: str) -> OracleResult:
        resp = await self.client.post("/moderations", json={"model": self.model, "input": text})
        resp.raise_for_status()
        result = resp.json()["results"][0]
        return OracleResult(
            flagged=bool(result["flagged"]),
            category_scores={k: float(v or 0) for k, v in (result.get("category_scores") or {}).items()},
        )

    async def aclose(self) -> None:
        await self.client.aclose()


def compose_text(body: str, title: Optional[str] = None) -> str:
    """Text submitted for scoring: title + body for questions, body alone otherwise."""
    if title is not None:
        return f"Title: {title}\nBody: {body}"
    return f"Body: {body}"


def failsafe_assessment() -> RiskAssessment:
    return RiskAssessment(confidence=0.0, reasons=[], severity=FAILSAFE_SEVERITY, degraded=True)


def assess(result: OracleResult) -> RiskAssessment:
    """Fold an oracle verdict into a risk assessment."""
    if not result.flagged:
        return RiskAssessment(confidence=1.0, reasons=["No violations detected"], severity=0)

    scores = result.category_scores
    confidence = 0.0
    severity = 0
    reasons: list[str] = []

    hate_score = max(scores.get(c, 0.0) for c in HATE_CATEGORIES)
    if hate_score > 0:
        confidence = max(confidence, hate_score)
        reasons.append("Hate/Harassment detected")
        severity = max(severity, round(hate_score * HATE_SCALE))

    violence_score = max(scores.get(c, 0.0) for c in VIOLENCE_CATEGORIES)
    if violence_score > 0:
        confidence = max(confidence, violence_score)
        reasons.append("Inappropriate/Violent content detected")
        severity = max(severity, round(violence_score * VIOLENCE_SCALE))

    if severity == 0:
        reasons.append("Flagged but unclear")
        severity = UNCLEAR_SEVERITY

    return RiskAssessment(
        confidence=min(confidence, 1.0),
        reasons=reasons,
        severity=min(severity, 100),
    )


async def score_text(oracle: ModerationOracle, text: str, timeout: float = 10.0) -> RiskAssessment:
    """Score text with a bounded wait; never raises."""
    try:
        result = await asyncio.wait_for(oracle.moderate(text), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Moderation oracle timed out after %.1fs — failing safe", timeout)
        return failsafe_assessment()
    except Exception:
        logger.warning("Moderation oracle call failed — failing safe", exc_info=True)
        return failsafe_assessment()
    return assess(result)
