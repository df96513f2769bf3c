"""Decision engine — policy constants and the formulas built on them.

riskScore = min(10, normSeverity x confidence x (1 + 0.25 x strikes) x (1 / max(trust, 0.01)) x 10)

Content pipeline:  >= 6.0 BAN_PERM, >= 3.0 BAN_TEMP, > 0 WARN, 0 IGNORE
Report pipeline:   severity >= 90 BAN_USER_PERM, >= 70 BAN_USER_TEMP,
                   >= 50 WARN_USER, > 0 UNCERTAIN, 0 IGNORE

The breakpoints and multiplier shapes are policy; tests pin them.
"""
from __future__ import annotations

import math

from qaguard.models.moderation import ContentDecision, ReportDecision

MAX_RISK_SCORE = 10.0
STRIKE_WEIGHT = 0.25
MIN_TRUST = 0.01

BAN_PERM_RISK = 6.0
BAN_TEMP_RISK = 3.0

REPORT_BAN_PERM_SEVERITY = 90
REPORT_BAN_TEMP_SEVERITY = 70
REPORT_WARN_SEVERITY = 50

# Temporary ban duration
TEMP_BAN_MIN_SEVERITY = 70
TEMP_BAN_BASE_DAYS = 3
TEMP_BAN_SEVERITY_SPAN = 30
TEMP_BAN_EXTRA_DAYS = 4
TEMP_BAN_CONFIDENCE_WEIGHT = 0.5
MS_PER_DAY = 24 * 60 * 60 * 1000


def _strike_multiplier(total_strikes: int) -> float:
    return 1 + STRIKE_WEIGHT * max(total_strikes, 0)


def _trust_multiplier(trust_score: float) -> float:
    return 1 / max(trust_score, MIN_TRUST)


def compute_risk_score(confidence: float, severity: float, total_strikes: int, trust_score: float) -> float:
    """Composite 0-10 risk from the assessment and the user's history."""
    normalized_severity = min(1.0, severity / 100)
    risk = (
        normalized_severity
        * confidence
        * _strike_multiplier(total_strikes)
        * _trust_multiplier(trust_score)
        * 10
    )
    return min(risk, MAX_RISK_SCORE)


def decide_content_action(risk_score: float) -> ContentDecision:
    if risk_score >= BAN_PERM_RISK:
        return ContentDecision.BAN_PERM
    if risk_score >= BAN_TEMP_RISK:
        return ContentDecision.BAN_TEMP
    if risk_score > 0:
        return ContentDecision.WARN
    return ContentDecision.IGNORE


def decide_report_action(severity: float) -> ReportDecision:
    if severity >= REPORT_BAN_PERM_SEVERITY:
        return ReportDecision.BAN_USER_PERM
    if severity >= REPORT_BAN_TEMP_SEVERITY:
        return ReportDecision.BAN_USER_TEMP
    if severity >= REPORT_WARN_SEVERITY:
        return ReportDecision.WARN_USER
    if severity > 0:
        return ReportDecision.UNCERTAIN
    return ReportDecision.IGNORE


def temp_ban_duration_ms(severity: float, confidence: float, total_strikes: int = 0, trust_score: float = 1.0) -> int:
    """Temporary ban length in milliseconds; 0 below severity 70.

    3 days at severity 70 rising linearly to 7 days at 100, then scaled by
    confidence, strike history and (inverse) trust.
    """
    if severity < TEMP_BAN_MIN_SEVERITY:
        return 0
    base_days = TEMP_BAN_BASE_DAYS + (severity - TEMP_BAN_MIN_SEVERITY) / TEMP_BAN_SEVERITY_SPAN * TEMP_BAN_EXTRA_DAYS
    adjusted_days = (
        base_days
        * (1 + TEMP_BAN_CONFIDENCE_WEIGHT * confidence)
        * _strike_multiplier(total_strikes)
        * _trust_multiplier(trust_score)
    )
    # round half up
    return math.floor(adjusted_days * MS_PER_DAY + 0.5)
