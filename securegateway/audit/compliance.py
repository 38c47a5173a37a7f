"""
Compliance analysis over a window of audit entries
"""
from datetime import datetime
from typing import Dict, Iterable

from .models import HIGH_THREAT_DETECTED, SECURITY_VIOLATION, AuditLogEntry, ComplianceReport

HIGH_THREAT_SCORE = 0.7

VIOLATION_PENALTY = 5
HIGH_THREAT_PENALTY = 3
FAILURE_PENALTY = 2

HIGH_THREAT_RECOMMENDATION = (
    "High number of high-threat events detected. Review security policies and threat detection thresholds."
)
VIOLATION_RECOMMENDATION = (
    "Frequent security violations detected. Consider additional input validation and user guidance."
)
FAILURE_RECOMMENDATION = "High failure rate detected. Review system configuration and caller permissions."
NOMINAL_RECOMMENDATION = "System appears to be operating within normal compliance parameters."


def is_high_threat(entry: AuditLogEntry) -> bool:
    return entry.threat_score > HIGH_THREAT_SCORE or entry.action == HIGH_THREAT_DETECTED


def entry_penalty(entry: AuditLogEntry) -> int:
    """Each entry is penalised once: violation, else high threat, else failure"""
    if entry.action == SECURITY_VIOLATION:
        return VIOLATION_PENALTY
    if is_high_threat(entry):
        return HIGH_THREAT_PENALTY
    if not entry.success:
        return FAILURE_PENALTY
    return 0


def threat_bucket(score: float) -> str:
    if score <= 0.3:
        return "low"
    if score <= 0.7:
        return "medium"
    if score <= 0.9:
        return "high"
    return "critical"


def analyze(entries: Iterable[AuditLogEntry], start: datetime, end: datetime) -> ComplianceReport:
    """Build a compliance report in a single pass over the entries"""
    total = violations = high_threats = activity = failures = penalty = 0
    by_action: Dict[str, int] = {}
    by_caller: Dict[str, int] = {}
    distribution = {"low": 0, "medium": 0, "high": 0, "critical": 0}
    levels = {"low": 0, "medium": 0, "high": 0, "critical": 0}

    for entry in entries:
        total += 1
        if entry.action == SECURITY_VIOLATION:
            violations += 1
        if is_high_threat(entry):
            high_threats += 1
        if entry.action.startswith(("ai_", "user_")):
            activity += 1
        if not entry.success:
            failures += 1
        penalty += entry_penalty(entry)

        by_action[entry.action] = by_action.get(entry.action, 0) + 1
        by_caller[entry.caller_id] = by_caller.get(entry.caller_id, 0) + 1
        distribution[threat_bucket(entry.threat_score)] += 1
        levels[entry.security_level.value] += 1

    recommendations = []
    if high_threats > 10:
        recommendations.append(HIGH_THREAT_RECOMMENDATION)
    if violations > 20:
        recommendations.append(VIOLATION_RECOMMENDATION)
    if failures > total * 0.1:
        recommendations.append(FAILURE_RECOMMENDATION)
    if not recommendations:
        recommendations.append(NOMINAL_RECOMMENDATION)

    return ComplianceReport(
        start=start,
        end=end,
        total_events=total,
        security_violations=violations,
        high_threat_events=high_threats,
        user_activity=activity,
        compliance_score=max(100 - penalty, 0),
        events_by_action=by_action,
        events_by_caller=by_caller,
        threat_score_distribution=distribution,
        security_level_breakdown=levels,
        recommendations=recommendations,
    )
