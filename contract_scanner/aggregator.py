# contract_scanner/aggregator.py
"""
Risk aggregation.

- Score is the sum of fixed severity weights.
- The overall label follows a strict first-match order (Critical, High, Medium, Low, none).
- Category and severity counts always list every member, zero included.
"""

from dataclasses import dataclass
from typing import Dict, Sequence

from config import HIGH_RISK_MIN_HIGH, MEDIUM_RISK_MIN_HIGH, MEDIUM_RISK_MIN_MEDIUM, SEVERITY_WEIGHTS
from models import Category, Finding, Severity

NO_ISSUES = "No Issues Detected"
LOW_RISK = "Low Risk"
MEDIUM_RISK = "Medium Risk"
HIGH_RISK = "High Risk"
CRITICAL_RISK = "Critical Risk"

RISK_LABELS = [NO_ISSUES, LOW_RISK, MEDIUM_RISK, HIGH_RISK, CRITICAL_RISK]


def risk_rank(label: str) -> int:
    """0 for no issues up to 4 for critical risk."""
    return RISK_LABELS.index(label)


@dataclass(frozen=True)
class RiskSummary:
    score: int
    risk_label: str
    category_counts: Dict[str, int]
    severity_counts: Dict[str, int]


def score(findings: Sequence[Finding]) -> int:
    return sum(SEVERITY_WEIGHTS[f.severity.value] for f in findings)


def risk_label(severity_counts: Dict[str, int]) -> str:
    if severity_counts[Severity.CRITICAL.value] > 0:
        return CRITICAL_RISK
    high = severity_counts[Severity.HIGH.value]
    if high >= HIGH_RISK_MIN_HIGH:
        return HIGH_RISK
    if high >= MEDIUM_RISK_MIN_HIGH or severity_counts[Severity.MEDIUM.value] >= MEDIUM_RISK_MIN_MEDIUM:
        return MEDIUM_RISK
    if any(severity_counts.values()):
        return LOW_RISK
    return NO_ISSUES


def aggregate(findings: Sequence[Finding]) -> RiskSummary:
    categories = {c.value: 0 for c in Category}
    severities = {s.value: 0 for s in Severity}
    for f in findings:
        categories[f.category.value] += 1
        severities[f.severity.value] += 1
    return RiskSummary(
        score=score(findings),
        risk_label=risk_label(severities),
        category_counts=categories,
        severity_counts=severities,
    )
