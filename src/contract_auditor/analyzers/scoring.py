from __future__ import annotations

import math
from typing import Dict, Iterable, Optional

from contract_auditor.models.analysis import ScoreCard
from contract_auditor.models.finding import Finding, FindingCategory, Severity

SEVERITY_PENALTIES = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 8,
}
SCORE_WEIGHTS = {"security": 0.6, "gas": 0.2, "quality": 0.2}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def security_score(critical: int, high: int, medium: int) -> int:
    penalty = (
        SEVERITY_PENALTIES[Severity.CRITICAL] * critical
        + SEVERITY_PENALTIES[Severity.HIGH] * high
        + SEVERITY_PENALTIES[Severity.MEDIUM] * medium
    )
    return max(0, 100 - penalty)


def gas_score(gas_findings: int) -> int:
    if gas_findings == 0:
        return 85
    return max(60, 95 - 5 * gas_findings)


def quality_score(quality_findings: int) -> int:
    if quality_findings == 0:
        return 90
    return max(60, 95 - 3 * quality_findings)


def overall_score(security: int, gas: int, quality: int) -> int:
    return round_half_up(
        SCORE_WEIGHTS["security"] * security
        + SCORE_WEIGHTS["gas"] * gas
        + SCORE_WEIGHTS["quality"] * quality
    )


def risk_level(critical: int, high: int, security: int) -> str:
    if critical > 0:
        return "Critical Risk"
    if high > 1:
        return "High Risk"
    if high >= 1 or security < 70:
        return "Medium Risk"
    if security >= 85:
        return "Safe"
    return "Low Risk"


def risk_label_from_score(score: float) -> str:
    """Coarse label used when only an average score is available."""
    if score >= 80:
        return "Low Risk"
    if score >= 60:
        return "Medium Risk"
    return "High Risk"


class ScoringEngine:
    """Turns reconciled and pattern findings into a ScoreCard.

    Security counts come from security-category findings. Pattern findings
    always count toward the gas and quality tallies; their severities only
    feed the security score when ``include_pattern_severity`` is set.
    """

    def __init__(self, include_pattern_severity: bool = False) -> None:
        self.include_pattern_severity = include_pattern_severity

    def score(
        self,
        reconciled_findings: Iterable[Finding],
        pattern_findings: Optional[Iterable[Finding]] = None,
    ) -> ScoreCard:
        reconciled = list(reconciled_findings)
        patterns = list(pattern_findings or [])

        security_pool = [f for f in reconciled if f.category == FindingCategory.SECURITY]
        if self.include_pattern_severity:
            security_pool.extend(f for f in patterns if f.category == FindingCategory.SECURITY)
        counts = _severity_counts(security_pool)

        combined = reconciled + patterns
        gas_count = sum(1 for f in combined if f.category == FindingCategory.GAS)
        quality_count = sum(1 for f in combined if f.category == FindingCategory.QUALITY)

        security = security_score(counts["critical"], counts["high"], counts["medium"])
        gas = gas_score(gas_count)
        quality = quality_score(quality_count)
        breakdown = dict(counts)
        breakdown["gas"] = gas_count
        breakdown["quality"] = quality_count
        return ScoreCard(
            security=security,
            gas_optimization=gas,
            code_quality=quality,
            overall=overall_score(security, gas, quality),
            risk_level=risk_level(counts["critical"], counts["high"], security),
            breakdown=breakdown,
        )


def _severity_counts(findings: Iterable[Finding]) -> Dict[str, int]:
    counts = {severity.value.lower(): 0 for severity in Severity}
    for finding in findings:
        counts[finding.severity.value.lower()] += 1
    return counts
