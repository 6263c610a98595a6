from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List

from contract_auditor.models.finding import Finding, FindingCategory, Severity

_DIGITS_RE = re.compile(r"\D")

_SECURITY_TIERS = (
    (
        Severity.CRITICAL,
        "Address Critical Security Vulnerabilities",
        "critical security vulnerabilities require immediate attention",
        "1-2 days",
        "Prevents potential fund loss and exploits",
    ),
    (
        Severity.HIGH,
        "Fix High-Severity Issues",
        "high-severity issues should be fixed before deployment",
        "1 day",
        "Reduces exposure to service disruption and financial loss",
    ),
    (
        Severity.MEDIUM,
        "Review Medium-Severity Issues",
        "medium-severity issues should be reviewed",
        "4-8 hours",
        "Hardens the contract against operational issues",
    ),
)


def build_recommendations(findings: Iterable[Finding]) -> List[Dict[str, Any]]:
    """Group findings into prioritized, actionable recommendations."""
    findings = list(findings)
    security = [f for f in findings if f.category == FindingCategory.SECURITY]
    gas = [f for f in findings if f.category == FindingCategory.GAS]
    quality = [f for f in findings if f.category == FindingCategory.QUALITY]

    recommendations: List[Dict[str, Any]] = []
    for severity, title, suffix, estimate, impact in _SECURITY_TIERS:
        matching = [f for f in security if f.severity == severity]
        if not matching:
            continue
        recommendations.append({
            "priority": severity.value,
            "category": "Security",
            "title": title,
            "description": f"{len(matching)} {suffix}",
            "actions": [f.recommendation or f"Review: {f.title}" for f in matching[:3]],
            "estimatedTime": estimate,
            "impact": impact,
        })

    if gas:
        savings = sum(_parse_savings(f.impact) for f in gas)
        recommendations.append({
            "priority": "MEDIUM",
            "category": "Gas Optimization",
            "title": "Implement Gas Optimizations",
            "description": f"{len(gas)} optimization opportunities identified",
            "actions": [f.title for f in gas[:3]],
            "estimatedTime": "4-8 hours",
            "impact": f"Estimated gas savings: {savings} gas units",
        })

    if quality:
        recommendations.append({
            "priority": "LOW",
            "category": "Code Quality",
            "title": "Improve Code Quality",
            "description": f"{len(quality)} code quality improvements recommended",
            "actions": [f.title for f in quality[:3]],
            "estimatedTime": "2-4 hours",
            "impact": "Improves maintainability and reduces future bugs",
        })
    return recommendations


def _parse_savings(text: str | None) -> int:
    digits = _DIGITS_RE.sub("", text or "")
    return int(digits) if digits else 0
