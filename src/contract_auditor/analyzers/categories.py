from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from contract_auditor.models.finding import Finding

_CATEGORY_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("Access Control", ("access", "permission", "owner")),
    ("Reentrancy", ("reentrancy", "callback")),
    ("Integer Overflow/Underflow", ("overflow", "underflow", "integer")),
    ("External Calls", ("call", "external")),
    ("DeFi Specific", ("defi", "liquidity", "swap")),
    ("Gas Optimization", ("gas", "optimization")),
]
OTHER = "Other"


def categorize_title(title: str) -> str:
    lowered = (title or "").lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return OTHER


def categorize_findings(findings: Iterable[Finding]) -> Dict[str, List[Finding]]:
    buckets: Dict[str, List[Finding]] = {name: [] for name, _ in _CATEGORY_KEYWORDS}
    buckets[OTHER] = []
    for finding in findings:
        buckets[categorize_title(finding.title)].append(finding)
    return buckets
