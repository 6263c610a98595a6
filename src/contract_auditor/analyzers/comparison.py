from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from contract_auditor.models.analysis import AnalysisResult, ComparisonReport
from contract_auditor.models.finding import FindingCategory, Severity

TREND_THRESHOLD = 5

ComparableInput = Union[AnalysisResult, Dict[str, Any], str]


@dataclass
class AuditSnapshot:
    success: bool
    contract_name: str
    scores: Dict[str, int]
    severities: List[Severity] = field(default_factory=list)
    error: Optional[str] = None

    def count(self, severity: Severity) -> int:
        return sum(1 for item in self.severities if item == severity)


def snapshot_from_result(result: AnalysisResult) -> AuditSnapshot:
    card = result.score_card
    return AuditSnapshot(
        success=result.success,
        contract_name=result.contract_name,
        scores={
            "overall": card.overall,
            "security": card.security,
            "gasOptimization": card.gas_optimization,
            "codeQuality": card.code_quality,
        },
        severities=[
            finding.severity
            for finding in result.reconciled.findings
            if finding.category == FindingCategory.SECURITY
        ],
        error=result.error,
    )


def snapshot_from_report(report: Dict[str, Any]) -> AuditSnapshot:
    """Build a snapshot from a persisted machine-readable report.

    Accepts the parsed report body, a report-map entry (``{"content": ...}``)
    or the raw JSON text.
    """
    if "data" in report and isinstance(report["data"], dict):
        report = report["data"]
    elif "content" in report and isinstance(report["content"], str):
        report = json.loads(report["content"])
    if "scores" not in report or "findings" not in report:
        return AuditSnapshot(
            success=False,
            contract_name=str((report.get("metadata") or {}).get("contractName") or "Contract"),
            scores={},
            error=str(report.get("error") or "report is not a machine-readable audit report"),
        )
    security = (report.get("findings") or {}).get("security") or {}
    if isinstance(security, dict):
        items = [item for group in security.values() for item in group or []]
    else:
        items = list(security)
    scores = report.get("scores") or {}
    return AuditSnapshot(
        success=True,
        contract_name=str((report.get("metadata") or {}).get("contractName") or "Contract"),
        scores={key: int(scores.get(key) or 0) for key in ("overall", "security", "gasOptimization", "codeQuality")},
        severities=[Severity.parse(item.get("severity")) for item in items if isinstance(item, dict)],
    )


def to_snapshot(value: ComparableInput) -> AuditSnapshot:
    if isinstance(value, AnalysisResult):
        return snapshot_from_result(value)
    if isinstance(value, str):
        return snapshot_from_report(json.loads(value))
    return snapshot_from_report(value)


def compare_results(previous: ComparableInput, current: ComparableInput) -> ComparisonReport:
    try:
        prev = to_snapshot(previous)
        curr = to_snapshot(current)
    except (ValueError, TypeError, AttributeError) as exc:
        return ComparisonReport(success=False, error=f"Cannot read audit result: {exc}")
    if not prev.success or not curr.success:
        return ComparisonReport(
            success=False,
            contract_name=curr.contract_name,
            error="Cannot compare failed audits",
        )

    score_delta = {key: curr.scores[key] - prev.scores[key] for key in curr.scores}
    finding_delta = {
        "previousTotal": len(prev.severities),
        "currentTotal": len(curr.severities),
        "difference": len(curr.severities) - len(prev.severities),
        "critical": {"previous": prev.count(Severity.CRITICAL), "current": curr.count(Severity.CRITICAL)},
        "high": {"previous": prev.count(Severity.HIGH), "current": curr.count(Severity.HIGH)},
    }
    trend = classify_trend(score_delta["overall"])
    return ComparisonReport(
        success=True,
        contract_name=curr.contract_name,
        score_delta=score_delta,
        finding_delta=finding_delta,
        trend=trend,
        key_changes=_key_changes(score_delta, finding_delta),
        recommendations=_comparison_recommendations(trend, score_delta, finding_delta),
    )


def classify_trend(overall_delta: int) -> str:
    if overall_delta > TREND_THRESHOLD:
        return "IMPROVED"
    if overall_delta < -TREND_THRESHOLD:
        return "DEGRADED"
    return "STABLE"


def _key_changes(score_delta: Dict[str, int], finding_delta: Dict[str, Any]) -> List[str]:
    changes = []
    security = score_delta["security"]
    if security:
        direction = "improved" if security > 0 else "decreased"
        changes.append(f"Security score {direction} by {abs(security)} points")
    critical = finding_delta["critical"]
    if critical["current"] != critical["previous"]:
        direction = "increased" if critical["current"] > critical["previous"] else "decreased"
        changes.append(f"Critical findings {direction} from {critical['previous']} to {critical['current']}")
    difference = finding_delta["difference"]
    if difference:
        direction = "increased" if difference > 0 else "decreased"
        changes.append(f"Total findings {direction} by {abs(difference)}")
    return changes


def _comparison_recommendations(
    trend: str,
    score_delta: Dict[str, int],
    finding_delta: Dict[str, Any],
) -> List[Dict[str, str]]:
    recommendations = []
    if trend == "DEGRADED":
        recommendations.append({
            "priority": "HIGH",
            "action": "Investigate security regression",
            "description": "The overall security posture has declined since the last audit",
        })
    critical = finding_delta["critical"]
    if critical["current"] > critical["previous"]:
        recommendations.append({
            "priority": "CRITICAL",
            "action": "Address new critical vulnerabilities",
            "description": f"{critical['current'] - critical['previous']} new critical issues detected",
        })
    if score_delta["security"] > 10:
        recommendations.append({
            "priority": "LOW",
            "action": "Maintain security improvements",
            "description": "Security score has significantly improved; continue current practices",
        })
    if score_delta["gasOptimization"] < -10:
        recommendations.append({
            "priority": "MEDIUM",
            "action": "Review gas optimization regression",
            "description": "Gas optimization score has declined; review recent changes",
        })
    return recommendations
