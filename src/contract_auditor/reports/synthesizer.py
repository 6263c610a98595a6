from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from contract_auditor.analyzers.categories import categorize_findings
from contract_auditor.errors import ReportGenerationFailure
from contract_auditor.models.analysis import REPORT_FORMATS, PatternScanResult, ScoreCard
from contract_auditor.models.finding import (
    Finding,
    FindingCategory,
    ReconciledFindingSet,
    Severity,
    SeverityScale,
)
from contract_auditor.observability.logger import EventLogger
from contract_auditor.reports.recommendations import build_recommendations
from contract_auditor.telemetry import span
from contract_auditor.utils.json_schema import validate_json

logger = logging.getLogger(__name__)

ReportMap = Dict[str, Dict[str, Any]]

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parents[1] / "schemas" / "MachineReadableReport.schema.json"
REPORT_VERSION = "2.0"

UNKNOWN_IMPACT = "Unknown impact"
UNKNOWN_LOCATION = "Unknown location"
NO_RECOMMENDATION = "No recommendation provided"
NO_DESCRIPTION = "No description available"
UNKNOWN_CONTRACT = "Unknown Contract"

LIKELIHOOD = {
    Severity.CRITICAL: "HIGH",
    Severity.HIGH: "MEDIUM",
    Severity.MEDIUM: "LOW",
    Severity.LOW: "LOW",
    Severity.INFO: "LOW",
}
BUSINESS_IMPACT = {
    Severity.CRITICAL: "Fund loss, protocol failure",
    Severity.HIGH: "Service disruption, financial loss",
    Severity.MEDIUM: "Operational issues, user experience degradation",
    Severity.LOW: "Minor operational concerns",
    Severity.INFO: "Minimal business impact",
}
RISK_WEIGHTS = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 8,
    Severity.LOW: 3,
}
REPUTATIONAL_RISK = {
    "Critical Risk": "HIGH - Serious security issues could damage reputation",
    "High Risk": "MEDIUM-HIGH - Security concerns may affect public trust",
    "Medium Risk": "MEDIUM - Some reputational considerations",
    "Low Risk": "LOW - Minimal reputational impact",
    "Safe": "VERY LOW - Strong security posture enhances reputation",
}
COMPLIANCE_STANDARDS = ["ERC-20", "ERC-721", "ERC-1155"]


@dataclass
class ReportContext:
    reconciled: ReconciledFindingSet
    score_card: ScoreCard
    metadata: Dict[str, Any]
    pattern_scan: PatternScanResult
    generated_at: str
    security: List[Finding] = field(default_factory=list)
    gas: List[Finding] = field(default_factory=list)
    quality: List[Finding] = field(default_factory=list)
    recommendations: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def contract_name(self) -> str:
        return str(self.metadata.get("contract_name") or UNKNOWN_CONTRACT)

    def count(self, severity: Severity) -> int:
        return sum(1 for finding in self.security if finding.severity == severity)


def _finding_view(finding: Finding) -> Dict[str, Any]:
    return {
        "severity": finding.severity.value,
        "title": finding.title,
        "description": finding.description or NO_DESCRIPTION,
        "location": finding.location or UNKNOWN_LOCATION,
        "impact": finding.impact or UNKNOWN_IMPACT,
        "recommendation": finding.recommendation or NO_RECOMMENDATION,
        "confidence": finding.confidence.value,
        "origin": finding.origin,
        "verified": finding.verified,
        "category": finding.category.value,
        "consensusCount": finding.consensus_count,
        "reference": finding.reference,
        "codeSnippet": finding.code_snippet,
    }


def _json_content(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=True)


def _entry(fmt: str, title: str, audience: str, content_type: str, content: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "format": fmt,
        "title": title,
        "audience": audience,
        "content_type": content_type,
        "content": content,
        "data": data,
        "degraded": False,
    }


class ReportSynthesizer:
    """Renders one analysis into the requested report formats.

    Renderers only read upstream fields. A renderer that raises is replaced by
    a degraded entry for that format; other formats are unaffected.
    """

    def __init__(
        self,
        schema_path: str | Path | None = None,
        severity_scale: Optional[SeverityScale] = None,
        event_logger: Optional[EventLogger] = None,
    ) -> None:
        self.schema_path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH
        self.severity_scale = severity_scale or SeverityScale()
        self.event_logger = event_logger
        self.renderers: Dict[str, Callable[[ReportContext], Dict[str, Any]]] = {
            "executive": self._render_executive,
            "technical": self._render_technical,
            "machine-readable": self._render_machine_readable,
            "risk-matrix": self._render_risk_matrix,
            "statistics": self._render_statistics,
        }

    def generate(
        self,
        reconciled: ReconciledFindingSet,
        score_card: ScoreCard,
        metadata: Optional[Dict[str, Any]] = None,
        formats: Sequence[str] = REPORT_FORMATS,
        pattern_scan: Optional[PatternScanResult] = None,
        generated_at: Optional[str] = None,
    ) -> ReportMap:
        metadata = metadata or {}
        try:
            context = self._context(reconciled, score_card, metadata, pattern_scan, generated_at)
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            logger.warning(f"Report context could not be built: {reason}")
            if self.event_logger:
                self.event_logger.log("report.fallback", report_format="*", error=reason)
            contract_name = str(metadata.get("contract_name") or UNKNOWN_CONTRACT)
            return fallback_report_map(list(dict.fromkeys(formats)), reason, contract_name, score_card)
        report_map: ReportMap = {}
        for fmt in formats:
            if fmt in report_map:
                continue
            with span("report.render", report_format=fmt):
                try:
                    report_map[fmt] = self._render(fmt, context)
                except ReportGenerationFailure as exc:
                    logger.warning(str(exc))
                    if self.event_logger:
                        self.event_logger.log("report.fallback", report_format=fmt, error=exc.reason)
                    report_map[fmt] = fallback_report(fmt, exc.reason, context.contract_name, score_card)
        return report_map

    def _render(self, fmt: str, context: ReportContext) -> Dict[str, Any]:
        renderer = self.renderers.get(fmt)
        if renderer is None:
            raise ReportGenerationFailure(fmt, "unsupported report format")
        try:
            return renderer(context)
        except Exception as exc:
            raise ReportGenerationFailure(fmt, f"{type(exc).__name__}: {exc}") from exc

    def _context(
        self,
        reconciled: ReconciledFindingSet,
        score_card: ScoreCard,
        metadata: Dict[str, Any],
        pattern_scan: Optional[PatternScanResult],
        generated_at: Optional[str],
    ) -> ReportContext:
        findings = self.severity_scale.sort(reconciled.findings)
        patterns = pattern_scan or PatternScanResult()
        return ReportContext(
            reconciled=reconciled,
            score_card=score_card,
            metadata=metadata,
            pattern_scan=patterns,
            generated_at=generated_at or datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            security=[f for f in findings if f.category == FindingCategory.SECURITY],
            gas=[f for f in findings if f.category == FindingCategory.GAS],
            quality=[f for f in findings if f.category == FindingCategory.QUALITY],
            recommendations=build_recommendations(list(findings) + list(patterns.findings)),
        )

    def _render_executive(self, context: ReportContext) -> Dict[str, Any]:
        critical = [f for f in context.security if f.severity == Severity.CRITICAL][:5]
        data = {
            "contractName": context.contract_name,
            "overallScore": context.score_card.overall,
            "securityScore": context.score_card.security,
            "riskLevel": context.score_card.risk_level,
            "verificationStatus": context.reconciled.verification_status.value,
            "criticalFindings": [_finding_view(f) for f in critical],
            "topRecommendations": context.recommendations[:3],
            "businessRisk": {
                "financial": _financial_risk(context),
                "operational": _operational_risk(context),
                "reputational": REPUTATIONAL_RISK.get(context.score_card.risk_level, "UNKNOWN"),
            },
            "overview": context.reconciled.overview or "No supervisor overview available",
        }
        lines = [
            f"# Executive Security Assessment - {data['contractName']}",
            "",
            f"- Overall score: {data['overallScore']}/100",
            f"- Security score: {data['securityScore']}/100",
            f"- Risk level: {data['riskLevel']}",
            f"- Verification: {data['verificationStatus']}",
            "",
            "## Overview",
            "",
            data["overview"],
            "",
            "## Critical Findings",
            "",
        ]
        if critical:
            for view in data["criticalFindings"]:
                lines.append(f"- **{view['title']}** ({view['location']}): {view['impact']}")
        else:
            lines.append("No critical security vulnerabilities identified.")
        lines.extend(["", "## Recommendations", ""])
        if data["topRecommendations"]:
            for rec in data["topRecommendations"]:
                lines.append(f"- [{rec['priority']}] {rec['title']}: {rec['description']}")
        else:
            lines.append("No specific recommendations available.")
        lines.extend(["", "## Business Risk", ""])
        for key, text in data["businessRisk"].items():
            lines.append(f"- {key.capitalize()}: {text}")
        return _entry(
            "executive",
            f"Executive Security Assessment - {context.contract_name}",
            "executive",
            "text/markdown",
            "\n".join(lines) + "\n",
            data,
        )

    def _render_technical(self, context: ReportContext) -> Dict[str, Any]:
        categories = categorize_findings(context.security + list(context.pattern_scan.findings))
        data = {
            "contractName": context.contract_name,
            "scores": context.score_card.to_dict(),
            "securityFindings": [_finding_view(f) for f in context.security],
            "gasOptimizations": [_finding_view(f) for f in context.gas],
            "codeQualityIssues": [_finding_view(f) for f in context.quality],
            "patternFindings": [_finding_view(f) for f in context.pattern_scan.findings],
            "categoryBreakdown": {name: len(items) for name, items in categories.items()},
            "methodology": _methodology(context),
        }
        lines = [f"# Technical Security Report - {context.contract_name}", ""]
        lines.append(
            f"Scores: overall {context.score_card.overall}, security {context.score_card.security}, "
            f"gas {context.score_card.gas_optimization}, quality {context.score_card.code_quality}"
        )
        lines.extend(["", "## Security Findings", ""])
        lines.extend(_finding_sections(data["securityFindings"], "No security findings identified."))
        lines.extend(["## Gas Optimization", ""])
        lines.extend(_finding_sections(data["gasOptimizations"], "No significant gas optimization opportunities identified."))
        lines.extend(["## Code Quality", ""])
        lines.extend(_finding_sections(data["codeQualityIssues"], "Code quality meets professional standards."))
        lines.extend(["## Pattern Analysis", ""])
        lines.append(f"Pattern coverage: {context.pattern_scan.coverage}%")
        lines.append("")
        lines.extend(_finding_sections(data["patternFindings"], "No known vulnerable patterns matched."))
        lines.extend(["## Methodology", ""])
        for key, value in data["methodology"].items():
            lines.append(f"- {key}: {value}")
        return _entry(
            "technical",
            f"Technical Security Report - {context.contract_name}",
            "developer",
            "text/markdown",
            "\n".join(lines) + "\n",
            data,
        )

    def _render_machine_readable(self, context: ReportContext) -> Dict[str, Any]:
        categories = categorize_findings(context.security)
        total_security = len(context.security)
        data = {
            "metadata": {
                "reportType": "smart_contract_security_analysis",
                "version": REPORT_VERSION,
                "generatedAt": context.generated_at,
                "analysisId": context.metadata.get("analysis_id") or "unknown",
                "contractName": context.contract_name,
                "analysisTimeMs": int(context.metadata.get("analysis_time_ms") or 0),
            },
            "executiveSummary": {
                "contractName": context.contract_name,
                "overallScore": context.score_card.overall,
                "securityScore": context.score_card.security,
                "riskLevel": context.score_card.risk_level,
                "totalFindings": total_security,
                "criticalFindings": context.count(Severity.CRITICAL),
                "highFindings": context.count(Severity.HIGH),
                "overview": context.reconciled.overview or "No supervisor overview available",
            },
            "scores": {
                "overall": context.score_card.overall,
                "security": context.score_card.security,
                "gasOptimization": context.score_card.gas_optimization,
                "codeQuality": context.score_card.code_quality,
                "breakdown": dict(context.score_card.breakdown),
            },
            "findings": {
                "security": {name: [_finding_view(f) for f in items] for name, items in categories.items()},
                "gasOptimization": [_finding_view(f) for f in context.gas],
                "codeQuality": [_finding_view(f) for f in context.quality],
                "patterns": [_finding_view(f) for f in context.pattern_scan.findings],
            },
            "riskAssessment": {
                "overallRisk": context.score_card.risk_level,
                "criticalFindings": context.count(Severity.CRITICAL),
                "highFindings": context.count(Severity.HIGH),
                "mediumFindings": context.count(Severity.MEDIUM),
                "riskFactors": _risk_factors(context.security),
                "conflicts": [conflict.to_dict() for conflict in context.reconciled.conflicts],
            },
            "recommendations": context.recommendations,
            "technicalDetails": _methodology(context),
            "compliance": {
                "standards": list(COMPLIANCE_STANDARDS),
                "bestPractices": max(0, min(100, 100 - 5 * total_security - 2 * len(context.quality))),
                "auditStandards": "Multi-Provider Supervised Analysis",
            },
        }
        validate_json(data, self.schema_path)
        return _entry(
            "machine-readable",
            f"Machine-Readable Analysis - {context.contract_name}",
            "api",
            "application/json",
            _json_content(data),
            data,
        )

    def _render_risk_matrix(self, context: ReportContext) -> Dict[str, Any]:
        matrix: Dict[str, List[Dict[str, Any]]] = {severity.value.lower(): [] for severity in Severity}
        for finding in context.security:
            matrix[finding.severity.value.lower()].append({
                "title": finding.title,
                "location": finding.location or UNKNOWN_LOCATION,
                "impact": finding.impact or UNKNOWN_IMPACT,
                "likelihood": LIKELIHOOD[finding.severity],
                "businessImpact": BUSINESS_IMPACT[finding.severity],
            })
        data = {
            "contractName": context.contract_name,
            "matrix": matrix,
            "overallRiskScore": min(
                100,
                sum(weight * len(matrix[severity.value.lower()]) for severity, weight in RISK_WEIGHTS.items()),
            ),
            "riskTrends": _risk_trends(matrix),
            "prioritization": _prioritize(matrix),
        }
        return _entry(
            "risk-matrix",
            "Security Risk Assessment Matrix",
            "risk",
            "application/json",
            _json_content(data),
            data,
        )

    def _render_statistics(self, context: ReportContext) -> Dict[str, Any]:
        analysis_ms = int(context.metadata.get("analysis_time_ms") or 0)
        total = len(context.security)
        categories = categorize_findings(context.security + list(context.pattern_scan.findings))
        data = {
            "summary": {
                "totalFindings": total,
                "gasOptimizations": len(context.gas),
                "qualityIssues": len(context.quality),
                "patternMatches": len(context.pattern_scan.findings),
                "overallScore": context.score_card.overall,
                "analysisTimeMs": analysis_ms,
            },
            "findingDistribution": {
                severity.value.lower(): context.count(severity) for severity in Severity
            },
            "categoryBreakdown": {name: len(items) for name, items in categories.items()},
            "providerStats": {
                "providersUsed": len(context.metadata.get("providers_used", [])),
                "providersFailed": len(context.metadata.get("providers_failed", [])),
                "consensusScore": context.reconciled.consensus_score,
                "conflicts": len(context.reconciled.conflicts),
                "duplicatesRemoved": context.reconciled.duplicates_removed,
                "verificationLevel": context.reconciled.verification_status.value,
            },
            "performance": {
                "analysisTimeSec": round(analysis_ms / 1000),
                "findingsPerSecond": round(total / (analysis_ms / 1000), 2) if analysis_ms else 0.0,
                "patternCoverage": context.pattern_scan.coverage,
                "stageTimingsMs": dict(context.metadata.get("stage_timings_ms", {})),
            },
        }
        return _entry(
            "statistics",
            f"Report Statistics - {context.contract_name}",
            "analytics",
            "application/json",
            _json_content(data),
            data,
        )


def fallback_report(
    fmt: str,
    reason: str,
    contract_name: str = UNKNOWN_CONTRACT,
    score_card: Optional[ScoreCard] = None,
) -> Dict[str, Any]:
    card = score_card or ScoreCard.zeroed()
    data = {
        "contractName": contract_name,
        "overallScore": card.overall,
        "riskLevel": card.risk_level,
        "error": reason,
    }
    entry = _entry(
        fmt,
        f"{fmt} report unavailable - {contract_name}",
        "fallback",
        "application/json",
        _json_content(data),
        data,
    )
    entry["degraded"] = True
    return entry


def fallback_report_map(
    formats: Sequence[str],
    reason: str,
    contract_name: str = UNKNOWN_CONTRACT,
    score_card: Optional[ScoreCard] = None,
) -> ReportMap:
    return {fmt: fallback_report(fmt, reason, contract_name, score_card) for fmt in formats}


def generate_reports(
    reconciled: ReconciledFindingSet,
    score_card: ScoreCard,
    formats: Sequence[str] = REPORT_FORMATS,
    metadata: Optional[Dict[str, Any]] = None,
    pattern_scan: Optional[PatternScanResult] = None,
    generated_at: Optional[str] = None,
) -> ReportMap:
    return ReportSynthesizer().generate(
        reconciled,
        score_card,
        metadata=metadata,
        formats=formats,
        pattern_scan=pattern_scan,
        generated_at=generated_at,
    )


def _finding_sections(views: List[Dict[str, Any]], empty_text: str) -> List[str]:
    if not views:
        return [empty_text, ""]
    lines: List[str] = []
    for view in views:
        lines.append(f"### [{view['severity']}] {view['title']}")
        lines.append("")
        lines.append(f"- Location: {view['location']}")
        lines.append(f"- Confidence: {view['confidence']} (reported by {view['consensusCount']})")
        lines.append(f"- Impact: {view['impact']}")
        lines.append(f"- Recommendation: {view['recommendation']}")
        lines.append("")
        lines.append(view["description"])
        if view["codeSnippet"]:
            lines.extend(["", "```solidity", view["codeSnippet"], "```"])
        lines.append("")
    return lines


def _methodology(context: ReportContext) -> Dict[str, Any]:
    return {
        "providersUsed": list(context.metadata.get("providers_used", [])),
        "supervisorVerification": context.reconciled.verification_status.value,
        "supervisorModel": context.reconciled.supervisor_model or "None",
        "consensusScore": context.reconciled.consensus_score,
        "patternMatchingCoverage": context.pattern_scan.coverage,
        "duplicatesRemoved": context.reconciled.duplicates_removed,
    }


def _financial_risk(context: ReportContext) -> str:
    if context.count(Severity.CRITICAL):
        return "HIGH - Critical vulnerabilities could lead to fund loss"
    if context.count(Severity.HIGH):
        return "MEDIUM - Security issues may impact financial operations"
    return "LOW - Minimal financial risk identified"


def _operational_risk(context: ReportContext) -> str:
    total = len(context.security)
    if total > 10:
        return "HIGH - Multiple issues may disrupt operations"
    if total > 5:
        return "MEDIUM - Some operational considerations needed"
    return "LOW - Minimal operational impact expected"


def _risk_factors(findings: List[Finding]) -> List[str]:
    factors = []
    critical = sum(1 for f in findings if f.severity == Severity.CRITICAL)
    high = sum(1 for f in findings if f.severity == Severity.HIGH)
    if critical:
        factors.append(f"{critical} critical security vulnerabilities")
    if high > 2:
        factors.append(f"Multiple high-severity issues ({high})")
    titles = [f.title.lower() for f in findings]
    if any("reentrancy" in title for title in titles):
        factors.append("Reentrancy vulnerability detected")
    if any("access" in title or "permission" in title for title in titles):
        factors.append("Access control concerns identified")
    return factors


def _risk_trends(matrix: Dict[str, List[Dict[str, Any]]]) -> str:
    total = sum(len(matrix[key]) for key in ("critical", "high", "medium", "low"))
    if total == 0:
        return "No significant risks identified"
    if len(matrix["critical"]) / total * 100 > 20:
        return "High concentration of critical risks"
    if len(matrix["high"]) / total * 100 > 40:
        return "Significant high-risk findings"
    return "Manageable risk profile"


def _prioritize(matrix: Dict[str, List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    steps = (
        (1, "critical", "Immediate remediation required"),
        (2, "high", "High-priority remediation"),
        (3, "medium", "Medium-priority improvements"),
    )
    return [
        {"priority": priority, "action": action, "findings": len(matrix[key])}
        for priority, key, action in steps
        if matrix[key]
    ]
