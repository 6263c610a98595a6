from __future__ import annotations

from typing import Any, Dict, List

from contract_auditor.models.analysis import AnalysisResult
from contract_auditor.models.finding import FindingCategory, Severity, VerificationStatus
from contract_auditor.reports.recommendations import build_recommendations

_IMMEDIATE_ACTIONS = {
    "critical": [
        "Address critical security vulnerabilities immediately",
        "Conduct additional security review",
        "Consider delaying deployment until issues resolved",
    ],
    "high": [
        "Review and fix high-severity issues",
        "Implement security recommendations",
        "Test fixes thoroughly before deployment",
    ],
    "default": [
        "Review medium/low priority improvements",
        "Consider gas optimizations",
        "Maintain current security practices",
    ],
}


def build_audit_summary(result: AnalysisResult) -> Dict[str, Any]:
    if not result.success:
        return {
            "status": "FAILED",
            "message": f"Audit failed: {result.error}",
            "contractName": result.contract_name,
        }

    findings = result.reconciled.findings
    security = [f for f in findings if f.category == FindingCategory.SECURITY]
    critical = sum(1 for f in security if f.severity == Severity.CRITICAL)
    high = sum(1 for f in security if f.severity == Severity.HIGH)
    score_card = result.score_card

    if critical > 0:
        status = "CRITICAL_ISSUES"
    elif high > 2:
        status = "HIGH_RISK"
    elif score_card.security < 70:
        status = "MEDIUM_RISK"
    else:
        status = "PASSED"

    if critical:
        actions: List[str] = _IMMEDIATE_ACTIONS["critical"]
    elif high:
        actions = _IMMEDIATE_ACTIONS["high"]
    else:
        actions = _IMMEDIATE_ACTIONS["default"]

    providers = result.metadata.get("providers_used", [])
    return {
        "status": status,
        "contractName": result.contract_name,
        "analysisId": result.metadata.get("analysis_id"),
        "overallScore": score_card.overall,
        "securityScore": score_card.security,
        "riskLevel": score_card.risk_level,
        "totalFindings": len(security),
        "criticalFindings": critical,
        "highFindings": high,
        "gasOptimizations": score_card.breakdown.get("gas", 0),
        "qualityIssues": score_card.breakdown.get("quality", 0),
        "providersUsed": len(providers),
        "supervisorVerified": result.reconciled.verification_status == VerificationStatus.SUPERVISOR_VERIFIED,
        "analysisTimeSec": round(result.metadata.get("analysis_time_ms", 0) / 1000),
        "reportsGenerated": sorted(result.report_map),
        "topRecommendations": [
            {"priority": rec["priority"], "title": rec["title"], "estimatedTime": rec["estimatedTime"]}
            for rec in build_recommendations(result.all_findings())[:3]
        ],
        "immediateActions": list(actions),
    }
