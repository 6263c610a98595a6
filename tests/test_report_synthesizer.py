from __future__ import annotations

import json

from contract_auditor.analyzers.scoring import ScoringEngine
from contract_auditor.models.analysis import REPORT_FORMATS, PatternScanResult, ScoreCard
from contract_auditor.models.finding import (
    Conflict,
    Finding,
    FindingCategory,
    ReconciledFindingSet,
    Severity,
    VerificationStatus,
)
from contract_auditor.observability.logger import EventLogger
from contract_auditor.reports.synthesizer import ReportSynthesizer, fallback_report_map, generate_reports

GENERATED_AT = "2024-01-01T00:00:00Z"


def _make_reconciled() -> ReconciledFindingSet:
    findings = [
        Finding(
            severity=Severity.CRITICAL,
            title="Reentrancy in withdraw",
            description="External call before state update",
            location="Line 6",
            impact="Funds can be drained",
            recommendation="Apply checks-effects-interactions",
            origin="supervisor",
            verified=True,
            consensus_count=2,
        ),
        Finding(severity=Severity.MEDIUM, title="Missing access control on setFee", origin="p1"),
        Finding(
            severity=Severity.LOW,
            title="Cache array length",
            impact="~2100 gas per call",
            category=FindingCategory.GAS,
            origin="p2",
        ),
        Finding(severity=Severity.LOW, title="Missing events", category=FindingCategory.QUALITY, origin="p2"),
    ]
    return ReconciledFindingSet(
        findings=findings,
        verification_status=VerificationStatus.SUPERVISOR_VERIFIED,
        consensus_score=0.8,
        conflicts=[
            Conflict(
                conflict_type="risk_level_disagreement",
                values=["Critical Risk", "High Risk"],
                providers=["p1", "p2"],
                resolution="prefer majority, tie-break to higher risk",
                resolved_value="Critical Risk",
            )
        ],
        supervisor_model="judge",
        overview="One critical issue confirmed",
        duplicates_removed=1,
    )


def _make_metadata() -> dict:
    return {
        "contract_name": "Vault",
        "analysis_id": "abc123",
        "analysis_time_ms": 4000,
        "providers_used": ["p1", "p2"],
        "providers_failed": [],
    }


def _generate(formats=REPORT_FORMATS, **kwargs):
    reconciled = _make_reconciled()
    score_card = ScoringEngine().score(reconciled.findings)
    synthesizer = ReportSynthesizer(**kwargs)
    return synthesizer.generate(
        reconciled,
        score_card,
        metadata=_make_metadata(),
        formats=formats,
        generated_at=GENERATED_AT,
    )


def test_all_formats_rendered():
    report_map = _generate()
    assert sorted(report_map) == sorted(REPORT_FORMATS)
    assert not any(entry["degraded"] for entry in report_map.values())
    assert report_map["executive"]["content_type"] == "text/markdown"
    assert report_map["machine-readable"]["content_type"] == "application/json"


def test_reports_are_byte_identical_for_same_input():
    first = _generate()
    second = _generate()
    for fmt in REPORT_FORMATS:
        assert first[fmt]["content"] == second[fmt]["content"]


def test_machine_readable_report_content():
    report = _generate(formats=["machine-readable"])["machine-readable"]
    data = json.loads(report["content"])
    assert data["metadata"]["contractName"] == "Vault"
    assert data["metadata"]["generatedAt"] == GENERATED_AT
    assert data["scores"]["security"] == 100 - 25 - 8
    assert data["executiveSummary"]["criticalFindings"] == 1
    assert data["executiveSummary"]["totalFindings"] == 2
    assert data["riskAssessment"]["overallRisk"] == "Critical Risk"
    assert data["riskAssessment"]["conflicts"][0]["resolved_value"] == "Critical Risk"
    assert "Reentrancy vulnerability detected" in data["riskAssessment"]["riskFactors"]
    assert data["findings"]["gasOptimization"][0]["title"] == "Cache array length"
    reentrancy = data["findings"]["security"]["Reentrancy"][0]
    assert reentrancy["consensusCount"] == 2
    assert reentrancy["verified"] is True
    priorities = [rec["priority"] for rec in data["recommendations"]]
    assert priorities[0] == "CRITICAL"


def test_missing_fields_use_labeled_defaults():
    data = _generate(formats=["machine-readable"])["machine-readable"]["data"]
    access = data["findings"]["security"]["Access Control"][0]
    assert access["location"] == "Unknown location"
    assert access["impact"] == "Unknown impact"
    assert access["recommendation"] == "No recommendation provided"
    assert access["description"] == "No description available"


def test_executive_report_mentions_critical_findings():
    content = _generate(formats=["executive"])["executive"]["content"]
    assert content.startswith("# Executive Security Assessment - Vault")
    assert "Reentrancy in withdraw" in content
    assert "One critical issue confirmed" in content


def test_risk_matrix_and_statistics():
    report_map = _generate(formats=["risk-matrix", "statistics"])
    matrix = report_map["risk-matrix"]["data"]
    assert len(matrix["matrix"]["critical"]) == 1
    assert matrix["matrix"]["critical"][0]["likelihood"] == "HIGH"
    assert matrix["overallRiskScore"] == 25 + 8
    stats = report_map["statistics"]["data"]
    assert stats["findingDistribution"]["critical"] == 1
    assert stats["providerStats"]["duplicatesRemoved"] == 1
    assert stats["performance"]["findingsPerSecond"] == 0.5


def test_schema_failure_degrades_only_that_format(tmp_path):
    events = EventLogger(None)
    report_map = _generate(
        formats=["executive", "machine-readable"],
        schema_path=tmp_path / "missing.schema.json",
        event_logger=events,
    )
    assert report_map["executive"]["degraded"] is False
    fallback = report_map["machine-readable"]
    assert fallback["degraded"] is True
    assert fallback["data"]["contractName"] == "Vault"
    assert fallback["data"]["riskLevel"] == "Critical Risk"
    assert "report.fallback" in events.event_types()


def test_unsupported_format_degrades():
    report_map = _generate(formats=["pdf"])
    assert report_map["pdf"]["degraded"] is True
    assert report_map["pdf"]["data"]["error"] == "unsupported report format"


def test_fallback_report_map_uses_zeroed_scores():
    report_map = fallback_report_map(["executive", "technical"], "no providers")
    assert set(report_map) == {"executive", "technical"}
    entry = report_map["executive"]
    assert entry["degraded"] is True
    assert entry["data"] == {
        "contractName": "Unknown Contract",
        "overallScore": 0,
        "riskLevel": "Unknown",
        "error": "no providers",
    }


def test_generate_reports_with_pattern_scan():
    reconciled = ReconciledFindingSet.empty()
    pattern_scan = PatternScanResult(
        findings=[
            Finding(
                severity=Severity.CRITICAL,
                title="Pattern Detection: Potential Reentrancy",
                location="Line 3",
                origin="pattern",
            )
        ],
        coverage=20,
        rules_triggered=["reentrancy-pattern"],
        total_rules=5,
    )
    score_card = ScoreCard(
        security=100,
        gas_optimization=85,
        code_quality=90,
        overall=95,
        risk_level="Safe",
    )
    report_map = generate_reports(
        reconciled,
        score_card,
        formats=["technical", "machine-readable"],
        metadata={"contract_name": "Token"},
        pattern_scan=pattern_scan,
        generated_at=GENERATED_AT,
    )
    assert "Pattern coverage: 20%" in report_map["technical"]["content"]
    data = report_map["machine-readable"]["data"]
    assert data["findings"]["patterns"][0]["origin"] == "pattern"
    assert data["metadata"]["analysisId"] == "unknown"


class _BrokenScale:
    def rank(self, severity):
        return 0

    def sort(self, findings):
        raise RuntimeError("severity table unavailable")


def test_context_failure_degrades_every_format():
    events = EventLogger(None)
    synthesizer = ReportSynthesizer(severity_scale=_BrokenScale(), event_logger=events)
    reconciled = _make_reconciled()
    report_map = synthesizer.generate(
        reconciled,
        ScoringEngine().score(reconciled.findings),
        metadata={"contract_name": "Vault"},
        formats=["executive", "statistics", "executive"],
        generated_at=GENERATED_AT,
    )
    assert list(report_map) == ["executive", "statistics"]
    assert all(entry["degraded"] for entry in report_map.values())
    assert report_map["statistics"]["data"]["contractName"] == "Vault"
    assert "severity table unavailable" in report_map["executive"]["data"]["error"]
    assert "report.fallback" in events.event_types()
