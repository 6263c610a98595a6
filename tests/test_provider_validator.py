from __future__ import annotations

import json

import pytest

from contract_auditor.models.finding import Confidence, FindingCategory, Severity
from contract_auditor.models.provider import ProviderDescriptor
from contract_auditor.utils.provider_validator import (
    InvalidProviderOutput,
    classify_confidence,
    normalize_risk_label,
    parse_provider_output,
    parse_supervisor_output,
    verified_findings_from,
)


def _make_descriptor(provider_id: str = "p1", specialty: str = "security") -> ProviderDescriptor:
    return ProviderDescriptor(provider_id=provider_id, specialty=specialty)


def test_key_findings_shape():
    raw = json.dumps(
        {
            "keyFindings": [
                {"severity": "high", "title": "Reentrancy", "line": 42, "description": "withdraw re-enters"},
            ],
            "securityScore": 70,
            "riskLevel": "High",
            "summary": "One issue",
        }
    )
    result = parse_provider_output(raw, _make_descriptor(), latency_ms=12)
    assert result.success
    assert result.latency_ms == 12
    assert result.score == 70.0
    assert result.risk_label == "High Risk"
    assert result.confidence == Confidence.HIGH
    assert result.summary == "One issue"
    finding = result.findings[0]
    assert finding.severity == Severity.HIGH
    assert finding.location == "Line 42"
    assert finding.origin == "p1"
    assert finding.category == FindingCategory.SECURITY


def test_report_shape_with_nested_findings():
    raw = {
        "findings": {
            "security": [{"severity": "CRITICAL", "title": "Unprotected selfdestruct"}],
            "gasOptimization": [{"title": "Cache array length", "savings": "~200 gas"}],
            "codeQuality": [{"title": "Missing events", "severity": "info"}],
        },
        "overallScore": 40,
    }
    result = parse_provider_output(raw, _make_descriptor())
    by_category = {f.category: f for f in result.findings}
    assert by_category[FindingCategory.SECURITY].severity == Severity.CRITICAL
    assert by_category[FindingCategory.GAS].severity == Severity.LOW
    assert by_category[FindingCategory.GAS].impact == "~200 gas"
    assert by_category[FindingCategory.QUALITY].severity == Severity.INFO
    assert result.risk_label is None
    assert result.confidence == Confidence.MEDIUM


def test_gas_items_default_to_low_severity():
    raw = {"keyFindings": [], "gasOptimizations": [{"title": "Pack storage"}], "securityScore": 90}
    result = parse_provider_output(raw, _make_descriptor(specialty="gas"))
    assert result.findings[0].severity == Severity.LOW
    assert result.findings[0].category == FindingCategory.GAS


def test_unknown_severity_falls_back_to_info():
    raw = {"keyFindings": [{"severity": "catastrophic", "title": "X"}], "securityScore": 50, "riskLevel": "Medium"}
    result = parse_provider_output(raw, _make_descriptor())
    assert result.findings[0].severity == Severity.INFO


def test_score_is_clamped():
    result = parse_provider_output({"securityScore": 150, "riskLevel": "Safe"}, _make_descriptor())
    assert result.score == 100.0
    assert result.risk_label == "Safe"
    assert result.confidence == Confidence.MEDIUM


def test_only_findings_is_low_confidence():
    result = parse_provider_output({"keyFindings": [{"severity": "LOW", "title": "X"}]}, _make_descriptor())
    assert result.confidence == Confidence.LOW


def test_non_json_output_rejected():
    with pytest.raises(InvalidProviderOutput):
        parse_provider_output("Sorry, I cannot help with that.", _make_descriptor())


def test_empty_payload_rejected():
    with pytest.raises(InvalidProviderOutput):
        parse_provider_output({"message": "ok"}, _make_descriptor())


def test_list_output_rejected():
    with pytest.raises(InvalidProviderOutput):
        parse_provider_output([{"title": "x"}], _make_descriptor())


def test_classify_confidence():
    assert classify_confidence(True, True, True) == Confidence.HIGH
    assert classify_confidence(True, False, True) == Confidence.MEDIUM
    assert classify_confidence(False, False, True) == Confidence.LOW


def test_normalize_risk_label():
    assert normalize_risk_label("CRITICAL") == "Critical Risk"
    assert normalize_risk_label("moderate risk") == "Medium Risk"
    assert normalize_risk_label("") is None
    assert normalize_risk_label("unrated") == "unrated"


def test_supervisor_output_requires_verified_findings():
    with pytest.raises(InvalidProviderOutput):
        parse_supervisor_output({"overview": "fine"})


def test_supervisor_verified_findings():
    payload = parse_supervisor_output(
        {
            "verifiedFindings": [{"severity": "HIGH", "title": "Reentrancy", "location": "withdraw()"}],
            "overview": "One confirmed issue",
            "consolidatedScore": 72,
            "finalRiskLevel": "medium",
            "supervisorInsights": "Providers agreed",
        }
    )
    assert payload.consolidated_score == 72.0
    assert payload.final_risk_level == "Medium Risk"
    assert payload.insights == ["Providers agreed"]
    verified = verified_findings_from(payload)
    assert verified[0].origin == "supervisor"
    assert verified[0].confidence == Confidence.HIGH
    assert verified[0].verified is True
