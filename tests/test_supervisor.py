from __future__ import annotations

import time

from contract_auditor.agents.supervisor import (
    SupervisorReconciler,
    consensus_score,
    detect_conflicts,
    resolve_majority_label,
)
from contract_auditor.analyzers.consensus import ConsensusBuilder
from contract_auditor.models.finding import Finding, Severity, VerificationStatus
from contract_auditor.models.provider import ProviderResult
from contract_auditor.observability.logger import EventLogger


class _StaticSupervisor:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def invoke(self, target, instructions, time_budget):
        self.calls.append((target, instructions, time_budget))
        return self.response


class _FailingSupervisor:
    def invoke(self, target, instructions, time_budget):
        raise RuntimeError("rate limited")


def _make_result(provider_id, findings, score=None, risk_label=None) -> ProviderResult:
    return ProviderResult(
        provider_id=provider_id,
        specialty="security",
        success=True,
        findings=list(findings),
        score=score,
        risk_label=risk_label,
    )


def _make_results():
    return [
        _make_result(
            "p1",
            [Finding(severity=Severity.HIGH, title="Reentrancy", location="Line 6", origin="p1")],
            score=70,
            risk_label="High Risk",
        ),
        _make_result(
            "p2",
            [
                Finding(severity=Severity.HIGH, title="reentrancy", location="line 6", origin="p2"),
                Finding(severity=Severity.LOW, title="Floating pragma", location="Line 1", origin="p2"),
            ],
            score=90,
            risk_label="Medium Risk",
        ),
    ]


def test_consensus_score():
    assert consensus_score([]) == 0.5
    assert consensus_score([80, 80, 80]) == 1.0
    assert consensus_score([0, 100]) == 0.0
    assert consensus_score([70, 90]) == 0.8


def test_resolve_majority_label_tie_breaks_to_higher_risk():
    assert resolve_majority_label(["Medium Risk", "High Risk"]) == "High Risk"
    assert resolve_majority_label(["Low Risk", "Low Risk", "Critical Risk"]) == "Low Risk"
    assert resolve_majority_label([]) is None


def test_detect_conflicts():
    conflicts = detect_conflicts(_make_results())
    assert len(conflicts) == 1
    conflict = conflicts[0]
    assert conflict.conflict_type == "risk_level_disagreement"
    assert conflict.values == ["High Risk", "Medium Risk"]
    assert conflict.providers == ["p1", "p2"]
    assert conflict.resolved_value == "High Risk"


def test_no_conflict_when_labels_agree():
    results = _make_results()
    results[1].risk_label = "High Risk"
    assert detect_conflicts(results) == []


def test_statistical_fallback_without_supervisor():
    results = _make_results()
    groups = ConsensusBuilder().build(results)
    events = EventLogger(None)
    reconciled = SupervisorReconciler(event_logger=events).reconcile("contract X {}", "X", results, groups)
    assert reconciled.verification_status == VerificationStatus.STATISTICAL_CONSENSUS
    assert reconciled.consolidated_score == 80
    assert reconciled.final_risk_level == "Low Risk"
    assert reconciled.conflicts == []
    assert reconciled.consensus_score == 0.8
    assert [f.title for f in reconciled.findings] == ["Reentrancy", "Floating pragma"]
    assert reconciled.findings[0].consensus_count == 2
    assert reconciled.duplicates_removed == 1
    assert "supervisor.fallback" in events.event_types()


def test_statistical_fallback_defaults_without_scores():
    reconciled = SupervisorReconciler().statistical([], [])
    assert reconciled.consolidated_score == 75
    assert reconciled.final_risk_level == "Medium Risk"
    assert reconciled.consensus_score == 0.5
    assert reconciled.findings == []


def test_supervisor_verified_path():
    supervisor = _StaticSupervisor(
        {
            "verifiedFindings": [
                {"severity": "HIGH", "title": "Reentrancy", "location": "Line 6", "impact": "Funds drained"},
            ],
            "overview": "Reentrancy confirmed",
            "consolidatedScore": 68,
            "finalRiskLevel": "High Risk",
            "supervisorInsights": ["p2 underrated the issue"],
        }
    )
    results = _make_results()
    groups = ConsensusBuilder().build(results)
    reconciler = SupervisorReconciler(supervisor=supervisor, supervisor_model="judge", max_source_chars=10)
    reconciled = reconciler.reconcile("contract Vault { function withdraw() {} }", "Vault", results, groups)

    assert reconciled.verification_status == VerificationStatus.SUPERVISOR_VERIFIED
    assert reconciled.supervisor_model == "judge"
    assert reconciled.consolidated_score == 68
    assert reconciled.final_risk_level == "High Risk"
    assert reconciled.insights == ["p2 underrated the issue"]
    assert reconciled.findings[0].origin == "supervisor"
    assert reconciled.findings[0].verified
    assert reconciled.findings[0].consensus_count == 2
    assert reconciled.duplicates_removed == 2
    assert len(reconciled.findings) == 2
    assert len(reconciled.conflicts) == 1
    target, prompt, _ = supervisor.calls[0]
    assert target == "contract V"
    assert "CONTRACT: Vault" in prompt


def test_supervisor_exception_falls_back():
    results = _make_results()
    groups = ConsensusBuilder().build(results)
    events = EventLogger(None)
    reconciler = SupervisorReconciler(supervisor=_FailingSupervisor(), event_logger=events)
    reconciled = reconciler.reconcile("contract X {}", "X", results, groups)
    assert reconciled.verification_status == VerificationStatus.STATISTICAL_CONSENSUS
    fallback = [e for e in events.events if e["event_type"] == "supervisor.fallback"]
    assert "rate limited" in fallback[0]["error"]


def test_supervisor_unusable_output_falls_back():
    results = _make_results()
    groups = ConsensusBuilder().build(results)
    reconciler = SupervisorReconciler(supervisor=_StaticSupervisor("I think the contract is fine."))
    reconciled = reconciler.reconcile("contract X {}", "X", results, groups)
    assert reconciled.verification_status == VerificationStatus.STATISTICAL_CONSENSUS


def test_supervisor_timeout_falls_back():
    class _SlowSupervisor:
        def invoke(self, target, instructions, time_budget):
            time.sleep(1.0)
            return {"verifiedFindings": []}

    results = _make_results()
    reconciler = SupervisorReconciler(supervisor=_SlowSupervisor(), timeout_sec=0.05)
    reconciled = reconciler.reconcile("contract X {}", "X", results, [])
    assert reconciled.verification_status == VerificationStatus.STATISTICAL_CONSENSUS
