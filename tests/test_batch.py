from __future__ import annotations

from contract_auditor.agents.batch import BatchCoordinator, summarize_batch
from contract_auditor.models.analysis import AnalysisOptions, AnalysisRequest, AnalysisResult, BatchItem, ScoreCard
from contract_auditor.models.finding import Finding, ReconciledFindingSet, Severity, VerificationStatus


def _make_result(
    name: str,
    findings=(),
    security: int = 100,
    risk_level: str = "Safe",
    success: bool = True,
    error: str | None = None,
) -> AnalysisResult:
    return AnalysisResult(
        success=success,
        reconciled=ReconciledFindingSet(
            findings=list(findings),
            verification_status=VerificationStatus.STATISTICAL_CONSENSUS,
            consensus_score=1.0,
        ),
        score_card=ScoreCard(
            security=security,
            gas_optimization=85,
            code_quality=90,
            overall=95,
            risk_level=risk_level,
        ),
        report_map={},
        metadata={"contract_name": name},
        error=error,
    )


class _ScriptedRunner:
    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.requests = []

    def __call__(self, request: AnalysisRequest) -> AnalysisResult:
        self.requests.append(request)
        outcome = self.outcomes[request.contract_name]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_batch_continues_after_raised_exception():
    runner = _ScriptedRunner(
        {
            "A": _make_result("A", [Finding(severity=Severity.CRITICAL, title="Reentrancy")], 75, "Critical Risk"),
            "B": RuntimeError("provider outage"),
            "C": _make_result("C", [Finding(severity=Severity.HIGH, title="reentrancy")], 85, "Medium Risk"),
        }
    )
    sleeps = []
    coordinator = BatchCoordinator(runner, inter_run_delay=2.0, sleep=sleeps.append)
    requests = [AnalysisRequest(source=f"contract {name} {{}}", contract_name=name) for name in ("A", "B", "C")]
    batch = coordinator.run_batch(requests)

    assert [r.contract_name for r in runner.requests] == ["A", "B", "C"]
    assert sleeps == [2.0, 2.0]
    assert batch.total_contracts == 3
    assert batch.success_count == 2
    assert batch.failure_count == 1
    assert batch.failed_contracts == [{"name": "B", "error": "RuntimeError: provider outage"}]
    assert [item.success for item in batch.items] == [True, False, True]
    assert batch.batch_id.startswith("batch-")

    summary = batch.summary
    assert summary["successRate"] == 67
    assert summary["aggregateStats"] == {
        "totalCriticalFindings": 1,
        "totalHighFindings": 1,
        "averageSecurityScore": 80,
        "contractsWithCriticalIssues": 1,
        "contractsWithHighRisk": 1,
    }
    assert summary["riskDistribution"] == {
        "Safe": 0,
        "Low Risk": 0,
        "Medium Risk": 1,
        "High Risk": 0,
        "Critical Risk": 1,
    }
    top = summary["topIssues"][0]
    assert top["title"] == "Reentrancy"
    assert top["frequency"] == 2
    assert top["affectedContracts"] == 2
    assert top["contractNames"] == ["A", "C"]


def test_unsuccessful_result_counts_as_failure():
    runner = _ScriptedRunner({"A": _make_result("A", success=False, error="Insufficient providers")})
    batch = BatchCoordinator(runner, sleep=lambda _: None).run_batch([AnalysisRequest(source="x", contract_name="A")])
    assert batch.failure_count == 1
    assert batch.failed_contracts == [{"name": "A", "error": "Insufficient providers"}]
    assert batch.items[0].result is not None


def test_single_item_does_not_sleep():
    sleeps = []
    runner = _ScriptedRunner({"A": _make_result("A")})
    BatchCoordinator(runner, sleep=sleeps.append).run_batch([AnalysisRequest(source="x", contract_name="A")])
    assert sleeps == []


def test_options_override_each_request():
    runner = _ScriptedRunner({"A": _make_result("A"), "B": _make_result("B")})
    options = AnalysisOptions.from_preset("development")
    requests = [AnalysisRequest(source="x", contract_name=name) for name in ("A", "B")]
    BatchCoordinator(runner, sleep=lambda _: None).run_batch(requests, options=options)
    assert all(request.options is options for request in runner.requests)
    assert requests[0].options is not options


def test_empty_batch_summary():
    summary = summarize_batch([], 0)
    assert summary["totalContracts"] == 0
    assert summary["successRate"] == 0
    assert summary["averageTimePerContract"] == 0
    assert summary["aggregateStats"]["averageSecurityScore"] == 0
    assert summary["topIssues"] == []


def test_summary_timing():
    items = [
        BatchItem(index=0, contract_name="A", success=True, result=_make_result("A")),
        BatchItem(index=1, contract_name="B", success=True, result=_make_result("B")),
    ]
    summary = summarize_batch(items, 3000)
    assert summary["totalTime"] == 3000
    assert summary["averageTimePerContract"] == 1500
    assert summary["riskDistribution"]["Safe"] == 2
