from __future__ import annotations

import dataclasses
import logging
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from contract_auditor.errors import BatchItemFailure
from contract_auditor.models.analysis import (
    RISK_LABELS,
    AnalysisOptions,
    AnalysisRequest,
    AnalysisResult,
    BatchItem,
    BatchResult,
)
from contract_auditor.models.finding import FindingCategory, Severity
from contract_auditor.telemetry import span

logger = logging.getLogger(__name__)

DEFAULT_INTER_RUN_DELAY_SEC = 2.0
TOP_ISSUES_LIMIT = 10
HIGH_RISK_LABELS = ("High Risk", "Critical Risk")

Runner = Callable[[AnalysisRequest], AnalysisResult]


class BatchCoordinator:
    """Runs many contracts one after another through a single-run callable.

    Runs never overlap. A fixed delay separates consecutive runs and is not
    applied after the last one. An item whose run raises or returns an
    unsuccessful result is recorded as failed and the batch continues.
    """

    def __init__(
        self,
        runner: Runner,
        inter_run_delay: float = DEFAULT_INTER_RUN_DELAY_SEC,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.runner = runner
        self.inter_run_delay = inter_run_delay
        self.sleep = sleep
        self.clock = clock

    def run_batch(
        self,
        requests: Sequence[AnalysisRequest],
        options: Optional[AnalysisOptions] = None,
    ) -> BatchResult:
        batch_started = self.clock()
        batch_id = f"batch-{int(time.time() * 1000)}"
        logger.info(f"Starting batch {batch_id} for {len(requests)} contracts")
        items: List[BatchItem] = []
        with span("batch.run", batch_id=batch_id, total_contracts=len(requests)):
            for index, request in enumerate(requests):
                if options is not None:
                    request = dataclasses.replace(request, options=options)
                items.append(self._run_one(index, len(requests), request))
                if index < len(requests) - 1 and self.inter_run_delay > 0:
                    self.sleep(self.inter_run_delay)

        total_ms = int((self.clock() - batch_started) * 1000)
        summary = summarize_batch(items, total_ms)
        logger.info(
            f"Batch {batch_id} completed: {summary['successCount']}/{len(requests)} successful"
        )
        return BatchResult(
            batch_id=batch_id,
            total_contracts=len(requests),
            items=items,
            summary=summary,
            completed_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )

    def _run_one(self, index: int, total: int, request: AnalysisRequest) -> BatchItem:
        logger.info(f"[{index + 1}/{total}] Auditing {request.contract_name}")
        started = self.clock()
        try:
            result = self.runner(request)
        except Exception as exc:
            failure = BatchItemFailure(request.contract_name, f"{type(exc).__name__}: {exc}")
            logger.error(f"[{index + 1}/{total}] {failure}")
            return BatchItem(
                index=index,
                contract_name=request.contract_name,
                success=False,
                error=failure.reason,
                duration_ms=int((self.clock() - started) * 1000),
            )
        duration_ms = int((self.clock() - started) * 1000)
        if not result.success:
            logger.warning(f"[{index + 1}/{total}] {request.contract_name} failed: {result.error}")
        return BatchItem(
            index=index,
            contract_name=request.contract_name,
            success=result.success,
            result=result,
            error=None if result.success else result.error,
            duration_ms=duration_ms,
        )


def summarize_batch(items: Sequence[BatchItem], total_ms: int) -> Dict[str, Any]:
    successful = [item for item in items if item.success and item.result is not None]
    failed = [item for item in items if not item.success]
    count = len(items)
    return {
        "totalContracts": count,
        "successCount": len(successful),
        "failureCount": len(failed),
        "successRate": round(len(successful) / count * 100) if count else 0,
        "totalTime": total_ms,
        "averageTimePerContract": round(total_ms / count) if count else 0,
        "aggregateStats": _aggregate_stats(successful),
        "riskDistribution": _risk_distribution(successful),
        "failedContracts": [{"name": item.contract_name, "error": item.error} for item in failed],
        "topIssues": _top_issues(successful),
    }


def _aggregate_stats(successful: Sequence[BatchItem]) -> Dict[str, int]:
    stats = {
        "totalCriticalFindings": 0,
        "totalHighFindings": 0,
        "averageSecurityScore": 0,
        "contractsWithCriticalIssues": 0,
        "contractsWithHighRisk": 0,
    }
    if not successful:
        return stats
    security_total = 0
    for item in successful:
        result = item.result
        severities = [f.severity for f in result.reconciled.findings if f.category == FindingCategory.SECURITY]
        critical = severities.count(Severity.CRITICAL)
        stats["totalCriticalFindings"] += critical
        stats["totalHighFindings"] += severities.count(Severity.HIGH)
        if critical:
            stats["contractsWithCriticalIssues"] += 1
        if result.score_card.risk_level in HIGH_RISK_LABELS:
            stats["contractsWithHighRisk"] += 1
        security_total += result.score_card.security
    stats["averageSecurityScore"] = round(security_total / len(successful))
    return stats


def _risk_distribution(successful: Sequence[BatchItem]) -> Dict[str, int]:
    distribution = {label: 0 for label in reversed(RISK_LABELS)}
    for item in successful:
        label = item.result.score_card.risk_level
        if label in distribution:
            distribution[label] += 1
    return distribution


def _top_issues(successful: Sequence[BatchItem]) -> List[Dict[str, Any]]:
    frequency: Counter = Counter()
    first_seen: Dict[str, Dict[str, Any]] = {}
    contracts: Dict[str, List[str]] = {}
    for item in successful:
        for finding in item.result.reconciled.findings:
            if finding.category != FindingCategory.SECURITY:
                continue
            key = finding.title.lower()
            frequency[key] += 1
            first_seen.setdefault(key, {"title": finding.title, "severity": finding.severity.value})
            contracts.setdefault(key, []).append(item.contract_name)
    # Counter.most_common keeps insertion order among equal counts.
    return [
        {
            "title": first_seen[key]["title"],
            "severity": first_seen[key]["severity"],
            "frequency": count,
            "affectedContracts": len(set(contracts[key])),
            "contractNames": list(dict.fromkeys(contracts[key]))[:3],
        }
        for key, count in frequency.most_common(TOP_ISSUES_LIMIT)
    ]
