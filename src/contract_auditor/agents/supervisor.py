from __future__ import annotations

import logging
import statistics
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, List, Optional, Sequence

from contract_auditor.agents.base import AnalysisProvider
from contract_auditor.analyzers.scoring import risk_label_from_score
from contract_auditor.errors import ReconciliationFailure
from contract_auditor.knowledge.instructions import InstructionSet
from contract_auditor.models.finding import (
    ConsensusGroup,
    Conflict,
    Finding,
    ReconciledFindingSet,
    SeverityScale,
    VerificationStatus,
)
from contract_auditor.models.provider import ProviderResult
from contract_auditor.observability.logger import EventLogger
from contract_auditor.telemetry import span
from contract_auditor.utils.provider_validator import (
    InvalidProviderOutput,
    parse_supervisor_output,
    verified_findings_from,
)
from contract_auditor.utils.signature import finding_signature

logger = logging.getLogger(__name__)

DEFAULT_SCORE_WHEN_MISSING = 75.0
CONFLICT_RESOLUTION = "prefer majority, tie-break to higher risk"
RISK_LABEL_ORDER = ("Critical Risk", "High Risk", "Medium Risk", "Low Risk", "Safe")


def consensus_score(scores: Sequence[float]) -> float:
    """Agreement between provider scores: 1 at zero dispersion, 0 at a stddev of 50 or more."""
    if not scores:
        return 0.5
    spread = statistics.pstdev(scores)
    return round(max(0.0, min(1.0, 1 - spread / 50)), 2)


def detect_conflicts(results: Sequence[ProviderResult]) -> List[Conflict]:
    labelled = [result for result in results if result.success and result.risk_label]
    values: List[str] = []
    for result in labelled:
        if result.risk_label not in values:
            values.append(result.risk_label)
    if len(values) <= 1:
        return []
    return [
        Conflict(
            conflict_type="risk_level_disagreement",
            values=values,
            providers=[result.provider_id for result in labelled],
            resolution=CONFLICT_RESOLUTION,
            resolved_value=resolve_majority_label([r.risk_label for r in labelled]),
        )
    ]


def resolve_majority_label(labels: Sequence[str]) -> Optional[str]:
    if not labels:
        return None
    counts: Dict[str, int] = {}
    for label in labels:
        counts[label] = counts.get(label, 0) + 1
    top = max(counts.values())
    tied = [label for label, count in counts.items() if count == top]
    return min(tied, key=_risk_rank)


def _risk_rank(label: str) -> int:
    try:
        return RISK_LABEL_ORDER.index(label)
    except ValueError:
        return len(RISK_LABEL_ORDER)


class SupervisorReconciler:
    """Second pass over provider findings.

    The primary path asks a supervisor provider for a verified finding list.
    When no supervisor is configured, or it fails or answers with unusable
    output, the run falls back to a statistical consensus over provider scores.
    """

    def __init__(
        self,
        supervisor: Optional[AnalysisProvider] = None,
        instruction_set: Optional[InstructionSet] = None,
        severity_scale: Optional[SeverityScale] = None,
        timeout_sec: float = 180.0,
        max_source_chars: int = 12000,
        supervisor_model: Optional[str] = None,
        event_logger: Optional[EventLogger] = None,
    ) -> None:
        self.supervisor = supervisor
        self.instruction_set = instruction_set or InstructionSet()
        self.severity_scale = severity_scale or SeverityScale()
        self.timeout_sec = timeout_sec
        self.max_source_chars = max_source_chars
        self.supervisor_model = supervisor_model
        self.event_logger = event_logger

    def reconcile(
        self,
        source: str,
        contract_name: str,
        results: Sequence[ProviderResult],
        groups: Sequence[ConsensusGroup],
    ) -> ReconciledFindingSet:
        successful = [result for result in results if result.success]
        try:
            with span("supervisor.reconcile", supervisor_model=self.supervisor_model):
                return self._supervised(source, contract_name, successful, groups)
        except ReconciliationFailure as exc:
            logger.warning(f"Supervisor reconciliation failed, using statistical consensus: {exc}")
            if self.event_logger:
                self.event_logger.log("supervisor.fallback", error=str(exc))
            return self.statistical(successful, groups)

    def statistical(
        self,
        results: Sequence[ProviderResult],
        groups: Sequence[ConsensusGroup],
    ) -> ReconciledFindingSet:
        scores = [result.score for result in results if result.success and result.score is not None]
        average = statistics.mean(scores) if scores else DEFAULT_SCORE_WHEN_MISSING
        findings, removed = self._merge([], results, groups)
        return ReconciledFindingSet(
            findings=findings,
            verification_status=VerificationStatus.STATISTICAL_CONSENSUS,
            consensus_score=consensus_score(scores),
            conflicts=[],
            verified_findings=[],
            consolidated_score=round(average, 2),
            final_risk_level=risk_label_from_score(average),
            overview="Statistical consensus across provider results",
            duplicates_removed=removed,
            consensus_groups=list(groups),
        )

    def _supervised(
        self,
        source: str,
        contract_name: str,
        results: Sequence[ProviderResult],
        groups: Sequence[ConsensusGroup],
    ) -> ReconciledFindingSet:
        if self.supervisor is None:
            raise ReconciliationFailure("supervisor not configured")
        prompt = self.instruction_set.supervisor_prompt(contract_name, _provider_summaries(results))
        raw = self._invoke_supervisor(source[: self.max_source_chars], prompt)
        try:
            payload = parse_supervisor_output(raw)
        except InvalidProviderOutput as exc:
            raise ReconciliationFailure(str(exc)) from exc

        verified = verified_findings_from(payload)
        findings, removed = self._merge(verified, results, groups)
        scores = [result.score for result in results if result.score is not None]
        return ReconciledFindingSet(
            findings=findings,
            verification_status=VerificationStatus.SUPERVISOR_VERIFIED,
            consensus_score=consensus_score(scores),
            conflicts=detect_conflicts(results),
            verified_findings=verified,
            consolidated_score=payload.consolidated_score,
            final_risk_level=payload.final_risk_level,
            supervisor_model=self.supervisor_model,
            overview=payload.overview,
            insights=list(payload.insights),
            duplicates_removed=removed,
            consensus_groups=list(groups),
        )

    def _invoke_supervisor(self, source: str, prompt: str) -> Any:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="supervisor")
        try:
            future = executor.submit(self.supervisor.invoke, source, prompt, self.timeout_sec)
            return future.result(timeout=self.timeout_sec)
        except FutureTimeout as exc:
            raise ReconciliationFailure(f"supervisor timed out after {self.timeout_sec}s") from exc
        except Exception as exc:
            raise ReconciliationFailure(f"{type(exc).__name__}: {exc}") from exc
        finally:
            executor.shutdown(wait=False)

    def _merge(
        self,
        verified: Sequence[Finding],
        results: Sequence[ProviderResult],
        groups: Sequence[ConsensusGroup],
    ) -> tuple[List[Finding], int]:
        counts = {group.signature: group.consensus_count for group in groups}
        candidates: List[Finding] = list(verified)
        for result in results:
            candidates.extend(result.findings)

        seen = set()
        unique: List[Finding] = []
        for finding in candidates:
            key = finding.dedup_key()
            if key in seen:
                continue
            seen.add(key)
            unique.append(finding.with_consensus(counts.get(finding_signature(finding), 1)))
        return self.severity_scale.sort(unique), len(candidates) - len(unique)


def _provider_summaries(results: Sequence[ProviderResult]) -> List[Dict[str, Any]]:
    return [
        {
            "provider": result.provider_id,
            "specialty": result.specialty,
            "confidence": result.confidence.value,
            "securityScore": result.score,
            "riskLevel": result.risk_label or "Unknown",
            "findings": [
                {
                    "severity": finding.severity.value,
                    "title": finding.title,
                    "description": finding.description,
                    "location": finding.location,
                    "category": finding.category.value,
                }
                for finding in result.findings
            ],
        }
        for result in results
    ]
