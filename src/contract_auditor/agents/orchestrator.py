from __future__ import annotations

import dataclasses
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from contract_auditor.agents.base import AnalysisProvider, LLMClient
from contract_auditor.agents.dispatcher import ProviderDispatcher
from contract_auditor.agents.supervisor import SupervisorReconciler
from contract_auditor.analyzers.comparison import ComparableInput, compare_results
from contract_auditor.analyzers.consensus import ConsensusBuilder
from contract_auditor.analyzers.pattern_scanner import PatternScanner
from contract_auditor.analyzers.scoring import ScoringEngine
from contract_auditor.clients.provider_factory import ProviderSetup, build_provider_setup
from contract_auditor.errors import InsufficientProviders, TargetInvalid
from contract_auditor.knowledge.instructions import InstructionSet
from contract_auditor.knowledge.pattern_catalog import PatternCatalog
from contract_auditor.models.analysis import (
    MODES,
    REPORT_FORMATS,
    TIERS,
    AnalysisOptions,
    AnalysisRequest,
    AnalysisResult,
    ComparisonReport,
    PatternScanResult,
    RunState,
    ScoreCard,
)
from contract_auditor.models.finding import (
    Confidence,
    Finding,
    ReconciledFindingSet,
    Severity,
    SeverityScale,
)
from contract_auditor.models.provider import ProviderDescriptor
from contract_auditor.observability.logger import EventLogger
from contract_auditor.reports.synthesizer import ReportMap, ReportSynthesizer, fallback_report_map
from contract_auditor.telemetry import set_run_context, span
from contract_auditor.utils.artifact_store import ArtifactStore
from contract_auditor.utils.config import DEFAULT_SETTINGS

logger = logging.getLogger(__name__)

INVALID_TARGET_ID = "invalid-target"


class Orchestrator:
    """Runs one contract through dispatch, reconciliation, scoring and reporting.

    ``run_analysis`` never raises: invalid targets, too few successful
    providers and unexpected errors all come back as a failed
    ``AnalysisResult`` with a zeroed score card and a minimal report map.
    """

    def __init__(
        self,
        settings: Optional[Dict[str, Any]] = None,
        setup: Optional[ProviderSetup] = None,
        providers: Optional[Mapping[str, AnalysisProvider]] = None,
        descriptors: Optional[Sequence[ProviderDescriptor]] = None,
        supervisor: Optional[AnalysisProvider] = None,
        llm_client: Optional[LLMClient] = None,
        instruction_set: Optional[InstructionSet] = None,
        pattern_catalog: Optional[PatternCatalog] = None,
        severity_scale: Optional[SeverityScale] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or DEFAULT_SETTINGS
        if setup is None:
            if providers is not None:
                setup = ProviderSetup(
                    descriptors=list(descriptors or []),
                    providers=dict(providers),
                    supervisor=supervisor,
                    supervisor_model="supervisor" if supervisor else None,
                )
            else:
                setup = build_provider_setup(self.settings, llm_client=llm_client)
        self.setup = setup
        self.instruction_set = instruction_set or InstructionSet()
        self.severity_scale = severity_scale or SeverityScale()
        self.pattern_scanner = PatternScanner(pattern_catalog or PatternCatalog.default())
        self.consensus_builder = ConsensusBuilder(self.severity_scale)
        self.scoring_engine = ScoringEngine()
        self.clock = clock

    def run_analysis(self, request: AnalysisRequest) -> AnalysisResult:
        started = self.clock()
        states: List[str] = [RunState.QUEUED.value]
        if isinstance(request.source, str) and request.source:
            analysis_id = ArtifactStore.compute_analysis_id(request.source)
        else:
            analysis_id = INVALID_TARGET_ID
        run_id = set_run_context(
            analysis_id, request.contract_name, tier=request.options.tier, mode=request.options.mode
        )
        store = self._artifact_store(analysis_id, run_id)
        obs_conf = self.settings.get("observability", {}) or {}
        event_logger = EventLogger(store, run_id=run_id, enabled=obs_conf.get("enabled", True))
        event_logger.log(
            "run.start",
            contract_name=request.contract_name,
            tier=request.options.tier,
            mode=request.options.mode,
        )
        metadata: Dict[str, Any] = {
            "contract_name": request.contract_name,
            "analysis_id": analysis_id,
            "run_id": run_id,
            "options": request.options.to_dict(),
            "states": states,
            "stage_timings_ms": {},
        }
        formats = request.options.resolved_formats()

        try:
            self._validate(request)
            descriptors = self._select_descriptors(request.options)

            states.append(RunState.DISPATCHING.value)
            with self._stage("pattern_scan", metadata, event_logger):
                pattern_scan = self.pattern_scanner.scan(request.source)
            dispatcher = ProviderDispatcher(
                self.setup.providers,
                min_successes=int(self.settings.get("analysis", {}).get("min_successes", 2)),
                event_logger=event_logger,
            )
            with self._stage("dispatch", metadata, event_logger):
                outcome = dispatcher.dispatch(request.source, descriptors)
            metadata["providers_used"] = [result.provider_id for result in outcome.successful]
            metadata["providers_failed"] = [
                {"provider": result.provider_id, "error": result.error} for result in outcome.failed
            ]
            metadata["provider_success_rate"] = outcome.success_rate

            states.append(RunState.RECONCILING.value)
            with self._stage("reconcile", metadata, event_logger):
                groups = self.consensus_builder.build(outcome.successful)
                reconciled = self._reconciler(event_logger).reconcile(
                    request.source,
                    request.contract_name,
                    outcome.successful,
                    groups,
                )

            states.append(RunState.SCORING.value)
            with self._stage("score", metadata, event_logger):
                score_card = self.scoring_engine.score(reconciled.findings, pattern_scan.findings)

            states.append(RunState.REPORTING.value)
            metadata["analysis_time_ms"] = self._elapsed_ms(started)
            with self._stage("report", metadata, event_logger):
                synthesizer = ReportSynthesizer(severity_scale=self.severity_scale, event_logger=event_logger)
                report_map = synthesizer.generate(
                    reconciled,
                    score_card,
                    metadata=metadata,
                    formats=formats,
                    pattern_scan=pattern_scan,
                )
        except (TargetInvalid, InsufficientProviders) as exc:
            logger.warning(f"Analysis of {request.contract_name} failed: {exc}")
            return self._failed(exc, started, metadata, formats, event_logger, store)
        except Exception as exc:
            logger.exception(f"Unexpected error analyzing {request.contract_name}")
            return self._failed(exc, started, metadata, formats, event_logger, store)

        states.append(RunState.COMPLETED.value)
        metadata["analysis_time_ms"] = self._elapsed_ms(started)
        self._persist(store, report_map, metadata)
        event_logger.log(
            "run.end",
            status="ok",
            overall_score=score_card.overall,
            risk_level=score_card.risk_level,
            verification_status=reconciled.verification_status.value,
        )
        return AnalysisResult(
            success=True,
            reconciled=reconciled,
            score_card=score_card,
            report_map=report_map,
            metadata=metadata,
            pattern_scan=pattern_scan,
        )

    def generate_reports(
        self,
        reconciled: ReconciledFindingSet,
        score_card: ScoreCard,
        formats: Sequence[str] = REPORT_FORMATS,
        metadata: Optional[Dict[str, Any]] = None,
        pattern_scan: Optional[PatternScanResult] = None,
    ) -> ReportMap:
        synthesizer = ReportSynthesizer(severity_scale=self.severity_scale)
        return synthesizer.generate(
            reconciled,
            score_card,
            metadata=metadata,
            formats=formats,
            pattern_scan=pattern_scan,
        )

    def compare_results(self, previous: ComparableInput, current: ComparableInput) -> ComparisonReport:
        return compare_results(previous, current)

    def _validate(self, request: AnalysisRequest) -> None:
        if not isinstance(request.source, str) or not request.source.strip():
            raise TargetInvalid("contract source is empty")
        options = request.options
        if options.tier not in TIERS:
            raise TargetInvalid(f"Unknown tier: {options.tier}")
        if options.mode not in MODES:
            raise TargetInvalid(f"Unknown analysis mode: {options.mode}")
        unknown = [fmt for fmt in options.report_formats if fmt not in REPORT_FORMATS]
        if unknown:
            raise TargetInvalid(f"Unknown report formats: {', '.join(unknown)}")

    def _select_descriptors(self, options: AnalysisOptions) -> List[ProviderDescriptor]:
        descriptors = list(self.setup.descriptors)
        if options.tier == "free":
            limit = int(self.settings.get("analysis", {}).get("free_tier_provider_limit", 3))
            descriptors = descriptors[:limit]
        return [
            dataclasses.replace(
                descriptor,
                instructions=self.instruction_set.compose(
                    descriptor.specialty,
                    options.mode,
                    options.custom_instructions,
                ),
            )
            for descriptor in descriptors
        ]

    def _reconciler(self, event_logger: EventLogger) -> SupervisorReconciler:
        supervisor_conf = self.settings.get("supervisor", {}) or {}
        return SupervisorReconciler(
            supervisor=self.setup.supervisor,
            instruction_set=self.instruction_set,
            severity_scale=self.severity_scale,
            timeout_sec=float(supervisor_conf.get("timeout_sec", 180)),
            max_source_chars=int(supervisor_conf.get("max_source_chars", 12000)),
            supervisor_model=self.setup.supervisor_model,
            event_logger=event_logger,
        )

    def _artifact_store(self, analysis_id: str, run_id: str) -> Optional[ArtifactStore]:
        artifacts_dir = self.settings.get("analysis", {}).get("artifacts_dir")
        if not artifacts_dir:
            return None
        return ArtifactStore(artifacts_dir, analysis_id, run_id=run_id)

    @contextmanager
    def _stage(self, stage: str, metadata: Dict[str, Any], event_logger: EventLogger) -> Iterator[None]:
        event_logger.stage_start(stage)
        started = self.clock()
        status = "error"
        try:
            with span(f"stage.{stage}", stage=stage):
                yield
            status = "ok"
        finally:
            elapsed = self._elapsed_ms(started)
            metadata["stage_timings_ms"][stage] = elapsed
            event_logger.stage_end(stage, status=status, duration_ms=elapsed)

    def _elapsed_ms(self, started: float) -> int:
        return int((self.clock() - started) * 1000)

    def _failed(
        self,
        exc: Exception,
        started: float,
        metadata: Dict[str, Any],
        formats: Sequence[str],
        event_logger: EventLogger,
        store: Optional[ArtifactStore],
    ) -> AnalysisResult:
        metadata["states"].append(RunState.FAILED.value)
        metadata["analysis_time_ms"] = self._elapsed_ms(started)
        metadata["error_type"] = type(exc).__name__
        error = str(exc) or type(exc).__name__
        if isinstance(exc, InsufficientProviders):
            metadata["providers_failed"] = [_failure_entry(item) for item in exc.failures]
        reconciled = ReconciledFindingSet.empty()
        reconciled.findings.append(
            Finding(
                severity=Severity.INFO,
                title="Analysis Failed",
                description=f"Unable to complete analysis: {error}",
                location="N/A",
                recommendation="Review the contract source and provider configuration, then retry",
                confidence=Confidence.LOW,
                origin="system",
            )
        )
        score_card = ScoreCard.zeroed()
        report_map = fallback_report_map(
            formats,
            error,
            contract_name=metadata.get("contract_name") or "Contract",
            score_card=score_card,
        )
        self._persist(store, report_map, metadata)
        event_logger.log("run.end", status="error", error=error, error_type=type(exc).__name__)
        return AnalysisResult(
            success=False,
            reconciled=reconciled,
            score_card=score_card,
            report_map=report_map,
            metadata=metadata,
            error=error,
        )

    def _persist(self, store: Optional[ArtifactStore], report_map: ReportMap, metadata: Dict[str, Any]) -> None:
        if store is None:
            return
        try:
            metadata["report_location"] = store.persist(report_map, metadata)
        except OSError as exc:
            logger.warning(f"Failed to persist reports for {metadata.get('contract_name')}: {exc}")


def _failure_entry(failure: str) -> Dict[str, Optional[str]]:
    provider, _, error = failure.partition(": ")
    return {"provider": provider, "error": error or None}
