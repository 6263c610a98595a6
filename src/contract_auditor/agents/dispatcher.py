from __future__ import annotations

import contextvars
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from contract_auditor.agents.base import AnalysisProvider
from contract_auditor.errors import InsufficientProviders, ProviderTimeout
from contract_auditor.models.provider import DispatchOutcome, ProviderDescriptor, ProviderResult
from contract_auditor.observability.logger import EventLogger
from contract_auditor.telemetry import span
from contract_auditor.utils.provider_validator import InvalidProviderOutput, parse_provider_output

logger = logging.getLogger(__name__)

DEFAULT_MIN_SUCCESSES = 2


class ProviderDispatcher:
    """Fans one target out to every configured provider and joins on all of them.

    Each provider runs in its own worker thread and races only its own
    ``timeout_sec``. A provider that times out is recorded as failed; the
    worker is left to finish in the background and nothing else is cancelled.
    Results are collected, validated and logged only after every provider
    has settled or hit its deadline.
    """

    def __init__(
        self,
        providers: Mapping[str, AnalysisProvider],
        min_successes: int = DEFAULT_MIN_SUCCESSES,
        event_logger: Optional[EventLogger] = None,
    ) -> None:
        self.providers = dict(providers)
        self.min_successes = min_successes
        self.event_logger = event_logger

    def dispatch(self, target: str, descriptors: Sequence[ProviderDescriptor]) -> DispatchOutcome:
        results = self._run_all(target, descriptors)
        outcome = DispatchOutcome(
            successful=[result for result in results if result.success],
            failed=[result for result in results if not result.success],
        )
        for result in results:
            if self.event_logger:
                self.event_logger.provider_settled(result)
            if result.success:
                logger.info(
                    f"Provider {result.provider_id} returned {len(result.findings)} findings "
                    f"in {result.latency_ms}ms ({result.confidence.value})"
                )
            else:
                logger.warning(f"Provider {result.provider_id} failed: {result.error}")

        if len(outcome.successful) < self.min_successes:
            raise InsufficientProviders(
                successes=len(outcome.successful),
                required=self.min_successes,
                failures=[f"{r.provider_id}: {r.error}" for r in outcome.failed],
            )
        return outcome

    def _run_all(self, target: str, descriptors: Sequence[ProviderDescriptor]) -> List[ProviderResult]:
        if not descriptors:
            return []
        settled: Dict[int, ProviderResult] = {}
        pending: List[Tuple[int, ProviderDescriptor, Future]] = []
        executor = ThreadPoolExecutor(max_workers=len(descriptors), thread_name_prefix="provider")
        started = time.monotonic()
        try:
            for index, descriptor in enumerate(descriptors):
                provider = self.providers.get(descriptor.provider_id)
                if provider is None:
                    settled[index] = ProviderResult.failure(
                        descriptor.provider_id,
                        descriptor.specialty,
                        "provider_not_configured",
                    )
                    continue
                # Each task gets its own context copy so tracing attributes follow it.
                context = contextvars.copy_context()
                future = executor.submit(context.run, _invoke_provider, provider, target, descriptor)
                pending.append((index, descriptor, future))

            for index, descriptor, future in pending:
                remaining = max(0.0, started + descriptor.timeout_sec - time.monotonic())
                try:
                    settled[index] = future.result(timeout=remaining)
                except FutureTimeout:
                    timeout = ProviderTimeout(descriptor.provider_id, descriptor.timeout_sec)
                    settled[index] = ProviderResult.failure(
                        descriptor.provider_id,
                        descriptor.specialty,
                        str(timeout),
                        latency_ms=int((time.monotonic() - started) * 1000),
                    )
        finally:
            executor.shutdown(wait=False)
        return [settled[index] for index in range(len(descriptors))]


def _invoke_provider(
    provider: AnalysisProvider,
    target: str,
    descriptor: ProviderDescriptor,
) -> ProviderResult:
    started = time.monotonic()
    with span(
        "provider.invoke",
        provider_id=descriptor.provider_id,
        specialty=descriptor.specialty,
    ) as sp:
        try:
            raw = provider.invoke(target, descriptor.instructions, descriptor.timeout_sec)
            latency_ms = int((time.monotonic() - started) * 1000)
            result = parse_provider_output(raw, descriptor, latency_ms=latency_ms)
        except InvalidProviderOutput as exc:
            sp.set_attribute("provider.error", str(exc))
            return ProviderResult.failure(
                descriptor.provider_id,
                descriptor.specialty,
                str(exc),
                latency_ms=int((time.monotonic() - started) * 1000),
            )
        except Exception as exc:
            sp.set_attribute("provider.error", type(exc).__name__)
            return ProviderResult.failure(
                descriptor.provider_id,
                descriptor.specialty,
                f"{type(exc).__name__}: {exc}",
                latency_ms=int((time.monotonic() - started) * 1000),
            )
        sp.set_attribute("provider.findings", len(result.findings))
        return result
