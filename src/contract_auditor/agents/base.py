from __future__ import annotations

from typing import Any, Dict, Optional, Protocol


class LLMClient(Protocol):
    def complete(
        self,
        prompt: str,
        payload: dict,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        ...


class AnalysisProvider(Protocol):
    def invoke(self, target: str, instructions: str, time_budget: float) -> Any:
        ...


class TargetSource(Protocol):
    def fetch(self, identifier: str) -> str:
        ...


class ReportStore(Protocol):
    def persist(self, report_map: Dict[str, Dict[str, Any]], metadata: Dict[str, Any]) -> str:
        ...
