from __future__ import annotations

from typing import Optional

from contract_auditor.agents.base import LLMClient


class LLMAnalysisProvider:
    """AnalysisProvider backed by one model on an LLM client."""

    def __init__(self, client: LLMClient, model: Optional[str] = None) -> None:
        self.client = client
        self.model = model

    def invoke(self, target: str, instructions: str, time_budget: float) -> str:
        return self.client.complete(instructions, {"source": target}, model=self.model, timeout=time_budget)
