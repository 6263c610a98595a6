from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from contract_auditor.models.finding import Confidence, Finding


@dataclass(frozen=True)
class ProviderDescriptor:
    provider_id: str
    specialty: str
    instructions: str = ""
    timeout_sec: float = 180.0
    name: Optional[str] = None
    model: Optional[str] = None
    focus: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.provider_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "name": self.display_name,
            "specialty": self.specialty,
            "model": self.model,
            "timeout_sec": self.timeout_sec,
        }


@dataclass
class ProviderResult:
    provider_id: str
    specialty: str
    success: bool
    findings: List[Finding] = field(default_factory=list)
    score: Optional[float] = None
    risk_label: Optional[str] = None
    latency_ms: int = 0
    confidence: Confidence = Confidence.LOW
    error: Optional[str] = None
    summary: Optional[str] = None
    contract_type: Optional[str] = None

    @classmethod
    def failure(
        cls,
        provider_id: str,
        specialty: str,
        error: str,
        latency_ms: int = 0,
    ) -> "ProviderResult":
        return cls(
            provider_id=provider_id,
            specialty=specialty,
            success=False,
            latency_ms=latency_ms,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "specialty": self.specialty,
            "success": self.success,
            "findings": [finding.to_dict() for finding in self.findings],
            "score": self.score,
            "risk_label": self.risk_label,
            "latency_ms": self.latency_ms,
            "confidence": self.confidence.value,
            "error": self.error,
            "summary": self.summary,
            "contract_type": self.contract_type,
        }


@dataclass
class DispatchOutcome:
    successful: List[ProviderResult]
    failed: List[ProviderResult]

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)

    @property
    def success_rate(self) -> float:
        if not self.total:
            return 0.0
        return round(len(self.successful) / self.total * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": [result.provider_id for result in self.successful],
            "failed": [
                {"provider_id": result.provider_id, "error": result.error}
                for result in self.failed
            ],
            "success_rate": self.success_rate,
        }
