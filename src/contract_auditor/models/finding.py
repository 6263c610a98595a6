from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @classmethod
    def parse(cls, value: Any, default: Optional["Severity"] = None) -> "Severity":
        if isinstance(value, Severity):
            return value
        text = str(value or "").strip().upper()
        if text in ("INFORMATIONAL", "INFORMATION", "NOTE"):
            return cls.INFO
        try:
            return cls(text)
        except ValueError:
            return default or cls.INFO


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @classmethod
    def parse(cls, value: Any, default: Optional["Confidence"] = None) -> "Confidence":
        if isinstance(value, Confidence):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return default or cls.MEDIUM


class FindingCategory(str, Enum):
    SECURITY = "security"
    GAS = "gas"
    QUALITY = "quality"


class VerificationStatus(str, Enum):
    SUPERVISOR_VERIFIED = "SUPERVISOR_VERIFIED"
    STATISTICAL_CONSENSUS = "STATISTICAL_CONSENSUS"


DEFAULT_SEVERITY_ORDER = (
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFO,
)


class SeverityScale:
    """Severity ranking used for ordering findings (lower rank sorts first)."""

    def __init__(self, order: Iterable[Severity] = DEFAULT_SEVERITY_ORDER) -> None:
        self.order = tuple(order)
        self._rank = {severity: idx for idx, severity in enumerate(self.order)}

    def rank(self, severity: Severity) -> int:
        return self._rank.get(severity, len(self.order))

    def sort(self, findings: Iterable["Finding"]) -> List["Finding"]:
        # sorted() is stable, so equal severities keep their input order.
        return sorted(findings, key=lambda finding: self.rank(finding.severity))


@dataclass(frozen=True)
class Finding:
    severity: Severity
    title: str
    description: str = ""
    location: Optional[str] = None
    impact: Optional[str] = None
    recommendation: Optional[str] = None
    confidence: Confidence = Confidence.MEDIUM
    origin: str = "provider"
    verified: bool = False
    category: FindingCategory = FindingCategory.SECURITY
    code_snippet: Optional[str] = None
    consensus_count: int = 1
    reference: Optional[str] = None

    def dedup_key(self) -> str:
        return "-".join(
            [
                self.severity.value,
                self.title or "",
                self.location or "",
            ]
        ).lower()

    def with_consensus(self, count: int) -> "Finding":
        return replace(self, consensus_count=count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "impact": self.impact,
            "recommendation": self.recommendation,
            "confidence": self.confidence.value,
            "origin": self.origin,
            "verified": self.verified,
            "category": self.category.value,
            "code_snippet": self.code_snippet,
            "consensus_count": self.consensus_count,
            "reference": self.reference,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Finding":
        category = data.get("category") or FindingCategory.SECURITY.value
        try:
            category_value = FindingCategory(category)
        except ValueError:
            category_value = FindingCategory.SECURITY
        return cls(
            severity=Severity.parse(data.get("severity")),
            title=str(data.get("title") or "Untitled finding"),
            description=str(data.get("description") or ""),
            location=data.get("location"),
            impact=data.get("impact"),
            recommendation=data.get("recommendation"),
            confidence=Confidence.parse(data.get("confidence")),
            origin=str(data.get("origin") or "provider"),
            verified=bool(data.get("verified", False)),
            category=category_value,
            code_snippet=data.get("code_snippet"),
            consensus_count=int(data.get("consensus_count") or 1),
            reference=data.get("reference"),
        )


@dataclass
class ConsensusGroup:
    signature: str
    findings: List[Finding] = field(default_factory=list)
    consensus_count: int = 0
    consensus_percentage: float = 0.0
    is_consensus: bool = False

    @property
    def representative(self) -> Finding:
        return self.findings[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "title": self.representative.title if self.findings else None,
            "severity": self.representative.severity.value if self.findings else None,
            "consensus_count": self.consensus_count,
            "consensus_percentage": self.consensus_percentage,
            "is_consensus": self.is_consensus,
        }


@dataclass
class Conflict:
    conflict_type: str
    values: List[str]
    providers: List[str]
    resolution: str
    resolved_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.conflict_type,
            "values": list(self.values),
            "providers": list(self.providers),
            "resolution": self.resolution,
            "resolved_value": self.resolved_value,
        }


@dataclass
class ReconciledFindingSet:
    findings: List[Finding]
    verification_status: VerificationStatus
    consensus_score: float
    conflicts: List[Conflict] = field(default_factory=list)
    verified_findings: List[Finding] = field(default_factory=list)
    consolidated_score: Optional[float] = None
    final_risk_level: Optional[str] = None
    supervisor_model: Optional[str] = None
    overview: Optional[str] = None
    insights: List[str] = field(default_factory=list)
    duplicates_removed: int = 0
    consensus_groups: List[ConsensusGroup] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "ReconciledFindingSet":
        return cls(
            findings=[],
            verification_status=VerificationStatus.STATISTICAL_CONSENSUS,
            consensus_score=0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "findings": [finding.to_dict() for finding in self.findings],
            "verification_status": self.verification_status.value,
            "consensus_score": self.consensus_score,
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "verified_findings": [finding.to_dict() for finding in self.verified_findings],
            "consolidated_score": self.consolidated_score,
            "final_risk_level": self.final_risk_level,
            "supervisor_model": self.supervisor_model,
            "overview": self.overview,
            "insights": list(self.insights),
            "duplicates_removed": self.duplicates_removed,
            "consensus_groups": [group.to_dict() for group in self.consensus_groups],
        }
