from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from contract_auditor.models.finding import Finding, ReconciledFindingSet

REPORT_FORMATS = ("executive", "technical", "machine-readable", "risk-matrix", "statistics")
TIERS = ("free", "premium")
MODES = ("normal", "aggressive", "custom")

RISK_LABELS = ("Critical Risk", "High Risk", "Medium Risk", "Low Risk", "Safe")


class RunState(str, Enum):
    QUEUED = "Queued"
    DISPATCHING = "Dispatching"
    RECONCILING = "Reconciling"
    SCORING = "Scoring"
    REPORTING = "Reporting"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass
class AnalysisOptions:
    tier: str = "premium"
    mode: str = "normal"
    custom_instructions: Optional[str] = None
    report_formats: List[str] = field(default_factory=lambda: ["executive", "technical", "machine-readable"])
    include_risk_matrix: bool = True
    include_statistics: bool = True

    @classmethod
    def from_preset(cls, name: str) -> "AnalysisOptions":
        preset = AUDIT_PRESETS.get(name)
        if preset is None:
            raise KeyError(f"Unknown audit preset: {name}")
        return cls(
            tier=preset["tier"],
            mode=preset["mode"],
            report_formats=list(preset["report_formats"]),
            include_risk_matrix=preset["include_risk_matrix"],
            include_statistics=preset["include_statistics"],
        )

    def resolved_formats(self) -> List[str]:
        formats = [fmt for fmt in self.report_formats if fmt]
        if self.include_risk_matrix and "risk-matrix" not in formats:
            formats.append("risk-matrix")
        if self.include_statistics and "statistics" not in formats:
            formats.append("statistics")
        return formats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "mode": self.mode,
            "custom_instructions": self.custom_instructions,
            "report_formats": list(self.report_formats),
            "include_risk_matrix": self.include_risk_matrix,
            "include_statistics": self.include_statistics,
        }


AUDIT_PRESETS: Dict[str, Dict[str, Any]] = {
    "development": {
        "tier": "premium",
        "mode": "normal",
        "report_formats": ["machine-readable"],
        "include_risk_matrix": False,
        "include_statistics": False,
    },
    "testing": {
        "tier": "premium",
        "mode": "normal",
        "report_formats": ["technical", "machine-readable"],
        "include_risk_matrix": True,
        "include_statistics": True,
    },
    "production": {
        "tier": "premium",
        "mode": "aggressive",
        "report_formats": ["technical", "machine-readable", "executive"],
        "include_risk_matrix": True,
        "include_statistics": True,
    },
    "executive": {
        "tier": "premium",
        "mode": "normal",
        "report_formats": ["executive"],
        "include_risk_matrix": True,
        "include_statistics": False,
    },
    "comprehensive": {
        "tier": "premium",
        "mode": "aggressive",
        "report_formats": ["technical", "machine-readable", "executive"],
        "include_risk_matrix": True,
        "include_statistics": True,
    },
}


@dataclass
class AnalysisRequest:
    source: str
    contract_name: str = "Contract"
    options: AnalysisOptions = field(default_factory=AnalysisOptions)


@dataclass
class ScoreCard:
    security: int
    gas_optimization: int
    code_quality: int
    overall: int
    risk_level: str
    breakdown: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def zeroed(cls) -> "ScoreCard":
        return cls(
            security=0,
            gas_optimization=0,
            code_quality=0,
            overall=0,
            risk_level="Unknown",
            breakdown={"critical": 0, "high": 0, "medium": 0, "low": 0, "info": 0, "gas": 0, "quality": 0},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "security": self.security,
            "gas_optimization": self.gas_optimization,
            "code_quality": self.code_quality,
            "overall": self.overall,
            "risk_level": self.risk_level,
            "breakdown": dict(self.breakdown),
        }


@dataclass
class PatternScanResult:
    findings: List[Finding] = field(default_factory=list)
    coverage: int = 0
    rules_triggered: List[str] = field(default_factory=list)
    total_rules: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "findings": [finding.to_dict() for finding in self.findings],
            "coverage": self.coverage,
            "rules_triggered": list(self.rules_triggered),
            "total_rules": self.total_rules,
        }


@dataclass
class AnalysisResult:
    success: bool
    reconciled: ReconciledFindingSet
    score_card: ScoreCard
    report_map: Dict[str, Dict[str, Any]]
    metadata: Dict[str, Any] = field(default_factory=dict)
    pattern_scan: PatternScanResult = field(default_factory=PatternScanResult)
    error: Optional[str] = None

    @property
    def contract_name(self) -> str:
        return str(self.metadata.get("contract_name") or "Contract")

    def all_findings(self) -> List[Finding]:
        return list(self.reconciled.findings) + list(self.pattern_scan.findings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "reconciled": self.reconciled.to_dict(),
            "pattern_scan": self.pattern_scan.to_dict(),
            "score_card": self.score_card.to_dict(),
            "report_map": self.report_map,
            "metadata": self.metadata,
        }


@dataclass
class BatchItem:
    index: int
    contract_name: str
    success: bool
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "contract_name": self.contract_name,
            "success": self.success,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "score_card": self.result.score_card.to_dict() if self.result else None,
        }


@dataclass
class BatchResult:
    batch_id: str
    total_contracts: int
    items: List[BatchItem]
    summary: Dict[str, Any]
    completed_at: str

    @property
    def success_count(self) -> int:
        return self.summary.get("successCount", 0)

    @property
    def failure_count(self) -> int:
        return self.summary.get("failureCount", 0)

    @property
    def failed_contracts(self) -> List[Dict[str, Any]]:
        return self.summary.get("failedContracts", [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total_contracts": self.total_contracts,
            "items": [item.to_dict() for item in self.items],
            "summary": self.summary,
            "completed_at": self.completed_at,
        }


@dataclass
class ComparisonReport:
    success: bool
    score_delta: Dict[str, int] = field(default_factory=dict)
    finding_delta: Dict[str, Any] = field(default_factory=dict)
    trend: str = "STABLE"
    key_changes: List[str] = field(default_factory=list)
    recommendations: List[Dict[str, str]] = field(default_factory=list)
    contract_name: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "contract_name": self.contract_name,
            "score_delta": dict(self.score_delta),
            "finding_delta": dict(self.finding_delta),
            "trend": self.trend,
            "key_changes": list(self.key_changes),
            "recommendations": list(self.recommendations),
            "error": self.error,
        }
