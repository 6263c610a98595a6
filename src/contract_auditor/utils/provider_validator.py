"""Validation boundary for raw provider and supervisor output.

Providers answer in loosely-structured JSON. Everything they return passes
through this module exactly once: the raw payload is parsed, mapped from the
shape the provider used onto the canonical field names, validated with
Pydantic, and converted into typed ``ProviderResult`` / ``Finding`` objects.
Downstream components never look at raw provider payloads.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from contract_auditor.models.finding import Confidence, Finding, FindingCategory, Severity
from contract_auditor.models.provider import ProviderDescriptor, ProviderResult
from contract_auditor.utils.llm_json import describe_llm_failure, parse_llm_json

_SECURITY_KEYS = ("keyFindings", "findings", "securityFindings", "vulnerabilities")
_GAS_KEYS = ("gasOptimizations", "gasOptimization")
_QUALITY_KEYS = ("codeQualityIssues", "qualityIssues")
_SCORE_KEYS = ("securityScore", "overallScore", "score")
_RISK_KEYS = ("riskLevel", "risk_level", "overallRisk")


class InvalidProviderOutput(ValueError):
    pass


def _first_present(data: Dict[str, Any], keys: tuple) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _clamp_score(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, min(100.0, score))


RISK_LABEL_ALIASES = (
    ("critical", "Critical Risk"),
    ("high", "High Risk"),
    ("medium", "Medium Risk"),
    ("moderate", "Medium Risk"),
    ("low", "Low Risk"),
    ("safe", "Safe"),
    ("minimal", "Safe"),
)


def normalize_risk_label(value: Any) -> Optional[str]:
    text = _as_text(value)
    if text is None:
        return None
    lowered = text.lower()
    for keyword, label in RISK_LABEL_ALIASES:
        if keyword in lowered:
            return label
    return text


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    text = str(value).strip()
    return text or None


class RawFindingSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    severity: Severity = Severity.INFO
    title: str = "Untitled finding"
    description: str = ""
    location: Optional[str] = None
    impact: Optional[str] = None
    recommendation: Optional[str] = None
    confidence: Confidence = Confidence.MEDIUM
    reference: Optional[str] = None
    code_snippet: Optional[str] = None

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v: Any) -> Severity:
        return Severity.parse(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, v: Any) -> Confidence:
        return Confidence.parse(v)

    @field_validator("title", mode="before")
    @classmethod
    def normalize_title(cls, v: Any) -> str:
        return _as_text(v) or "Untitled finding"

    @field_validator("description", mode="before")
    @classmethod
    def normalize_description(cls, v: Any) -> str:
        return _as_text(v) or ""

    @field_validator("location", "impact", "recommendation", "reference", "code_snippet", mode="before")
    @classmethod
    def normalize_optional_text(cls, v: Any) -> Optional[str]:
        return _as_text(v)


class ProviderPayloadSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    findings: List[RawFindingSchema] = Field(default_factory=list)
    gas: List[RawFindingSchema] = Field(default_factory=list)
    quality: List[RawFindingSchema] = Field(default_factory=list)
    score: Optional[float] = None
    risk_label: Optional[str] = None
    summary: Optional[str] = None
    contract_type: Optional[str] = None

    @field_validator("score", mode="before")
    @classmethod
    def validate_score(cls, v: Any) -> Optional[float]:
        return _clamp_score(v)

    @field_validator("risk_label", mode="before")
    @classmethod
    def normalize_risk(cls, v: Any) -> Optional[str]:
        return normalize_risk_label(v)

    @field_validator("summary", "contract_type", mode="before")
    @classmethod
    def normalize_text(cls, v: Any) -> Optional[str]:
        return _as_text(v)


class SupervisorPayloadSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    verified_findings: List[RawFindingSchema] = Field(default_factory=list)
    overview: Optional[str] = None
    consolidated_score: Optional[float] = None
    final_risk_level: Optional[str] = None
    insights: List[str] = Field(default_factory=list)

    @field_validator("consolidated_score", mode="before")
    @classmethod
    def validate_score(cls, v: Any) -> Optional[float]:
        return _clamp_score(v)

    @field_validator("final_risk_level", mode="before")
    @classmethod
    def normalize_risk(cls, v: Any) -> Optional[str]:
        return normalize_risk_label(v)

    @field_validator("overview", mode="before")
    @classmethod
    def normalize_text(cls, v: Any) -> Optional[str]:
        return _as_text(v)

    @field_validator("insights", mode="before")
    @classmethod
    def normalize_insights(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        if isinstance(v, dict):
            return [f"{key}: {_as_text(value)}" for key, value in v.items() if _as_text(value)]
        return [str(item) for item in v if item]


def adapt_finding(raw: Any) -> Dict[str, Any]:
    """Map a provider's finding object onto canonical finding fields."""
    if isinstance(raw, str):
        return {"title": raw}
    if not isinstance(raw, dict):
        return {"title": str(raw)}
    location = raw.get("location")
    if location is None and raw.get("line") is not None:
        location = f"Line {raw['line']}"
    elif isinstance(location, int):
        location = f"Line {location}"
    return {
        "severity": raw.get("severity") or raw.get("difficulty"),
        "title": raw.get("title") or raw.get("name") or raw.get("type"),
        "description": raw.get("description") or raw.get("details"),
        "location": location,
        "impact": raw.get("impact") or raw.get("savings"),
        "recommendation": raw.get("recommendation") or raw.get("fix") or raw.get("mitigation"),
        "confidence": raw.get("confidence"),
        "reference": raw.get("cveReference") or raw.get("reference"),
        "code_snippet": raw.get("codeExample") or raw.get("codeSnippet"),
    }


def adapt_provider_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map any accepted provider response shape onto ProviderPayloadSchema field names.

    Accepted shapes: the specialty-prompt shape (``keyFindings`` / ``securityScore``
    / ``riskLevel``) and the report shape (``findings`` or ``securityFindings`` with
    ``overallScore``), optionally carrying ``gasOptimizations`` and
    ``codeQualityIssues`` lists.
    """
    security = _first_present(data, _SECURITY_KEYS)
    # The report shape nests categories under "findings".
    if isinstance(security, dict):
        nested = security
        security = nested.get("security") or []
        data = dict(data)
        data.setdefault("gasOptimizations", nested.get("gasOptimization"))
        data.setdefault("codeQualityIssues", nested.get("codeQuality"))
    gas = _first_present(data, _GAS_KEYS)
    quality = _first_present(data, _QUALITY_KEYS)
    return {
        "findings": [adapt_finding(item) for item in _as_list(security)],
        "gas": [adapt_finding(item) for item in _as_list(gas)],
        "quality": [adapt_finding(item) for item in _as_list(quality)],
        "score": _first_present(data, _SCORE_KEYS),
        "risk_label": _first_present(data, _RISK_KEYS),
        "summary": data.get("summary"),
        "contract_type": data.get("contractType"),
    }


def adapt_supervisor_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "verified_findings": [adapt_finding(item) for item in _as_list(data.get("verifiedFindings"))],
        "overview": data.get("overview"),
        "consolidated_score": data.get("consolidatedScore"),
        "final_risk_level": data.get("finalRiskLevel"),
        "insights": data.get("supervisorInsights"),
    }


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return [item for item in value if item is not None]
    return [value]


def classify_confidence(has_findings: bool, has_score: bool, has_risk: bool) -> Confidence:
    present = sum([has_findings, has_score, has_risk])
    if present == 3:
        return Confidence.HIGH
    if present == 2:
        return Confidence.MEDIUM
    return Confidence.LOW


def _to_finding(
    schema: RawFindingSchema,
    origin: str,
    category: FindingCategory,
    default_severity: Optional[Severity] = None,
) -> Finding:
    severity = schema.severity
    if default_severity is not None and "severity" not in schema.model_fields_set:
        severity = default_severity
    return Finding(
        severity=severity,
        title=schema.title,
        description=schema.description,
        location=schema.location,
        impact=schema.impact,
        recommendation=schema.recommendation,
        confidence=schema.confidence,
        origin=origin,
        category=category,
        code_snippet=schema.code_snippet,
        reference=schema.reference,
    )


def _reject_unparseable(raw: Any, required_keys: tuple = ()) -> None:
    failure = describe_llm_failure(raw, required_keys)
    if failure is None:
        return
    missing = ", ".join(failure.get("missing_keys", []))
    raise InvalidProviderOutput(f"invalid_output: {failure['error_type']} {missing}".rstrip())


def parse_provider_output(
    raw: Any,
    descriptor: ProviderDescriptor,
    latency_ms: int = 0,
) -> ProviderResult:
    """Validate one provider response into a typed ProviderResult.

    Raises InvalidProviderOutput when the response is not a JSON object or does
    not validate.
    """
    _reject_unparseable(raw)
    adapted = adapt_provider_payload(parse_llm_json(raw))
    if not (adapted["findings"] or adapted["gas"] or adapted["quality"]) and adapted["score"] is None and not adapted["risk_label"]:
        raise InvalidProviderOutput("invalid_output: no findings, score or risk level")
    # Severity is dropped on gas/quality items that only carry a difficulty.
    for item in adapted["gas"] + adapted["quality"]:
        if item.get("severity") is None:
            item.pop("severity")
    try:
        payload = ProviderPayloadSchema.model_validate(adapted)
    except ValidationError as exc:
        raise InvalidProviderOutput(f"invalid_output: {exc.error_count()} validation errors") from exc

    origin = descriptor.provider_id
    findings = [_to_finding(item, origin, FindingCategory.SECURITY) for item in payload.findings]
    findings.extend(
        _to_finding(item, origin, FindingCategory.GAS, Severity.LOW) for item in payload.gas
    )
    findings.extend(
        _to_finding(item, origin, FindingCategory.QUALITY, Severity.LOW) for item in payload.quality
    )
    confidence = classify_confidence(
        has_findings=bool(findings),
        has_score=payload.score is not None,
        has_risk=bool(payload.risk_label),
    )
    return ProviderResult(
        provider_id=descriptor.provider_id,
        specialty=descriptor.specialty,
        success=True,
        findings=findings,
        score=payload.score,
        risk_label=payload.risk_label,
        latency_ms=latency_ms,
        confidence=confidence,
        summary=payload.summary,
        contract_type=payload.contract_type,
    )


def parse_supervisor_output(raw: Any) -> SupervisorPayloadSchema:
    _reject_unparseable(raw, required_keys=("verifiedFindings",))
    data = parse_llm_json(raw)
    try:
        return SupervisorPayloadSchema.model_validate(adapt_supervisor_payload(data))
    except ValidationError as exc:
        raise InvalidProviderOutput(f"invalid_output: {exc.error_count()} validation errors") from exc


def verified_findings_from(payload: SupervisorPayloadSchema) -> List[Finding]:
    return [
        replace(
            _to_finding(item, "supervisor", FindingCategory.SECURITY),
            confidence=Confidence.HIGH,
            verified=True,
        )
        for item in payload.verified_findings
    ]
