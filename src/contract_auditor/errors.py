from __future__ import annotations

from typing import List, Optional


class AuditError(Exception):
    """Base class for audit pipeline failures."""


class TargetInvalid(AuditError):
    pass


class ProviderTimeout(AuditError):
    def __init__(self, provider_id: str, timeout_sec: float) -> None:
        super().__init__(f"Provider {provider_id} timed out after {timeout_sec}s")
        self.provider_id = provider_id
        self.timeout_sec = timeout_sec


class InsufficientProviders(AuditError):
    def __init__(self, successes: int, required: int, failures: Optional[List[str]] = None) -> None:
        super().__init__(
            f"Insufficient providers: {successes} succeeded, at least {required} required"
        )
        self.successes = successes
        self.required = required
        self.failures = failures or []


class ReconciliationFailure(AuditError):
    pass


class ReportGenerationFailure(AuditError):
    def __init__(self, report_format: str, reason: str) -> None:
        super().__init__(f"Report format {report_format} failed: {reason}")
        self.report_format = report_format
        self.reason = reason


class BatchItemFailure(AuditError):
    def __init__(self, contract_name: str, reason: str) -> None:
        super().__init__(f"{contract_name}: {reason}")
        self.contract_name = contract_name
        self.reason = reason
