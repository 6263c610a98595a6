from __future__ import annotations

from contract_auditor.telemetry.tracing import (
    current_run_attrs,
    init_telemetry,
    set_run_context,
    span,
)

__all__ = ["current_run_attrs", "init_telemetry", "set_run_context", "span"]
