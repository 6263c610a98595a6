from __future__ import annotations

import contextvars

from contract_auditor.telemetry import current_run_attrs, init_telemetry, set_run_context, span


def test_run_context_is_stamped_per_run():
    def _start(name):
        run_id = set_run_context("abc123", name, tier="free", mode=None)
        return run_id, current_run_attrs()

    first_id, first = contextvars.copy_context().run(_start, "Vault")
    second_id, second = contextvars.copy_context().run(_start, None)

    assert first_id != second_id
    assert first == {"analysis_id": "abc123", "run_id": first_id, "contract_name": "Vault", "tier": "free"}
    assert "contract_name" not in second


def test_telemetry_disabled_without_endpoint(monkeypatch):
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    assert init_telemetry({"telemetry": {"enabled": True}}) is False
    assert init_telemetry({}) is False


def test_span_without_provider_is_noop():
    with span("stage.score", stage="score", skipped=None) as current:
        assert current is not None
