from __future__ import annotations

import os
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

TRACER_NAME = "contract_auditor"

# Attributes stamped on every span opened while a run is active.
_RUN_ATTRS: ContextVar[Dict[str, str]] = ContextVar("audit_run_attrs", default={})


def _otlp_endpoint(conf: Dict[str, Any]) -> Optional[str]:
    return conf.get("otlp_endpoint") or os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")


def init_telemetry(settings: Dict[str, Any]) -> bool:
    """Install an OTLP-exporting tracer provider. Returns False when tracing stays a no-op."""
    conf = (settings or {}).get("telemetry", {}) or {}
    endpoint = _otlp_endpoint(conf)
    if not conf.get("enabled") or not endpoint:
        return False
    provider = TracerProvider(
        resource=Resource.create({"service.name": conf.get("service_name", "contract-auditor")})
    )
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=conf.get("otlp_insecure", True)))
    )
    trace.set_tracer_provider(provider)
    return True


def set_run_context(analysis_id: str, contract_name: str | None = None, **attrs: Any) -> str:
    """Start a new audit run in the current context and return its run id."""
    run_id = uuid.uuid4().hex
    run_attrs = {"analysis_id": analysis_id, "run_id": run_id}
    if contract_name:
        run_attrs["contract_name"] = contract_name
    run_attrs.update({key: str(value) for key, value in attrs.items() if value is not None})
    _RUN_ATTRS.set(run_attrs)
    return run_id


def current_run_attrs() -> Dict[str, str]:
    return dict(_RUN_ATTRS.get())


@contextmanager
def span(name: str, **attrs: Any):
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name) as current:
        for key, value in {**_RUN_ATTRS.get(), **attrs}.items():
            if value is not None:
                current.set_attribute(key, value)
        yield current
