from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_SETTINGS: Dict[str, Any] = {
    "analysis": {
        "artifacts_dir": None,
        "min_successes": 2,
        "provider_timeout_sec": 180,
        "free_tier_provider_limit": 3,
        "batch_delay_sec": 2.0,
    },
    "llm": {
        "enabled": False,
        "base_url": "https://openrouter.ai/api/v1",
        "max_tokens": 4000,
        "temperature": 0.1,
        "verify_ssl": True,
    },
    "supervisor": {
        "enabled": True,
        "model": "deepseek/deepseek-r1:free",
        "timeout_sec": 180,
        "max_source_chars": 12000,
    },
    "reports": {
        "formats": ["executive", "technical", "machine-readable"],
        "include_risk_matrix": True,
        "include_statistics": True,
    },
    "observability": {"enabled": True},
    "telemetry": {"enabled": False, "service_name": "contract-auditor"},
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: Optional[str | Path] = None) -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        with path.open("r", encoding="utf-8") as handle:
            settings = yaml.safe_load(handle) or {}
    settings = _merge(copy.deepcopy(DEFAULT_SETTINGS), settings)

    llm = settings.setdefault("llm", {})
    openrouter_key = os.environ.get("OPENROUTER_API_KEY")
    if openrouter_key:
        llm["api_key"] = openrouter_key
    anthropic_key = os.environ.get("ANTHROPIC_API_KEY")
    if anthropic_key:
        llm["anthropic_api_key"] = anthropic_key
    artifacts_dir = os.environ.get("ARTIFACTS_DIR")
    if artifacts_dir:
        settings.setdefault("analysis", {})["artifacts_dir"] = artifacts_dir
    otlp_endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint:
        telemetry = settings.setdefault("telemetry", {})
        if not telemetry.get("otlp_endpoint"):
            telemetry["otlp_endpoint"] = otlp_endpoint
    return settings
