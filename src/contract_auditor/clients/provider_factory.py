from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from contract_auditor.agents.base import AnalysisProvider, LLMClient
from contract_auditor.clients.llm_provider import LLMAnalysisProvider
from contract_auditor.clients.openrouter_client import OpenRouterLLMClient
from contract_auditor.knowledge.instructions import DEFAULT_PROVIDERS
from contract_auditor.models.provider import ProviderDescriptor


def _detect_backend(model_name: Optional[str]) -> str:
    """
    Pick the client for a model id.

    Returns:
        "anthropic" for Claude models, "openrouter" for everything else
    """
    if not model_name:
        return "openrouter"
    model_lower = model_name.lower()
    if model_lower.startswith("anthropic/") or "claude" in model_lower:
        return "anthropic"
    return "openrouter"


class MultiBackendLLMClient:
    """
    Routes completions to a backend based on model name.

    Claude models go to the Anthropic client when one is configured and to
    OpenRouter otherwise.
    """

    def __init__(
        self,
        openrouter_client: Optional[LLMClient] = None,
        anthropic_client: Optional[LLMClient] = None,
    ) -> None:
        self.openrouter_client = openrouter_client
        self.anthropic_client = anthropic_client

    def complete(
        self,
        prompt: str,
        payload: dict,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        if _detect_backend(model) == "anthropic" and self.anthropic_client:
            return self.anthropic_client.complete(prompt, payload, model, timeout)
        if not self.openrouter_client:
            raise ValueError(
                f"Model {model} requested but no OpenRouter client configured. "
                "Set llm.api_key or OPENROUTER_API_KEY."
            )
        return self.openrouter_client.complete(prompt, payload, model, timeout)


@dataclass
class ProviderSetup:
    descriptors: List[ProviderDescriptor]
    providers: Dict[str, AnalysisProvider] = field(default_factory=dict)
    supervisor: Optional[AnalysisProvider] = None
    supervisor_model: Optional[str] = None


def build_descriptors(settings: Dict[str, Any]) -> List[ProviderDescriptor]:
    analysis = settings.get("analysis", {}) or {}
    default_timeout = float(analysis.get("provider_timeout_sec", 180))
    raw_providers = settings.get("providers") or DEFAULT_PROVIDERS
    descriptors = []
    seen = set()
    for raw in raw_providers:
        provider_id = raw.get("provider_id") or raw.get("model")
        if not provider_id or not raw.get("specialty"):
            raise ValueError(f"Provider entry missing provider_id or specialty: {raw}")
        if provider_id in seen:
            raise ValueError(f"Duplicate provider_id in settings: {provider_id}")
        seen.add(provider_id)
        descriptors.append(
            ProviderDescriptor(
                provider_id=provider_id,
                specialty=raw["specialty"],
                timeout_sec=float(raw.get("timeout_sec", default_timeout)),
                name=raw.get("name"),
                model=raw.get("model") or provider_id,
                focus=raw.get("focus"),
            )
        )
    return descriptors


def _build_openrouter_client(llm_conf: Dict[str, Any]) -> Optional[LLMClient]:
    api_key = llm_conf.get("api_key")
    if not api_key:
        return None
    return OpenRouterLLMClient(
        api_key=api_key,
        base_url=llm_conf.get("base_url", "https://openrouter.ai/api/v1"),
        verify_ssl=llm_conf.get("verify_ssl", True),
        timeout_sec=llm_conf.get("timeout_sec", 180),
        max_tokens=llm_conf.get("max_tokens", 4000),
        temperature=llm_conf.get("temperature", 0.1),
    )


def _build_anthropic_client(llm_conf: Dict[str, Any]) -> Optional[LLMClient]:
    api_key = llm_conf.get("anthropic_api_key")
    if not api_key:
        return None

    from contract_auditor.clients.claude_client import ClaudeLLMClient

    return ClaudeLLMClient(
        api_key=api_key,
        timeout_sec=llm_conf.get("timeout_sec", 180),
        max_tokens=llm_conf.get("max_tokens", 4000),
        temperature=llm_conf.get("temperature", 0.1),
    )


def build_llm_client(settings: Dict[str, Any]) -> Optional[LLMClient]:
    llm_conf = settings.get("llm", {}) or {}
    if not llm_conf.get("enabled"):
        return None
    openrouter_client = _build_openrouter_client(llm_conf)
    anthropic_client = _build_anthropic_client(llm_conf)
    if not openrouter_client and not anthropic_client:
        raise ValueError(
            "No LLM client configured. Provide either:\n"
            "  - llm.api_key (or OPENROUTER_API_KEY env var) for OpenRouter\n"
            "  - llm.anthropic_api_key (or ANTHROPIC_API_KEY env var) for Claude models"
        )
    return MultiBackendLLMClient(
        openrouter_client=openrouter_client,
        anthropic_client=anthropic_client,
    )


def build_provider_setup(settings: Dict[str, Any], llm_client: Optional[LLMClient] = None) -> ProviderSetup:
    descriptors = build_descriptors(settings)
    client = llm_client or build_llm_client(settings)
    if client is None:
        return ProviderSetup(descriptors=descriptors)

    providers: Dict[str, AnalysisProvider] = {
        descriptor.provider_id: LLMAnalysisProvider(client, model=descriptor.model)
        for descriptor in descriptors
    }
    supervisor_conf = settings.get("supervisor", {}) or {}
    supervisor = None
    supervisor_model = None
    if supervisor_conf.get("enabled", True):
        supervisor_model = supervisor_conf.get("model") or (descriptors[0].model if descriptors else None)
        supervisor = LLMAnalysisProvider(client, model=supervisor_model)
    return ProviderSetup(
        descriptors=descriptors,
        providers=providers,
        supervisor=supervisor,
        supervisor_model=supervisor_model,
    )
