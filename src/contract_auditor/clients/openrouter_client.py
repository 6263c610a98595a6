from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx

from contract_auditor.telemetry import span


class OpenRouterLLMClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        default_model: str = "deepseek/deepseek-chat:free",
        verify_ssl: bool = True,
        timeout_sec: float = 180.0,
        max_tokens: int = 4000,
        temperature: float = 0.1,
        app_name: str = "contract-auditor",
    ) -> None:
        if not api_key:
            raise ValueError("OpenRouter API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_sec = timeout_sec
        self.client = httpx.Client(
            timeout=timeout_sec,
            verify=verify_ssl,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "X-Title": app_name,
            },
        )

    def complete(
        self,
        prompt: str,
        payload: dict,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        model_name = model or self.default_model
        url = f"{self.base_url}/chat/completions"
        body = {
            "model": model_name,
            "messages": [
                {"role": "system", "content": prompt},
                {"role": "user", "content": _render_payload(payload)},
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        with span("api.openrouter", tool_name="openrouter", http_method="POST", http_url=url, model=model_name) as sp:
            response = self.client.post(url, json=body, timeout=timeout or self.timeout_sec)
            sp.set_attribute("http.status_code", response.status_code)
            response.raise_for_status()
            data = response.json()
            usage = data.get("usage") or {}
            if usage.get("prompt_tokens") is not None:
                sp.set_attribute("usage.input_tokens", usage["prompt_tokens"])
            if usage.get("completion_tokens") is not None:
                sp.set_attribute("usage.output_tokens", usage["completion_tokens"])
            return _extract_text(data)


def _render_payload(payload: Dict[str, Any]) -> str:
    source = payload.get("source")
    if source is None:
        return json.dumps(payload, indent=2, ensure_ascii=True)
    name = payload.get("contract_name") or "Contract"
    return f"Analyze this smart contract ({name}):\n\n```solidity\n{source}\n```"


def _extract_text(payload: Dict[str, Any]) -> str:
    if payload.get("error"):
        error = payload["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise ValueError(f"OpenRouter returned an error: {message}")
    for choice in payload.get("choices") or []:
        content = (choice.get("message") or {}).get("content")
        if content:
            return content
    raise ValueError("OpenRouter response contained no text")
