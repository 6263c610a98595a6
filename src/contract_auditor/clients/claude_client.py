from __future__ import annotations

import json
from typing import Any, Optional

from contract_auditor.clients.openrouter_client import _render_payload
from contract_auditor.telemetry import span


class ClaudeLLMClient:
    """
    LLM client for Anthropic Claude models through the Anthropic API.

    Provider ids written in OpenRouter form (``anthropic/claude-3-haiku:beta``)
    are mapped to the Anthropic model name before the call.
    """

    def __init__(
        self,
        api_key: str,
        default_model: str = "claude-3-haiku-20240307",
        timeout_sec: float = 180.0,
        max_tokens: int = 4000,
        temperature: float = 0.1,
    ) -> None:
        if not api_key:
            raise ValueError("Anthropic API key is required")

        self.default_model = default_model
        self.timeout_sec = timeout_sec
        self.max_tokens = max_tokens
        self.temperature = temperature

        from anthropic import Anthropic

        self.client = Anthropic(api_key=api_key, timeout=timeout_sec)

    def complete(
        self,
        prompt: str,
        payload: dict,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        model_name = _anthropic_model_name(model) or self.default_model
        url = f"anthropic/{model_name}"

        with span("api.claude", tool_name="claude", http_method="POST", http_url=url, model=model_name) as sp:
            message = self.client.messages.create(
                model=model_name,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=prompt,
                messages=[{"role": "user", "content": _render_payload(payload)}],
                timeout=timeout or self.timeout_sec,
            )

            sp.set_attribute("usage.input_tokens", message.usage.input_tokens)
            sp.set_attribute("usage.output_tokens", message.usage.output_tokens)

            return _extract_text(message)


_MODEL_ALIASES = {
    "claude-3-haiku": "claude-3-haiku-20240307",
    "claude-3-sonnet": "claude-3-sonnet-20240229",
    "claude-3-opus": "claude-3-opus-20240229",
    "claude-3.5-sonnet": "claude-3-5-sonnet-20241022",
}


def _anthropic_model_name(model: Optional[str]) -> Optional[str]:
    if not model:
        return None
    name = model.split("/", 1)[-1].split(":", 1)[0]
    return _MODEL_ALIASES.get(name, name)


def _extract_text(message: Any) -> str:
    if not message.content:
        return json.dumps({
            "error": "claude_no_content",
            "stop_reason": message.stop_reason,
        }, ensure_ascii=True)

    for block in message.content:
        if hasattr(block, "text") and block.text:
            return block.text

    return json.dumps({
        "error": "claude_no_text",
        "content_types": [type(b).__name__ for b in message.content],
    }, ensure_ascii=True)
