from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import pytest

from contract_auditor.clients.claude_client import _anthropic_model_name, _extract_text
from contract_auditor.clients.openrouter_client import OpenRouterLLMClient


def _make_client(handler) -> OpenRouterLLMClient:
    client = OpenRouterLLMClient(api_key="test-key", base_url="https://router.test/api/v1/")
    client.client = httpx.Client(transport=httpx.MockTransport(handler))
    return client


def test_openrouter_posts_chat_completion():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": '{"securityScore": 90}'}}],
                "usage": {"prompt_tokens": 120, "completion_tokens": 30},
            },
        )

    text = _make_client(handler).complete(
        "Audit this contract",
        {"source": "contract A {}", "contract_name": "A"},
        model="qwen/qwen-2.5-72b-instruct:free",
        timeout=5.0,
    )
    assert text == '{"securityScore": 90}'
    assert seen["url"] == "https://router.test/api/v1/chat/completions"
    assert seen["body"]["model"] == "qwen/qwen-2.5-72b-instruct:free"
    assert seen["body"]["messages"][0] == {"role": "system", "content": "Audit this contract"}
    assert "```solidity\ncontract A {}\n```" in seen["body"]["messages"][1]["content"]


def test_openrouter_error_payload_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": {"message": "rate limited"}})

    with pytest.raises(ValueError, match="rate limited"):
        _make_client(handler).complete("p", {"source": "x"})


def test_openrouter_http_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={})

    with pytest.raises(httpx.HTTPStatusError):
        _make_client(handler).complete("p", {"source": "x"})


def test_openrouter_requires_key():
    with pytest.raises(ValueError):
        OpenRouterLLMClient(api_key="")


def test_anthropic_model_names():
    assert _anthropic_model_name("anthropic/claude-3-haiku:beta") == "claude-3-haiku-20240307"
    assert _anthropic_model_name("claude-3-5-haiku-latest") == "claude-3-5-haiku-latest"
    assert _anthropic_model_name(None) is None


def test_claude_text_extraction():
    message = SimpleNamespace(content=[SimpleNamespace(text=""), SimpleNamespace(text="{}")], stop_reason="end_turn")
    assert _extract_text(message) == "{}"
    empty = json.loads(_extract_text(SimpleNamespace(content=[], stop_reason="max_tokens")))
    assert empty == {"error": "claude_no_content", "stop_reason": "max_tokens"}
