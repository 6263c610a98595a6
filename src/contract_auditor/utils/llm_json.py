from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, Iterator, Optional

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*?\}|\[.*?\])\s*```", re.DOTALL)
_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)


def _parse_error(kind: str, raw_text: str = "") -> Dict[str, Any]:
    return {"_error": kind, "_raw_text": raw_text}


def parse_llm_json(response: Any) -> Any:
    """
    Decode a model completion into JSON.

    Already-decoded dicts and lists pass through. Text is tried whole, then the
    first fenced block, then the outermost object or array span. Failures come
    back as a dict carrying ``_error`` and ``_raw_text`` instead of raising.
    """
    if isinstance(response, (dict, list)):
        return response
    if response is None:
        return _parse_error("empty_response")
    if not isinstance(response, str):
        return _parse_error("unsupported_type", str(response))

    # Reasoning models prepend their chain of thought.
    text = _THINK_RE.sub("", response).strip()
    if not text:
        return _parse_error("empty_response")

    for candidate in _json_candidates(text):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return _parse_error("invalid_json", text)


def describe_llm_failure(
    response: Any,
    required_keys: Optional[Iterable[str]] = None,
    preview_chars: int = 200,
) -> Optional[Dict[str, Any]]:
    """Explain why a completion is unusable as a JSON object, or None if it is usable."""
    data = parse_llm_json(response)
    if isinstance(data, dict) and data.get("_error"):
        return {"error_type": data["_error"], "raw_preview": str(data.get("_raw_text") or "")[:preview_chars]}
    if not isinstance(data, dict):
        return {"error_type": "not_an_object", "raw_preview": str(data)[:preview_chars]}
    missing = [key for key in (required_keys or []) if key not in data]
    if missing:
        return {"error_type": "missing_keys", "missing_keys": missing}
    return None


def _json_candidates(text: str) -> Iterator[str]:
    yield text
    fenced = _FENCE_RE.search(text)
    if fenced:
        yield fenced.group(1).strip()
    spans = []
    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = text.find(opener), text.rfind(closer)
        if start != -1 and end > start:
            spans.append((start, end))
    for start, end in sorted(spans):
        yield text[start : end + 1]
