from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator


@lru_cache(maxsize=8)
def _validator(schema_path: str) -> Draft202012Validator:
    with Path(schema_path).open("r", encoding="utf-8") as handle:
        return Draft202012Validator(json.load(handle))


def schema_errors(data: Any, schema_path: str | Path) -> List[str]:
    """Return "dotted.path: message" strings for every violation, ordered by path."""
    errors = sorted(_validator(str(schema_path)).iter_errors(data), key=lambda e: [str(p) for p in e.path])
    return [f"{'.'.join(str(p) for p in err.path) or '<root>'}: {err.message}" for err in errors]


def validate_json(data: Any, schema_path: str | Path) -> None:
    messages = schema_errors(data, schema_path)
    if messages:
        raise ValueError(f"Schema validation failed for {Path(schema_path).name}: " + "; ".join(messages))
