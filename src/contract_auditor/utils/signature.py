from __future__ import annotations

import re

from contract_auditor.models.finding import Finding

_WHITESPACE_RE = re.compile(r"\s+")


def finding_signature(finding: Finding) -> str:
    """Grouping key for consensus: severity and title, lowercased, whitespace collapsed to '-'."""
    raw = f"{finding.severity.value}-{finding.title}".lower()
    return _WHITESPACE_RE.sub("-", raw)
