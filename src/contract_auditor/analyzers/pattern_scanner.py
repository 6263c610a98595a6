from __future__ import annotations

from typing import List, Optional

from contract_auditor.knowledge.pattern_catalog import PatternCatalog
from contract_auditor.models.analysis import PatternScanResult
from contract_auditor.models.finding import Confidence, Finding

SNIPPET_CONTEXT_LINES = 2


def line_number(source: str, offset: int) -> int:
    return source.count("\n", 0, offset) + 1


def code_snippet(source: str, offset: int, context_lines: int = SNIPPET_CONTEXT_LINES) -> str:
    lines = source.split("\n")
    index = line_number(source, offset) - 1
    start = max(0, index - context_lines)
    end = min(len(lines), index + context_lines + 1)
    return "\n".join(lines[start:end])


class PatternScanner:
    """Deterministic regex scan of contract source against a pattern catalog."""

    def __init__(self, catalog: Optional[PatternCatalog] = None) -> None:
        self.catalog = catalog or PatternCatalog.default()

    def scan(self, source: str) -> PatternScanResult:
        findings: List[Finding] = []
        triggered: List[str] = []
        for rule in self.catalog.rules:
            matched = False
            for match in rule.pattern.finditer(source or ""):
                matched = True
                findings.append(
                    Finding(
                        severity=rule.severity,
                        title=f"Pattern Detection: {rule.title}",
                        description=rule.description,
                        location=f"Line {line_number(source, match.start())}",
                        recommendation=rule.recommendation or None,
                        confidence=Confidence.MEDIUM,
                        origin="pattern",
                        category=rule.category,
                        code_snippet=code_snippet(source, match.start()),
                    )
                )
            if matched:
                triggered.append(rule.rule_id)
        total = len(self.catalog)
        coverage = round(len(triggered) / total * 100) if total else 0
        return PatternScanResult(
            findings=findings,
            coverage=coverage,
            rules_triggered=triggered,
            total_rules=total,
        )
