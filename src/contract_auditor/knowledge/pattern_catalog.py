from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List

from contract_auditor.models.finding import FindingCategory, Severity


@dataclass(frozen=True)
class PatternRule:
    rule_id: str
    title: str
    pattern: re.Pattern
    severity: Severity
    description: str
    category: FindingCategory = FindingCategory.SECURITY
    recommendation: str = ""


def _rule(
    rule_id: str,
    title: str,
    regex: str,
    severity: Severity,
    description: str,
    category: FindingCategory = FindingCategory.SECURITY,
    recommendation: str = "",
) -> PatternRule:
    return PatternRule(
        rule_id=rule_id,
        title=title,
        pattern=re.compile(regex, re.IGNORECASE),
        severity=severity,
        description=description,
        category=category,
        recommendation=recommendation,
    )


DEFAULT_RULES: List[PatternRule] = [
    _rule(
        "reentrancy-pattern",
        "Potential Reentrancy",
        r"(\.call\{value:.*?\}|\.transfer\(|\.send\(|external.*payable)",
        Severity.CRITICAL,
        "Value transfer or payable external entry point that may allow reentrancy",
        recommendation="Apply checks-effects-interactions and a reentrancy guard",
    ),
    _rule(
        "unchecked-external-call",
        "Unchecked External Call",
        r"(\.call\(|\.delegatecall\(|\.staticcall\()",
        Severity.HIGH,
        "Low-level call whose return value may not be checked",
        recommendation="Check the returned success flag of every low-level call",
    ),
    _rule(
        "access-control-pattern",
        "Owner-Based Access Control",
        r"(onlyOwner|require\(.*==.*owner|msg\.sender.*==.*owner)",
        Severity.MEDIUM,
        "Privileged functionality guarded by a single owner",
        recommendation="Review owner privileges and consider role-based access control",
    ),
    _rule(
        "integer-arithmetic-pattern",
        "Integer Arithmetic",
        r"(SafeMath|unchecked\s*\{|\+\+|\-\-)",
        Severity.MEDIUM,
        "Arithmetic that may overflow or underflow",
        recommendation="Use checked arithmetic and review unchecked blocks",
    ),
    _rule(
        "gas-optimization-pattern",
        "Gas Optimization Opportunity",
        r"(for\s*\(.*i\s*\<.*length|\.push\(|storage.*\[\])",
        Severity.LOW,
        "Loop over dynamic length or storage array growth",
        category=FindingCategory.GAS,
        recommendation="Cache array length and avoid unbounded storage growth",
    ),
]


class PatternCatalog:
    def __init__(self, rules: Iterable[PatternRule]) -> None:
        self.rules = list(rules)
        ids = [rule.rule_id for rule in self.rules]
        if len(ids) != len(set(ids)):
            raise ValueError("Pattern catalog contains duplicate rule ids")

    @classmethod
    def default(cls) -> "PatternCatalog":
        return cls(DEFAULT_RULES)

    @staticmethod
    def load(path: str | Path) -> "PatternCatalog":
        path = Path(path)
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        raw_rules = data.get("rules")
        if not isinstance(raw_rules, list) or not raw_rules:
            raise ValueError("Pattern catalog missing rules")
        return PatternCatalog([_parse_rule(raw) for raw in raw_rules])

    def __len__(self) -> int:
        return len(self.rules)

    def by_id(self) -> Dict[str, PatternRule]:
        return {rule.rule_id: rule for rule in self.rules}


def _parse_rule(raw: Dict[str, object]) -> PatternRule:
    rule_id = str(raw.get("id", ""))
    regex = raw.get("regex")
    if not rule_id or not regex:
        raise ValueError(f"Pattern rule {rule_id or '<unnamed>'} missing required fields")
    category = str(raw.get("category", FindingCategory.SECURITY.value))
    return _rule(
        rule_id,
        str(raw.get("title") or rule_id),
        str(regex),
        Severity.parse(raw.get("severity"), default=Severity.MEDIUM),
        str(raw.get("description", "")),
        category=FindingCategory(category),
        recommendation=str(raw.get("recommendation", "")),
    )
