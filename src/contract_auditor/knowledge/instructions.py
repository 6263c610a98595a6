from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from contract_auditor.errors import TargetInvalid

BASE_INSTRUCTION = """You are an expert smart contract security auditor. Return ONLY valid JSON.

{
  "contractType": "DeFi Protocol|Token|DEX|Lending|Staking|Other",
  "securityScore": 85,
  "riskLevel": "Safe|Low Risk|Medium Risk|High Risk|Critical Risk",
  "keyFindings": [
    {
      "severity": "CRITICAL|HIGH|MEDIUM|LOW|INFO",
      "title": "Specific vulnerability name",
      "description": "Detailed technical description",
      "location": "Function/line reference",
      "impact": "Real-world consequences",
      "cveReference": "CVE-2023-XXXX or SWC-XXX if applicable",
      "recommendation": "Specific fix with code example",
      "confidence": "HIGH|MEDIUM|LOW"
    }
  ],
  "gasOptimizations": [
    {"title": "Optimization", "description": "What to change", "location": "Function/line", "savings": "Estimated gas"}
  ],
  "codeQualityIssues": [
    {"title": "Issue", "description": "What is wrong", "location": "Function/line", "recommendation": "How to fix"}
  ],
  "summary": "Overall security assessment"
}"""

SPECIALTY_FOCUS: Dict[str, List[str]] = {
    "advanced-reasoning": [
        "Complex vulnerability patterns requiring multi-step reasoning",
        "Cross-contract and callback reentrancy",
        "State manipulation and economic attack vectors",
        "Composability risks and protocol interactions",
        "Front-running, sandwich attacks and oracle manipulation",
    ],
    "security": [
        "Classical smart contract security vulnerabilities",
        "Reentrancy attacks (all variants)",
        "Access control failures and privilege escalation",
        "Integer overflow/underflow",
        "Unchecked external calls and dangerous delegatecall usage",
        "Signature replay and verification issues",
    ],
    "comprehensive": [
        "Comprehensive code analysis with large context awareness",
        "Cross-function vulnerability analysis and state consistency",
        "Contract interaction patterns and dependencies",
        "Business logic flaws and edge cases",
    ],
    "defi": [
        "DeFi-specific security risks",
        "Liquidity pool manipulation and flash loan attacks",
        "Price oracle manipulation",
        "Reward calculation errors and governance attacks",
        "MEV extraction and token standard compliance",
    ],
    "gas": [
        "Gas optimization and efficiency analysis",
        "Storage layout and struct packing",
        "Loop and array manipulation efficiency",
        "Function visibility and external call batching",
    ],
    "quality": [
        "Code quality, maintainability and best practices",
        "Documentation, naming and code clarity",
        "Error handling and input validation",
        "Upgrade patterns and interface compliance",
    ],
}

AGGRESSIVE_ADDENDUM = """REVIEW MODE: AGGRESSIVE
Assume the contract is hostile until proven otherwise. Report every plausible
attack path, including low-likelihood ones, and do not merge related issues."""

SUPERVISOR_INSTRUCTION = """You are a senior smart contract security supervisor. Review the findings
reported by several specialized analysis providers and produce one consolidated assessment.

TASKS:
1. Identify consensus findings reported by multiple providers
2. Resolve conflicting assessments between providers
3. Verify technical accuracy and remove false positives
4. Prioritize findings by actual risk and exploitability
5. Calculate a final security score from the verified findings

Return ONLY valid JSON:

{
  "overview": "Supervisor assessment summary",
  "verifiedFindings": [
    {
      "severity": "CRITICAL|HIGH|MEDIUM|LOW|INFO",
      "title": "Verified finding",
      "description": "Consolidated technical description",
      "location": "Verified location reference",
      "impact": "Assessed real-world impact",
      "recommendation": "Verified remediation approach"
    }
  ],
  "consolidatedScore": 85,
  "finalRiskLevel": "Safe|Low Risk|Medium Risk|High Risk|Critical Risk",
  "supervisorInsights": "Additional insights from cross-provider analysis"
}"""

DEFAULT_PROVIDERS: List[Dict[str, Any]] = [
    {
        "provider_id": "deepseek/deepseek-r1:free",
        "name": "DeepSeek R1",
        "specialty": "advanced-reasoning",
        "focus": "Complex vulnerability patterns and multi-step attack reasoning",
    },
    {
        "provider_id": "deepseek/deepseek-chat:free",
        "name": "DeepSeek Chat",
        "specialty": "security",
        "focus": "Classical security vulnerabilities",
    },
    {
        "provider_id": "qwen/qwen-2.5-72b-instruct:free",
        "name": "Qwen 2.5 72B",
        "specialty": "comprehensive",
        "focus": "Large-context cross-function analysis",
    },
    {
        "provider_id": "meta-llama/llama-3.1-70b-instruct:free",
        "name": "Llama 3.1 70B",
        "specialty": "defi",
        "focus": "DeFi protocol risks",
    },
    {
        "provider_id": "microsoft/wizardlm-2-8x22b:free",
        "name": "WizardLM 2 8x22B",
        "specialty": "gas",
        "focus": "Gas optimization",
    },
    {
        "provider_id": "anthropic/claude-3-haiku:beta",
        "name": "Claude 3 Haiku",
        "specialty": "quality",
        "focus": "Code quality and best practices",
    },
]


@dataclass
class InstructionSet:
    base: str = BASE_INSTRUCTION
    specialties: Dict[str, List[str]] = field(default_factory=lambda: dict(SPECIALTY_FOCUS))
    aggressive_addendum: str = AGGRESSIVE_ADDENDUM
    supervisor: str = SUPERVISOR_INSTRUCTION

    def for_specialty(self, specialty: str) -> str:
        focus = self.specialties.get(specialty) or self.specialties.get("security") or []
        if not focus:
            return self.base
        lines = [f"FOCUS: {focus[0]}"] + [f"- {item}" for item in focus[1:]]
        return self.base + "\n\n" + "\n".join(lines)

    def compose(self, specialty: str, mode: str = "normal", custom_instructions: Optional[str] = None) -> str:
        text = self.for_specialty(specialty)
        if mode == "aggressive":
            return f"{text}\n\n{self.aggressive_addendum}"
        if mode == "custom":
            if not custom_instructions or not custom_instructions.strip():
                raise TargetInvalid("custom mode requires custom_instructions")
            return f"{text}\n\nADDITIONAL INSTRUCTIONS:\n{custom_instructions.strip()}"
        if mode != "normal":
            raise TargetInvalid(f"Unknown analysis mode: {mode}")
        return text

    def supervisor_prompt(self, contract_name: str, provider_summaries: List[Dict[str, Any]]) -> str:
        return (
            f"{self.supervisor}\n\nCONTRACT: {contract_name}\n\nPROVIDER FINDINGS:\n"
            + json.dumps(provider_summaries, indent=2, ensure_ascii=True)
        )
