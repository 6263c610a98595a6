from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set

from contract_auditor.models.finding import ConsensusGroup, SeverityScale
from contract_auditor.models.provider import ProviderResult
from contract_auditor.utils.signature import finding_signature

CONSENSUS_MIN_PROVIDERS = 2


class ConsensusBuilder:
    def __init__(
        self,
        severity_scale: Optional[SeverityScale] = None,
        min_agreement: int = CONSENSUS_MIN_PROVIDERS,
    ) -> None:
        self.severity_scale = severity_scale or SeverityScale()
        self.min_agreement = min_agreement

    def build(self, results: Sequence[ProviderResult]) -> List[ConsensusGroup]:
        successful = [result for result in results if result.success]
        provider_count = len(successful)
        groups: Dict[str, ConsensusGroup] = {}
        reporters: Dict[str, Set[str]] = {}
        for result in successful:
            for finding in result.findings:
                signature = finding_signature(finding)
                group = groups.get(signature)
                if group is None:
                    group = ConsensusGroup(signature=signature)
                    groups[signature] = group
                group.findings.append(finding)
                reporters.setdefault(signature, set()).add(result.provider_id)

        for group in groups.values():
            # Agreement counts providers, not repeated reports from one provider.
            group.consensus_count = len(reporters[group.signature])
            group.consensus_percentage = (
                group.consensus_count / provider_count * 100 if provider_count else 0.0
            )
            group.is_consensus = group.consensus_count >= self.min_agreement

        return sorted(
            groups.values(),
            key=lambda group: self.severity_scale.rank(group.representative.severity),
        )

    @staticmethod
    def counts_by_signature(groups: Sequence[ConsensusGroup]) -> Dict[str, int]:
        return {group.signature: group.consensus_count for group in groups}
