from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from contract_auditor.models.provider import ProviderResult
from contract_auditor.utils.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class EventLogger:
    """
    Audit event stream for one run.

    Every event is kept in memory. When a store is attached the events are
    also appended to observability/runs/{run_id}.jsonl under the analysis
    directory.
    """

    def __init__(
        self,
        store: Optional[ArtifactStore],
        run_id: Optional[str] = None,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.run_id = run_id
        self.events: List[Dict[str, Any]] = []
        self.path: Optional[Path] = None
        if enabled and store is not None:
            path = store.path("observability", "runs", f"{run_id or 'run'}.jsonl")
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                self.path = path
            except OSError as exc:
                logger.warning(f"Event log disabled, cannot create {path.parent}: {exc}")

    def log(self, event_type: str, **fields: Any) -> None:
        event: Dict[str, Any] = {"ts": _utc_timestamp(), "event_type": event_type}
        if self.store is not None:
            event["analysis_id"] = self.store.analysis_id
        if self.run_id:
            event["run_id"] = self.run_id
        event.update(fields)
        self.events.append(event)
        if self.path is None:
            return
        try:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(event, ensure_ascii=True, default=str) + "\n")
        except OSError as exc:
            logger.warning(f"Event log disabled, cannot write {self.path}: {exc}")
            self.path = None

    def stage_start(self, stage: str, **fields: Any) -> None:
        self.log("stage.start", stage=stage, **fields)

    def stage_end(self, stage: str, status: str = "ok", **fields: Any) -> None:
        self.log("stage.end", stage=stage, status=status, **fields)

    def provider_settled(self, result: ProviderResult) -> None:
        self.log(
            "provider.settled",
            provider_id=result.provider_id,
            specialty=result.specialty,
            success=result.success,
            latency_ms=result.latency_ms,
            confidence=result.confidence.value if result.success else None,
            findings=len(result.findings),
            error=result.error,
        )

    def event_types(self) -> List[str]:
        return [event["event_type"] for event in self.events]
