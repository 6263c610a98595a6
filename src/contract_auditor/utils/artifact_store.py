from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Dict

REPORT_SUFFIXES = {
    "application/json": ".json",
    "text/markdown": ".md",
}


class ArtifactStore:
    """
    Filesystem layout for audit outputs.

    {base_dir}/{analysis_id}/runs/{run_id}/report/   rendered reports + metadata.json
    {base_dir}/{analysis_id}/runs/{run_id}/observability/runs/{run_id}.jsonl
    """

    def __init__(self, base_dir: str | Path, analysis_id: str, run_id: str | None = None) -> None:
        self.base_dir = Path(base_dir)
        self.analysis_id = analysis_id
        self.run_id = run_id
        analysis_root = self.base_dir / analysis_id
        self.root = analysis_root / "runs" / run_id if run_id else analysis_root

    @staticmethod
    def compute_analysis_id(source: str) -> str:
        """Content address of a contract source: sha256 of its UTF-8 text."""
        if not source:
            raise ValueError("contract source is required")
        return hashlib.sha256(source.encode("utf-8")).hexdigest()

    def path(self, *parts: str) -> Path:
        return self.root.joinpath(*parts)

    def write_text(self, rel_path: str, text: str) -> Path:
        target = self.path(rel_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
        return target

    def write_json(self, rel_path: str, data: Any) -> Path:
        return self.write_text(rel_path, json.dumps(data, indent=2, ensure_ascii=True, default=str))

    def persist(self, report_map: Dict[str, Dict[str, Any]], metadata: Dict[str, Any]) -> str:
        """Write every report in the map under report/ and return the directory locator."""
        for fmt, report in report_map.items():
            suffix = REPORT_SUFFIXES.get(report.get("content_type", "application/json"), ".txt")
            self.write_text(f"report/{fmt}{suffix}", str(report.get("content", "")))
        return str(self.write_json("report/metadata.json", metadata).parent)
