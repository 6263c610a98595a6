from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from contract_auditor.agents.orchestrator import Orchestrator
from contract_auditor.models.analysis import (
    AUDIT_PRESETS,
    MODES,
    REPORT_FORMATS,
    TIERS,
    AnalysisOptions,
    AnalysisRequest,
)
from contract_auditor.reports.summary import build_audit_summary
from contract_auditor.telemetry import init_telemetry
from contract_auditor.utils.config import load_settings

DEFAULT_SETTINGS_PATH = Path("config/settings.yaml")


def _resolve_settings_path(value: Optional[str]) -> Optional[Path]:
    if value:
        return Path(value)
    if DEFAULT_SETTINGS_PATH.exists():
        return DEFAULT_SETTINGS_PATH
    return None


def _build_options(args: argparse.Namespace, settings: Dict[str, Any]) -> AnalysisOptions:
    if args.preset:
        options = AnalysisOptions.from_preset(args.preset)
    else:
        reports = settings.get("reports", {}) or {}
        options = AnalysisOptions(
            report_formats=list(reports.get("formats") or AnalysisOptions().report_formats),
            include_risk_matrix=bool(reports.get("include_risk_matrix", True)),
            include_statistics=bool(reports.get("include_statistics", True)),
        )
    if args.tier:
        options.tier = args.tier
    if args.mode:
        options.mode = args.mode
    if args.custom_instructions:
        options.custom_instructions = args.custom_instructions
    if args.formats:
        options.report_formats = [fmt.strip() for fmt in args.formats.split(",") if fmt.strip()]
    return options


def _write_outputs(output_dir: Path, result, comparison) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)
    for fmt, report in result.report_map.items():
        suffix = ".md" if report.get("content_type") == "text/markdown" else ".json"
        (output_dir / f"{fmt}{suffix}").write_text(str(report.get("content", "")), encoding="utf-8")
    (output_dir / "summary.json").write_text(
        json.dumps(build_audit_summary(result), indent=2, ensure_ascii=True),
        encoding="utf-8",
    )
    if comparison is not None:
        (output_dir / "comparison.json").write_text(
            json.dumps(comparison.to_dict(), indent=2, ensure_ascii=True),
            encoding="utf-8",
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Multi-provider smart contract audit")
    parser.add_argument("--source", required=True, help="Path to the contract source file")
    parser.add_argument("--name", help="Contract name (default: source file stem)")
    parser.add_argument("--tier", choices=TIERS, help="Provider tier")
    parser.add_argument("--mode", choices=MODES, help="Analysis mode")
    parser.add_argument("--custom-instructions", help="Extra instructions for custom mode")
    parser.add_argument(
        "--formats",
        help=f"Comma-separated report formats ({', '.join(REPORT_FORMATS)})",
    )
    parser.add_argument("--preset", choices=sorted(AUDIT_PRESETS), help="Audit preset")
    parser.add_argument("--settings", help="Settings YAML path (default: config/settings.yaml)")
    parser.add_argument("--compare-with", help="Previous machine-readable report (JSON) to compare against")
    parser.add_argument("--output", help="Directory to write reports and summary into")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    source_path = Path(args.source)
    if not source_path.is_file():
        parser.error(f"--source not found: {source_path}")
    if args.mode == "custom" and not args.custom_instructions:
        parser.error("--custom-instructions is required when --mode is custom.")

    settings = load_settings(_resolve_settings_path(args.settings))
    init_telemetry(settings)
    orchestrator = Orchestrator(settings)
    request = AnalysisRequest(
        source=source_path.read_text(encoding="utf-8"),
        contract_name=args.name or source_path.stem,
        options=_build_options(args, settings),
    )
    result = orchestrator.run_analysis(request)

    comparison = None
    if args.compare_with:
        previous = json.loads(Path(args.compare_with).read_text(encoding="utf-8"))
        comparison = orchestrator.compare_results(previous, result)

    if args.output:
        _write_outputs(Path(args.output), result, comparison)

    summary = build_audit_summary(result)
    print(json.dumps(summary, indent=2, ensure_ascii=True))
    if comparison is not None:
        print(f"Trend: {comparison.trend}")
        for change in comparison.key_changes:
            print(f"  - {change}")
    if not result.success:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
