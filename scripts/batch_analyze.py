from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from contract_auditor.agents.batch import BatchCoordinator
from contract_auditor.agents.orchestrator import Orchestrator
from contract_auditor.models.analysis import AUDIT_PRESETS, AnalysisOptions, AnalysisRequest
from contract_auditor.telemetry import init_telemetry
from contract_auditor.utils.config import load_settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Batch smart contract audit")
    parser.add_argument("--contract-list", required=True, help="Path to file with one contract source path per line")
    parser.add_argument("--preset", choices=sorted(AUDIT_PRESETS), help="Audit preset applied to every contract")
    parser.add_argument("--settings", default="config/settings.yaml")
    parser.add_argument("--delay", type=float, help="Seconds to wait between contracts")
    parser.add_argument("--output", help="Write the batch summary JSON to this path")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    settings = load_settings(args.settings if Path(args.settings).exists() else None)
    init_telemetry(settings)
    orchestrator = Orchestrator(settings)

    requests = []
    for line in Path(args.contract_list).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        path = Path(line)
        requests.append(AnalysisRequest(source=path.read_text(encoding="utf-8"), contract_name=path.stem))

    delay = args.delay
    if delay is None:
        delay = float(settings.get("analysis", {}).get("batch_delay_sec", 2.0))
    coordinator = BatchCoordinator(orchestrator.run_analysis, inter_run_delay=delay)
    options = AnalysisOptions.from_preset(args.preset) if args.preset else None
    batch = coordinator.run_batch(requests, options=options)

    payload = json.dumps(batch.to_dict(), indent=2, ensure_ascii=True)
    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
    print(f"Batch {batch.batch_id}: {batch.success_count}/{batch.total_contracts} successful")
    for failed in batch.failed_contracts:
        print(f"  FAILED {failed['name']}: {failed['error']}")


if __name__ == "__main__":
    main()
