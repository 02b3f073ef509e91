"""binfeat quickstart - extract features for a directory of binaries."""

import json
import sys
from pathlib import Path

from binfeat import BinFeatContext
from binfeat.config.loader import load_config
from binfeat.pipeline.orchestrator import BatchOrchestrator
from binfeat.utils.logging import setup_logging


def main():
    # 1. Load configuration (binfeat.yaml, .env, GHIDRA_HOME / BATCH_SIZE / TIMEOUT_PER_BINARY)
    setup_logging()
    ctx = BinFeatContext()
    ctx.config = load_config()

    input_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(ctx.config.pipeline.input_dir)
    output_dir = Path(sys.argv[2]) if len(sys.argv) > 2 else Path(ctx.config.pipeline.output_dir)

    # 2. Run the pipeline; the engine runs once per binary in a bounded worker pool
    orchestrator = BatchOrchestrator(
        ctx.config,
        signatures=ctx.ensure_signatures(),
        rules=ctx.ensure_label_rules(),
    )
    summary = orchestrator.run(input_dir, output_dir)
    print(f"Succeeded: {summary.succeeded_binaries}/{summary.total_binaries}")

    # 3. Show the labels found per binary
    for path in sorted(output_dir.glob("*_features.json")):
        doc = json.loads(path.read_text())
        labeled = [f for f in doc["functions"] if f["label"] != "Unknown"]
        print(f"  {doc['binary']}: {len(doc['functions'])} functions, {len(labeled)} labeled")
        for func in labeled[:10]:
            print(f"    {func['address']} {func['name']} -> {func['label']} ({func['label_source']})")

    for failure in summary.failures:
        print(f"  FAILED {failure.binary}: {failure.error}")


if __name__ == "__main__":
    main()
