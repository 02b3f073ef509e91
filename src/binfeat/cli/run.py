"""binfeat run - extract features for every binary in a directory."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer


def run_cmd(
    input_dir: Optional[Path] = typer.Option(None, "--input", "-i", help="Directory of binaries"),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Directory for *_features.json"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-j", min=1, help="Concurrent engine workers"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-binary engine timeout in seconds"),
    backend: Optional[str] = typer.Option(None, "--backend", help="Engine backend: ghidra or precomputed"),
    export_dir: Optional[Path] = typer.Option(None, "--export-dir", help="Raw exports for the precomputed backend"),
    skip_existing: bool = typer.Option(False, "--skip-existing", help="Skip binaries whose output already exists"),
    strict: bool = typer.Option(False, "--strict", help="Exit 1 if any binary failed"),
    no_progress: bool = typer.Option(False, "--no-progress", help="Disable the progress bar"),
) -> None:
    """Run the batch feature-extraction pipeline."""
    from binfeat.cli.app import EXIT_FATAL, get_context
    from binfeat.errors import FatalPipelineError
    from binfeat.pipeline.orchestrator import BatchOrchestrator
    from binfeat.utils.formatters import print_error, print_success, print_summary, print_warning

    ctx = get_context()
    cfg = ctx.ensure_config().model_copy(deep=True)

    if batch_size is not None:
        cfg.pipeline.batch_size = batch_size
    if timeout is not None:
        if timeout <= 0:
            print_error("--timeout must be positive")
            raise typer.Exit(EXIT_FATAL)
        cfg.engine.timeout_per_binary = timeout
    if backend is not None:
        cfg.engine.backend = backend
    if export_dir is not None:
        cfg.engine.export_dir = str(export_dir)
        if backend is None:
            cfg.engine.backend = "precomputed"
    if skip_existing:
        cfg.pipeline.skip_existing = True

    try:
        orchestrator = BatchOrchestrator(
            cfg,
            signatures=ctx.ensure_signatures(),
            rules=ctx.ensure_label_rules(),
            show_progress=not no_progress,
        )
        summary = orchestrator.run(input_dir, output_dir)
    except (FatalPipelineError, ValueError) as exc:
        print_error(str(exc))
        raise typer.Exit(EXIT_FATAL)

    print_summary(summary.to_dict())
    for failure in summary.failures:
        print_warning(f"{failure.binary}: {failure.error}: {failure.message}")

    if summary.failed_binaries and strict:
        raise typer.Exit(1)
    print_success(
        f"Processed {summary.succeeded_binaries}/{summary.total_binaries} binaries "
        f"({summary.processed_functions} functions)"
    )
