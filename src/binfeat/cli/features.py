"""binfeat features - turn one raw engine export into a feature document."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer


def features_cmd(
    export: Path = typer.Argument(..., help="Raw export JSON produced by the Ghidra script"),
    binary: Optional[Path] = typer.Option(None, "--binary", "-b", help="The binary the export describes"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the document to a file"),
) -> None:
    """Compute features for a single pre-exported binary, without running Ghidra."""
    from binfeat.cli.app import EXIT_FATAL, get_context
    from binfeat.errors import BinaryError, FatalPipelineError
    from binfeat.extraction.backends import PrecomputedBackend
    from binfeat.pipeline.processor import BinaryProcessor
    from binfeat.pipeline.writer import dumps, write_json_atomic
    from binfeat.utils.formatters import print_error, print_success

    if not export.is_file():
        print_error(f"File not found: {export}")
        raise typer.Exit(1)

    ctx = get_context()
    cfg = ctx.ensure_config()
    try:
        raw = json.loads(export.read_text(encoding="utf-8"))
        processor = BinaryProcessor(
            backend=PrecomputedBackend(export.parent),
            signatures=ctx.ensure_signatures(),
            rules=ctx.ensure_label_rules(),
            features=cfg.features,
        )
        binary_path = binary if binary is not None else export.with_suffix("")
        result = processor.process_export(binary_path, raw)
    except FatalPipelineError as exc:
        print_error(str(exc))
        raise typer.Exit(EXIT_FATAL)
    except (json.JSONDecodeError, BinaryError) as exc:
        print_error(f"Cannot process {export}: {exc}")
        raise typer.Exit(1)

    document = result.to_dict()
    if output is None:
        typer.echo(dumps(document), nl=False)
        return
    write_json_atomic(output, document)
    print_success(
        f"Wrote {len(result.records)} function(s) to {output} "
        f"({result.failed_functions} failed)"
    )
