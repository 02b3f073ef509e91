"""Root Typer application with subcommand registration."""

from __future__ import annotations

from typing import Optional

import typer

from binfeat import BinFeatContext, __version__

app = typer.Typer(
    name="binfeat",
    help="binfeat - per-function feature extraction for crypto function classification",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Shared state across commands
_ctx = BinFeatContext()

EXIT_FATAL = 2


def get_context() -> BinFeatContext:
    return _ctx


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"binfeat {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config: Optional[str] = typer.Option(None, "--config", "-C", help="Path to binfeat.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines on stderr"),
    version: Optional[bool] = typer.Option(
        None, "--version", "-V", callback=_version_callback, is_eager=True
    ),
) -> None:
    """binfeat - per-function feature extraction for crypto function classification."""
    from pydantic import ValidationError
    import yaml

    from binfeat.config.loader import load_config
    from binfeat.utils.formatters import print_error
    from binfeat.utils.logging import setup_logging

    try:
        cfg = load_config(config)
    except (OSError, yaml.YAMLError, ValidationError) as exc:
        setup_logging()
        print_error(f"Invalid configuration: {exc}")
        raise typer.Exit(EXIT_FATAL)

    setup_logging(
        level="DEBUG" if verbose else cfg.logging.level,
        json_output=json_logs or cfg.logging.json_output,
    )
    _ctx.config = cfg
    _ctx.signatures = None
    _ctx.label_rules = None


# -- Subcommand registration --
from binfeat.cli.run import run_cmd  # noqa: E402
from binfeat.cli.features import features_cmd  # noqa: E402
from binfeat.cli.signatures import signatures_app  # noqa: E402

app.command(name="run")(run_cmd)
app.command(name="features")(features_cmd)
app.add_typer(signatures_app, name="signatures", help="Inspect signature and label rule tables")
