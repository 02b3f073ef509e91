"""binfeat signatures - inspect the signature table and label rules."""

from __future__ import annotations

import typer

signatures_app = typer.Typer(no_args_is_help=True)


@signatures_app.command(name="list")
def list_signatures() -> None:
    """List every crypto signature in the active table."""
    from binfeat.cli.app import EXIT_FATAL, get_context
    from binfeat.errors import FatalPipelineError
    from binfeat.utils.formatters import print_error, print_table

    try:
        table = get_context().ensure_signatures()
    except FatalPipelineError as exc:
        print_error(str(exc))
        raise typer.Exit(EXIT_FATAL)

    rows = [
        {
            "name": d.name,
            "family": d.family,
            "kind": d.kind,
            "min_hits": d.min_hits,
            "description": d.description,
        }
        for d in table
    ]
    print_table(rows, title=f"Crypto signatures ({len(rows)})")


@signatures_app.command()
def rules() -> None:
    """Show the label rules in priority order."""
    from binfeat.cli.app import EXIT_FATAL, get_context
    from binfeat.errors import FatalPipelineError
    from binfeat.utils.formatters import console, print_error, print_table

    try:
        rule_set = get_context().ensure_label_rules()
    except FatalPipelineError as exc:
        print_error(str(exc))
        raise typer.Exit(EXIT_FATAL)

    print_table(
        [
            {"priority": i, "match": r.match, "pattern": r.pattern, "label": r.label}
            for i, r in enumerate(rule_set.name_rules, 1)
        ],
        title="Name rules",
    )
    print_table(
        [
            {"priority": i, "signature": r.signature, "label": r.label}
            for i, r in enumerate(rule_set.signature_rules, 1)
        ],
        title="Signature rules",
    )
    console.print(f"Default label: [bold]{rule_set.default_label}[/bold]")
