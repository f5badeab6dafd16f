"""
CLI entry point for Strata.

This module provides the Typer-based command-line interface for Strata.

Commands:
    evaluate    Judge a request descriptor against a module stack
    validate    Check that a module stack loads, without evaluating
    rules       List the rules of a module stack
    audit       List recorded audit entries
    report      Generate a report for one audit entry
    replay      Re-evaluate a recorded entry against a module stack

Exit codes for evaluate:
    0   accepted
    10  refused
    11  escalate for clarification
    12  engine error (no verdict)
    2   usage error (reported by typer before evaluation starts)

Architecture Note:
    The CLI only parses arguments, builds an EngineConfig and delegates to
    ComplianceEngine. Everything it does is available programmatically.
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from itertools import islice
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from strata import __version__
from strata.config import EngineConfig, load_config
from strata.engine import ComplianceEngine
from strata.errors import ModuleValidationError, StrataError
from strata.modules import ModuleStack, ModuleStore
from strata.replay import ReplayEngine, ReplayResult
from strata.report import generate_console_report, generate_json_report, print_entry
from strata.schema import AuditEntry, load_descriptor

EXIT_ACCEPTED = 0
EXIT_REFUSED = 10
EXIT_ESCALATED = 11
EXIT_ENGINE_ERROR = 12

VERDICT_EXIT_CODES = {
    "accepted": EXIT_ACCEPTED,
    "refused": EXIT_REFUSED,
    "escalate_for_clarification": EXIT_ESCALATED,
}

VERDICT_DISPLAY = {
    "accepted": "[green]✓ ACCEPTED[/green]",
    "refused": "[red]✗ REFUSED[/red]",
    "escalate_for_clarification": "[yellow]? ESCALATE FOR CLARIFICATION[/yellow]",
}

app = typer.Typer(
    name="strata",
    help="Judge requests against layered, citable rule modules.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

# Shared option types
ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to an engine configuration YAML file.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db",
        help="Path to the SQLite audit log. Defaults to strata.db.",
        resolve_path=True,
    ),
]
ModulesOption = Annotated[
    Optional[list[Path]],
    typer.Option(
        "--module",
        "-m",
        help="Rule module file or directory. Repeat in load order.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
ModulesArgument = Annotated[
    list[Path],
    typer.Argument(
        help="Rule module files or directories, in load order.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", help="Log engine activity at INFO level."),
]
DebugOption = Annotated[
    bool,
    typer.Option("--debug", help="Log per-rule matches and show full tracebacks."),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output results in JSON format."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]strata[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    Strata - layered rule modules with cited, audited verdicts.

    Every evaluation is recorded in an append-only audit log and can be
    replayed against a later module stack.
    """


# =============================================================================
# Helpers
# =============================================================================


def _build_config(
    config_path: Path | None,
    modules: list[Path] | None = None,
    db: Path | None = None,
) -> EngineConfig:
    """Load configuration and apply command-line overrides."""
    config = load_config(config_path) if config_path else EngineConfig()
    updates: dict = {}
    if modules:
        updates["modules"] = list(modules)
    if db is not None:
        updates["audit_db"] = db
    return config.model_copy(update=updates) if updates else config


def _configure_logging(config: EngineConfig | None, verbose: bool, debug: bool) -> None:
    """Route library logging to stderr at the requested level."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    elif config is not None:
        level = logging.getLevelNamesMapping()[config.log_level]
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _print_error(prefix: str, error: Exception, debug: bool) -> None:
    console.print(f"[red]{prefix}: {escape(str(error))}[/red]", highlight=False)
    if isinstance(error, ModuleValidationError) and len(error.errors) > 1:
        for problem in error.errors:
            console.print(f"  [red]• {escape(str(problem))}[/red]", highlight=False)
    if debug:
        console.print(f"[dim]{traceback.format_exc()}[/dim]")


def _output_json_error(error: Exception, include_traceback: bool = False) -> None:
    """Output an error in JSON format."""
    if isinstance(error, StrataError):
        payload = error.to_dict()
    else:
        payload = {"error_type": type(error).__name__, "message": str(error)}
    output = {"success": False, "error": payload}
    if include_traceback:
        output["error"]["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2))


def _require_db(db_path: Path) -> None:
    if not db_path.exists():
        console.print(f"[red]Audit log not found: {db_path}[/red]")
        raise typer.Exit(code=1)


def _print_stack_summary(stack: ModuleStack) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Module", style="cyan")
    table.add_column("Version")
    table.add_column("Rules", justify="right")
    table.add_column("Description", overflow="fold")
    for module in stack.modules:
        table.add_row(
            str(module.load_order),
            module.id,
            module.version,
            str(len(module.rules)),
            escape(module.description) if module.description else "[dim]-[/dim]",
        )
    console.print(table)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def evaluate(
    descriptor_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the request descriptor YAML or JSON file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    modules: ModulesOption = None,
    config_path: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Judge a request descriptor against a module stack.

    The verdict is recorded in the audit log before it is printed.
    Exits 0 when accepted, 10 when refused, 11 when escalated and 12 on
    error. Typer reports usage errors with exit code 2.

    Example:
        $ strata evaluate request.yaml -m modules/base.yaml -m modules/local/
    """
    try:
        config = _build_config(config_path, modules, db)
        _configure_logging(config, verbose, debug)
        descriptor = load_descriptor(descriptor_path)
        with ComplianceEngine.from_config(config) as engine:
            entry = engine.evaluate_and_record(descriptor)
    except Exception as e:
        if json_output:
            _output_json_error(e, debug)
        else:
            _print_error("Evaluation error", e, debug)
        raise typer.Exit(code=EXIT_ENGINE_ERROR)

    if json_output:
        _output_json_entry(entry)
    else:
        _display_entry(entry, verbose)

    raise typer.Exit(code=VERDICT_EXIT_CODES[entry.verdict.kind])


def _display_entry(entry: AuditEntry, verbose: bool) -> None:
    """Display an evaluation in a formatted way."""
    console.print()
    console.print(f"[bold]Verdict:[/bold] {VERDICT_DISPLAY[entry.verdict.kind]}")
    console.print(f"[dim]Entry: {entry.entry_id}[/dim]")
    console.print(f"[dim]Stack: v{entry.evaluation.stack_version}[/dim]")
    console.print()

    if verbose:
        print_entry(console, entry, verbose=True)
        return

    for rule in entry.verdict.cited_rules:
        console.print(f"  [cyan]{rule.id}[/cyan] [dim]({rule.module_id} · {escape(rule.citation)})[/dim]")
        console.print(f"    {rule.text}", markup=False)

    recommendation = getattr(entry.verdict, "recommendation", None)
    if recommendation is not None:
        console.print()
        console.print(
            f"[bold]Recommendation[/bold] [dim]→ {recommendation.target_module} / "
            f"{escape(recommendation.target_section)}[/dim]"
        )
        console.print(f"  {recommendation.instruction}", markup=False)


def _output_json_entry(entry: AuditEntry) -> None:
    """Output an evaluation in JSON format."""
    output = {
        "success": True,
        "entry_id": entry.entry_id,
        "request_id": entry.descriptor.request_id,
        "recorded_at": entry.recorded_at.isoformat(),
        "stack_version": entry.evaluation.stack_version,
        "stack_hash": entry.evaluation.stack_hash,
        "verdict": entry.verdict.model_dump(mode="json"),
    }
    print(json.dumps(output, indent=2))


@app.command()
def validate(
    modules: ModulesArgument,
    debug: DebugOption = False,
) -> None:
    """
    Check that a module stack loads, without evaluating anything.

    Every problem in every module is listed. Exits 1 if the stack is invalid.

    Example:
        $ strata validate modules/
    """
    _configure_logging(None, False, debug)
    try:
        stack = ModuleStore().validate(modules)
    except ModuleValidationError as e:
        console.print(f"[red]✗ Module stack invalid ({len(e.errors) or 1} problem(s))[/red]")
        for problem in e.errors or [e.message]:
            console.print(f"  [red]• {escape(str(problem))}[/red]", highlight=False)
        if debug:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
        raise typer.Exit(code=1)

    console.print(
        f"[green]✓ Module stack valid[/green]: {len(stack.modules)} module(s), "
        f"{len(stack.rules)} rule(s)"
    )
    console.print(f"[dim]Hash: {stack.hash}[/dim]")
    _print_stack_summary(stack)


@app.command()
def rules(
    modules: ModulesArgument,
    effect: Annotated[
        Optional[str],
        typer.Option("--effect", "-e", help="Only show rules with this effect."),
    ] = None,
) -> None:
    """
    List the rules of a module stack in load order.

    Example:
        $ strata rules modules/ --effect deny
    """
    _configure_logging(None, False, False)
    try:
        stack = ModuleStore().validate(modules)
    except ModuleValidationError as e:
        _print_error("Cannot load modules", e, False)
        raise typer.Exit(code=1)

    table = Table(show_header=True, header_style="bold", show_lines=True, expand=True)
    table.add_column("Rule", style="cyan")
    table.add_column("Module")
    table.add_column("Effect", width=22)
    table.add_column("Citation")
    table.add_column("Text", overflow="fold")

    shown = 0
    for rule in stack.rules:
        if effect and rule.effect.value != effect:
            continue
        table.add_row(rule.id, rule.module_id, rule.effect.value, rule.citation, rule.text)
        shown += 1

    if shown == 0:
        console.print("[dim]No rules found.[/dim]")
        return
    console.print(table)


@app.command()
def audit(
    config_path: ConfigOption = None,
    db: DbOption = None,
    since: Annotated[
        Optional[datetime],
        typer.Option("--since", help="Only entries recorded at or after this time (UTC)."),
    ] = None,
    until: Annotated[
        Optional[datetime],
        typer.Option("--until", help="Only entries recorded before this time (UTC)."),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum number of entries to show."),
    ] = 50,
    json_output: JsonOption = False,
) -> None:
    """
    List recorded audit entries, oldest first.

    Example:
        $ strata audit --since 2024-01-01 --limit 20
    """
    try:
        config = _build_config(config_path, db=db)
    except StrataError as e:
        _print_error("Configuration error", e, False)
        raise typer.Exit(code=1)
    _configure_logging(config, False, False)
    _require_db(config.audit_db)

    since = since.replace(tzinfo=UTC) if since and since.tzinfo is None else since
    until = until.replace(tzinfo=UTC) if until and until.tzinfo is None else until

    with ComplianceEngine(db_path=config.audit_db, page_size=config.page_size) as engine:
        entries = list(islice(engine.read_audit_entries(since=since, until=until), limit))

    if json_output:
        print(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        console.print("[dim]No audit entries found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Entry ID", style="cyan")
    table.add_column("Recorded")
    table.add_column("Mode", width=8)
    table.add_column("Request")
    table.add_column("Verdict")
    table.add_column("Stack", justify="right")
    table.add_column("Cited", overflow="fold")

    for entry in entries:
        table.add_row(
            entry.entry_id,
            entry.recorded_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.mode.value,
            entry.descriptor.request_id,
            VERDICT_DISPLAY[entry.verdict.kind],
            f"v{entry.evaluation.stack_version}",
            ", ".join(r.id for r in entry.verdict.cited_rules) or "[dim]—[/dim]",
        )

    console.print(table)


@app.command()
def report(
    entry_id: Annotated[
        str,
        typer.Argument(help="The audit entry ID to report on."),
    ],
    config_path: ConfigOption = None,
    db: DbOption = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format: console or json."),
    ] = "console",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Also list rules that did not match."),
    ] = False,
    debug: DebugOption = False,
) -> None:
    """
    Generate a report for one audit entry.

    Example:
        $ strata report 3f2a9c01b7de --format json
    """
    try:
        config = _build_config(config_path, db=db)
    except StrataError as e:
        _print_error("Configuration error", e, debug)
        raise typer.Exit(code=1)
    _configure_logging(config, False, debug)
    _require_db(config.audit_db)

    try:
        if format == "json":
            print(generate_json_report(entry_id, config.audit_db))
        else:
            generate_console_report(entry_id, config.audit_db, console=console, verbose=verbose)
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    except Exception as e:
        _print_error("Report error", e, debug)
        raise typer.Exit(code=1)


@app.command()
def replay(
    entry_id: Annotated[
        str,
        typer.Argument(help="The audit entry ID to replay."),
    ],
    modules: ModulesOption = None,
    config_path: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Re-evaluate a recorded entry against a module stack.

    The replay is itself recorded in the audit log. Exits 0 when the
    recorded verdict is reproduced and 1 otherwise.

    Example:
        $ strata replay 3f2a9c01b7de -m modules/
    """
    try:
        config = _build_config(config_path, modules, db)
    except StrataError as e:
        _print_error("Configuration error", e, debug)
        raise typer.Exit(code=1)
    _configure_logging(config, verbose, debug)
    _require_db(config.audit_db)

    try:
        with ComplianceEngine.from_config(config) as engine:
            result = ReplayEngine(engine).replay(entry_id)
    except Exception as e:
        if json_output:
            _output_json_error(e, debug)
        else:
            _print_error("Replay error", e, debug)
        raise typer.Exit(code=1)

    if json_output:
        _output_replay_json_result(result)
    else:
        _display_replay_result(result)

    raise typer.Exit(code=0 if result.reproduced else 1)


def _display_replay_result(result: ReplayResult) -> None:
    """Display replay results in a formatted way."""
    if result.reproduced:
        console.print("[bold green]✓ Verdict reproduced[/bold green]")
    else:
        console.print("[bold red]✗ Verdict changed[/bold red]")

    console.print(f"[dim]Original: {result.original.entry_id} "
                  f"(stack v{result.original.evaluation.stack_version})[/dim]")
    console.print(f"[dim]Replay:   {result.replayed.entry_id} "
                  f"(stack v{result.replayed.evaluation.stack_version})[/dim]")
    if result.stack_changed:
        console.print("[yellow]Module stack content differs from the original[/yellow]")

    for mismatch in result.mismatches:
        console.print(f"  [red]• {escape(mismatch)}[/red]", highlight=False)


def _output_replay_json_result(result: ReplayResult) -> None:
    """Output replay results in JSON format."""
    output = {
        "success": True,
        "reproduced": result.reproduced,
        "original_entry_id": result.original.entry_id,
        "replay_entry_id": result.replayed.entry_id,
        "stack_changed": result.stack_changed,
        "mismatches": result.mismatches,
        "original_verdict": result.original.verdict.kind,
        "replayed_verdict": result.replayed.verdict.kind,
    }
    print(json.dumps(output, indent=2))


if __name__ == "__main__":
    app()
