"""
Console report generator for Strata.

Renders one audit entry in the terminal with Rich: a header panel with the
verdict, a table of every rule outcome, the cited rules and the recommended
instruction update.

Design Principles:
    - Verdict at a glance: Kind and color first, details after
    - Citations verbatim: Rule text is printed exactly as recorded
    - Progressive detail: Non-matching rules only shown with verbose
"""

from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from strata.config import DEFAULT_DB_PATH
from strata.report.json import load_entry
from strata.schema import AuditEntry, AuditMode, Effect, Recommendation, Rule

ICON_ACCEPTED = "[green]✓[/green]"
ICON_REFUSED = "[red]✗[/red]"
ICON_ESCALATED = "[yellow]?[/yellow]"

VERDICT_STYLES = {
    "accepted": ("green", ICON_ACCEPTED),
    "refused": ("red", ICON_REFUSED),
    "escalate_for_clarification": ("yellow", ICON_ESCALATED),
}

EFFECT_STYLES = {
    Effect.ALLOW: "green",
    Effect.DENY: "red",
    Effect.REQUIRE_CLARIFICATION: "yellow",
}


def generate_console_report(
    entry_id: str,
    db_path: str | Path = DEFAULT_DB_PATH,
    console: Console | None = None,
    verbose: bool = False,
) -> None:
    """
    Generate and print a console report for an audit entry.

    Args:
        entry_id: ID of the audit entry to report on
        db_path: Path to the SQLite audit log
        console: Rich Console instance (creates one if not provided)
        verbose: Also list rules that did not match

    Raises:
        ValueError: If the audit log or the entry is not found
    """
    if console is None:
        console = Console()

    print_entry(console, load_entry(entry_id, db_path), verbose=verbose)


def print_entry(console: Console, entry: AuditEntry, verbose: bool = False) -> None:
    """Print a full report for an already loaded entry."""
    _print_header(console, entry)
    console.print()

    _print_matches(console, entry, verbose)
    console.print()

    cited = entry.verdict.cited_rules
    if cited:
        _print_citations(console, cited)
        console.print()

    recommendation = getattr(entry.verdict, "recommendation", None)
    if recommendation is not None:
        _print_recommendation(console, recommendation)


def _print_header(console: Console, entry: AuditEntry) -> None:
    """Print the entry header with the verdict."""
    style, icon = VERDICT_STYLES[entry.verdict.kind]

    header = Text()
    header.append(" Entry ", style="bold")
    header.append(entry.entry_id, style="bold cyan")
    header.append(" │ ", style="dim")
    header.append(entry.verdict.kind.upper(), style=f"bold {style}")
    header.append(" ")
    header.append_text(Text.from_markup(icon))

    if entry.mode == AuditMode.REPLAY:
        header.append(" │ ", style="dim")
        header.append("REPLAY", style="bold magenta")

    console.print(Panel(header, expand=False))

    console.print(f"  [dim]Recorded:[/dim] {entry.recorded_at.strftime('%Y-%m-%d %H:%M:%S')} UTC")
    console.print(f"  [dim]Request:[/dim]  {escape(entry.descriptor.request_id)}")
    console.print(
        f"  [dim]Stack:[/dim]    v{entry.evaluation.stack_version} "
        f"[dim]({entry.evaluation.stack_hash[:12]})[/dim]"
    )
    if entry.replay_of:
        console.print(f"  [dim]Replay of:[/dim] {entry.replay_of}")
    if entry.descriptor.tags:
        console.print(f"  [dim]Tags:[/dim]     {escape(', '.join(entry.descriptor.tags))}")


def _print_matches(console: Console, entry: AuditEntry, verbose: bool) -> None:
    """Print the table of rule outcomes."""
    console.print("[bold]Rule Outcomes[/bold]")
    console.print()

    results = entry.evaluation.results if verbose else entry.evaluation.matches
    if not results:
        console.print("  [dim]No rule matched.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("Rule", style="cyan")
    table.add_column("Module")
    table.add_column("Effect", width=22)
    table.add_column("Matched", width=8, justify="center")
    table.add_column("Restrictiveness", width=16)

    for result in results:
        effect_style = EFFECT_STYLES[result.effect]
        table.add_row(
            result.rule_id,
            result.module_id,
            f"[{effect_style}]{result.effect.value}[/{effect_style}]",
            ICON_ACCEPTED if result.matched else "[dim]·[/dim]",
            result.restrictiveness.value if result.restrictiveness else "—",
        )

    console.print(table)


def _print_citations(console: Console, rules: tuple[Rule, ...]) -> None:
    """Print cited rules with their text."""
    console.print("[bold]Cited Rules[/bold]")
    console.print()
    for rule in rules:
        effect_style = EFFECT_STYLES[rule.effect]
        console.print(
            f"  [cyan]{rule.id}[/cyan] [dim]{rule.module_id} · {escape(rule.citation)}[/dim] "
            f"[{effect_style}]{rule.effect.value}[/{effect_style}]"
        )
        console.print(f"    {rule.text}", markup=False)


def _print_recommendation(console: Console, recommendation: Recommendation) -> None:
    console.print("[bold]Recommendation[/bold]")
    console.print()
    console.print(
        f"  [dim]Append to:[/dim] {recommendation.target_module} / {escape(recommendation.target_section)}"
    )
    console.print(f"  [dim]Answers:[/dim]   {', '.join(recommendation.rule_ids)}")
    console.print(f"    {recommendation.instruction}", markup=False)
