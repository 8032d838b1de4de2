"""Rich formatting helpers for the tabrules CLI.

Provides functions that format rules, cycle reports and browser mutations
for terminal display. Rich auto-detects TTY and degrades gracefully when
piped (no ANSI codes).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tabrules.models.rule import describe_rule

if TYPE_CHECKING:
    from tabrules.browser.memory import MutationRecord
    from tabrules.models.evaluation import CycleReport
    from tabrules.models.rule import Rule

_OUTCOME_STYLES = {
    "executed": "green",
    "skipped": "dim",
    "error": "red",
}


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def _format_ms(stamp: int | None) -> str:
    if stamp is None:
        return "-"
    return datetime.fromtimestamp(stamp / 1000).strftime("%Y-%m-%d %H:%M")


def format_rules(rules: list[Rule], console: Console) -> None:
    """Display stored rules in evaluation order."""
    if not rules:
        console.print("[dim]No rules.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("ID", style="yellow", no_wrap=True)
    table.add_column("On", width=3)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Summary")

    for rule in rules:
        table.add_row(
            rule.id,
            "[green]yes[/green]" if rule.enabled else "[dim]no[/dim]",
            escape(rule.name) if rule.name else "[dim](unnamed)[/dim]",
            escape(describe_rule(rule)),
        )

    console.print(table)


def format_rule(rule: Rule, console: Console) -> None:
    """Display one rule with every matcher spelled out."""
    console.print(f"[yellow]rule {rule.id}[/yellow]")
    console.print(f"  Name:      {escape(rule.name) if rule.name else '(unnamed)'}")
    status = "[green]enabled[/green]" if rule.enabled else "[dim]disabled[/dim]"
    console.print(f"  Status:    {status}")
    console.print(f"  Created:   {_format_ms(rule.created_at)}")
    console.print(f"  Updated:   {_format_ms(rule.updated_at)}")
    console.print(f"  Summary:   {escape(describe_rule(rule))}")

    if rule.subject is not None:
        console.print()
        console.print(
            f"[bold]Subject[/bold] ({rule.subject.join_operator.value.upper()}):"
        )
        for m in rule.subject.matchers:
            console.print(
                f"  {m.field.label} {m.operator.label} [cyan]{escape(repr(m.value))}[/cyan]"
            )

    if rule.condition is not None:
        console.print()
        console.print(
            f"[bold]Condition[/bold] ({rule.condition.join_operator.value.upper()}):"
        )
        for m in rule.condition.matchers:
            console.print(
                f"  {m.type.label} {m.operator.label} {m.value} {m.time_unit.label}"
            )

    if rule.action is not None:
        console.print()
        console.print("[bold]Actions:[/bold]")
        for m in rule.action.matchers:
            line = f"  {m.type.label}"
            if m.params is not None:
                if m.params.group_name:
                    line += f" name={escape(m.params.group_name)}"
                if m.params.group_color is not None:
                    line += f" color={m.params.group_color.value}"
            console.print(line)

    if not rule.is_actionable:
        console.print()
        console.print("[yellow]Incomplete rule: the engine will skip it.[/yellow]")


def format_cycle_report(report: CycleReport, console: Console) -> None:
    """Display per-rule results of one evaluation cycle."""
    if report.skipped:
        console.print("[yellow]Cycle skipped:[/yellow] another cycle was still running.")
        return
    if report.error is not None:
        format_error(f"Cycle failed: {report.error}", console)
        return

    if not report.evaluations:
        console.print("[dim]No rules evaluated.[/dim]")
        return

    for evaluation in report.evaluations:
        name = escape(evaluation.rule_name or evaluation.rule_id)
        if evaluation.error is not None:
            console.print(f"[red]x[/red] {name}: {escape(evaluation.error)}")
            continue
        if not evaluation.fired:
            console.print(
                f"[dim]-[/dim] {name}: {len(evaluation.matched_tab_ids)} matched, none qualified"
            )
            continue
        console.print(
            f"[green]*[/green] {name}: {len(evaluation.matched_tab_ids)} matched, "
            f"{len(evaluation.qualifying_tab_ids)} qualified"
        )
        for outcome in evaluation.outcomes:
            style = _OUTCOME_STYLES.get(outcome.outcome, "white")
            line = f"    {outcome.action_type} tab {outcome.tab_id}: [{style}]{outcome.outcome}[/{style}]"
            if outcome.error:
                line += f" ({escape(outcome.error)})"
            console.print(line)

    failures = sum(1 for o in report.outcomes if o.outcome == "error")
    console.print()
    console.print(
        f"Rules evaluated: {report.rules_evaluated}  "
        f"Actions: {len(report.outcomes)}  "
        f"Failures: [{'red' if failures else 'green'}]{failures}[/]"
    )


def format_mutations(mutations: list[MutationRecord], console: Console) -> None:
    """Display the browser changes applied during a run."""
    if not mutations:
        console.print("[dim]No changes.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Operation", style="cyan")
    table.add_column("Tabs", style="yellow")
    table.add_column("Details")

    for record in mutations:
        details = ", ".join(
            f"{key}={value}" for key, value in record.details.items() if value is not None
        )
        table.add_row(
            record.operation,
            ", ".join(str(t) for t in record.tab_ids),
            escape(details),
        )

    console.print(table)


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
