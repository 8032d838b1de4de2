"""tabrules run -- evaluate stored rules once against a tab snapshot."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click
from pydantic import ValidationError

from tabrules.exceptions import TabRulesError


@click.command()
@click.option(
    "--tabs",
    "tabs_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Tab snapshot JSON: {"tabs": [...], "groups": [...]}.',
)
@click.option("--write", "write_back", is_flag=True, help="Save the resulting tabs back to the snapshot.")
@click.option("--now", "now", type=int, default=None, help="Evaluate as if the time were NOW (epoch ms).")
@click.pass_context
def run(ctx: click.Context, tabs_path: Path, write_back: bool, now: int | None) -> None:
    """Run one evaluation cycle against a tab snapshot.

    Tabs are loaded into an in-memory browser, every enabled rule is applied
    once, and the per-rule outcomes and resulting browser changes are
    printed. A tab's ``last_accessed`` in the snapshot is used as its last
    activation time.
    """
    from tabrules.browser.memory import InMemoryBrowser
    from tabrules.cli import _store_session
    from tabrules.cli.formatting import format_cycle_report, format_mutations
    from tabrules.rule_engine import RuleEngine

    with _store_session(ctx) as (store, console):
        try:
            browser = InMemoryBrowser.from_snapshot(json.loads(tabs_path.read_text()))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise TabRulesError(f"Invalid tab snapshot {tabs_path}: {exc}") from exc

        clock = (lambda: now) if now is not None else None
        engine = RuleEngine(store, browser, browser, clock=clock)
        for tab in browser.tabs:
            if tab.id is not None and tab.last_accessed:
                engine.tracker.record(tab.id, tab.last_accessed)

        report = asyncio.run(engine.run_now())

        format_cycle_report(report, console)
        console.print()
        console.print("[bold]Changes:[/bold]")
        format_mutations(browser.mutations, console)

        if write_back:
            snapshot = browser.snapshot()
            for entry in snapshot["tabs"]:
                entry["last_accessed"] = engine.tracker.get(entry["id"])
            tabs_path.write_text(json.dumps(snapshot, indent=2) + "\n")
            console.print(f"Wrote {len(snapshot['tabs'])} tab(s) to {tabs_path}")

        if not report.ok:
            raise SystemExit(1)
