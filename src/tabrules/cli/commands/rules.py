"""tabrules rules -- list, inspect, import, export and toggle stored rules."""

from __future__ import annotations

import json
from typing import Any

import click
from pydantic import ValidationError

from tabrules.exceptions import RuleNotFoundError, RuleValidationError
from tabrules.models.rule import Rule, generate_rule_id


def parse_rule_definitions(data: Any) -> list[Rule]:
    """Validate decoded JSON as a list of rules.

    Accepts either a bare list or ``{"rules": [...]}``. Entries without an
    ``id`` get a generated one.

    Raises:
        RuleValidationError: On a malformed entry or a repeated id.
    """
    entries = data.get("rules") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise RuleValidationError("Expected a JSON list of rules")

    parsed: list[Rule] = []
    seen: set[str] = set()
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise RuleValidationError(f"Rule #{position} is not a JSON object")
        entry = dict(entry)
        if not entry.get("id"):
            entry["id"] = generate_rule_id()
        try:
            rule = Rule.model_validate(entry)
        except ValidationError as exc:
            raise RuleValidationError(f"Rule #{position} is invalid: {exc}") from exc
        if rule.id in seen:
            raise RuleValidationError(f"Duplicate rule id: {rule.id}")
        seen.add(rule.id)
        parsed.append(rule)
    return parsed


@click.group()
def rules() -> None:
    """Manage stored rules."""


@rules.command("list")
@click.option("--enabled", "enabled_only", is_flag=True, help="Only show enabled rules.")
@click.pass_context
def list_rules(ctx: click.Context, enabled_only: bool) -> None:
    """List rules in evaluation order."""
    from tabrules.cli import _store_session
    from tabrules.cli.formatting import format_rules

    with _store_session(ctx) as (store, console):
        format_rules(store.list_rules(enabled_only=enabled_only), console)


@rules.command()
@click.argument("rule_id")
@click.pass_context
def show(ctx: click.Context, rule_id: str) -> None:
    """Show the full definition of RULE_ID."""
    from tabrules.cli import _store_session
    from tabrules.cli.formatting import format_rule

    with _store_session(ctx) as (store, console):
        rule = store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        format_rule(rule, console)


@rules.command("import")
@click.argument("file", type=click.File("r"))
@click.option("--replace", is_flag=True, help="Replace every stored rule instead of appending.")
@click.pass_context
def import_rules(ctx: click.Context, file: Any, replace: bool) -> None:
    """Load rule definitions from a JSON FILE ('-' for stdin)."""
    from tabrules.cli import _store_session

    with _store_session(ctx) as (store, console):
        try:
            data = json.load(file)
        except json.JSONDecodeError as exc:
            raise RuleValidationError(f"Invalid JSON: {exc}") from exc
        parsed = parse_rule_definitions(data)

        if replace:
            stored = store.replace_all(parsed)
            console.print(f"Replaced all rules with [green]{len(stored)}[/green] rule(s).")
            return

        existing = {r.id for r in store.list_rules()}
        clashes = [r.id for r in parsed if r.id in existing]
        if clashes:
            raise RuleValidationError(
                f"Rule(s) already stored: {', '.join(clashes)}. Use --replace to overwrite."
            )
        for rule in parsed:
            store.add_rule(rule)
        console.print(f"Imported [green]{len(parsed)}[/green] rule(s).")


@rules.command("export")
@click.argument("file", type=click.File("w"), default="-")
@click.pass_context
def export_rules(ctx: click.Context, file: Any) -> None:
    """Write every stored rule as JSON to FILE (default: stdout)."""
    from tabrules.cli import _store_session

    with _store_session(ctx) as (store, _console):
        payload = [rule.model_dump(mode="json") for rule in store.list_rules()]
        file.write(json.dumps(payload, indent=2))
        file.write("\n")


@rules.command()
@click.argument("rule_id")
@click.pass_context
def enable(ctx: click.Context, rule_id: str) -> None:
    """Enable RULE_ID."""
    from tabrules.cli import _store_session

    with _store_session(ctx) as (store, console):
        rule = store.set_enabled(rule_id, True)
        console.print(f"Enabled [yellow]{rule.id}[/yellow]")


@rules.command()
@click.argument("rule_id")
@click.pass_context
def disable(ctx: click.Context, rule_id: str) -> None:
    """Disable RULE_ID."""
    from tabrules.cli import _store_session

    with _store_session(ctx) as (store, console):
        rule = store.set_enabled(rule_id, False)
        console.print(f"Disabled [yellow]{rule.id}[/yellow]")


@rules.command()
@click.argument("rule_id")
@click.pass_context
def delete(ctx: click.Context, rule_id: str) -> None:
    """Delete RULE_ID."""
    from tabrules.cli import _store_session

    with _store_session(ctx) as (store, console):
        if not store.delete_rule(rule_id):
            raise RuleNotFoundError(rule_id)
        console.print(f"Deleted [yellow]{rule_id}[/yellow]")
