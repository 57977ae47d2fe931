"""
Utility functions for CLI commands.

This module provides helper functions for output formatting and loading
option files.
"""

import json
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import click
import yaml
from rich.console import Console
from rich.status import Status
from rich.table import Table

from workspace_import.migration.summary import SUMMARY_ENTITY_TYPES, ValidationReport

console = Console()


def echo_success(message: str) -> None:
    """Print success message in green."""
    click.secho(f"✓ {message}", fg="green")


def echo_error(message: str) -> None:
    """Print error message in red."""
    click.secho(f"✗ {message}", fg="red", err=True)


def echo_warning(message: str) -> None:
    """Print warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def echo_info(message: str) -> None:
    """Print info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


@contextmanager
def step_progress(message: str) -> Generator[Status, None, None]:
    """Context manager with live spinner for step progress.

    Shows a Rich spinner with message while the context is active,
    then shows "✓ message" on success or "✗ message" on failure. The
    yielded status can be updated with the latest progress marker.
    """
    status = Status(f"[cyan]{message}...[/cyan]", spinner="dots", console=console)
    status.start()

    try:
        yield status
        status.stop()
        console.print(f"[green]✓[/green] {message}")
    except BaseException:
        status.stop()
        console.print(f"[red]✗[/red] {message}")
        raise


def format_timestamp(dt: datetime | None) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S") if dt else "-"


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[Any]],
    show_header: bool = True,
) -> None:
    """
    Print a formatted table using rich.

    Args:
        title: Table title
        columns: Column headers
        rows: List of row data
        show_header: Whether to show header row
    """
    table = Table(title=title, show_header=show_header)

    for col in columns:
        table.add_column(col)

    for row in rows:
        table.add_row(*["-" if cell is None else str(cell) for cell in row])

    console.print(table)


def print_summary(summary: dict[str, dict[str, int]], title: str = "Execution Summary") -> None:
    rows = []
    for entity in SUMMARY_ENTITY_TYPES:
        counts = summary.get(entity, {})
        rows.append(
            [
                entity.title(),
                counts.get("created", 0),
                counts.get("reused", 0),
                counts.get("skipped", 0),
                counts.get("failed", 0),
            ]
        )
    print_table(title, ["Entity", "Created", "Reused", "Skipped", "Failed"], rows)


def print_errors(errors: list[dict[str, Any]], limit: int = 20) -> None:
    if not errors:
        return
    rows = [
        [e.get("entity_type"), e.get("external_id"), e.get("name"), e.get("message")]
        for e in errors[:limit]
    ]
    print_table(f"Errors ({len(errors)})", ["Type", "External ID", "Name", "Message"], rows)
    if len(errors) > limit:
        echo_warning(f"... and {len(errors) - limit} more errors")


def print_validation_report(report: ValidationReport, verbose: bool = False) -> None:
    """Print a dry-run report: planned counts, blocking problems and auto-create preview."""
    counts = report.counts
    rows = [
        [entity.title(), c["create"], c["reuse"], c["skip"]]
        for entity, c in counts.items()
    ]
    print_table("Planned Actions", ["Entity", "Create", "Reuse", "Skip"], rows)

    if verbose:
        for plan in report.projects:
            print_table(
                f"Project {plan.name} ({plan.external_id})",
                ["Action", "Type", "External ID", "Name", "Reason"],
                [
                    [a.action, a.entity_type, a.external_id, a.name, a.reason]
                    for a in plan.actions
                ],
            )
    else:
        skips = [
            [plan.name, a.entity_type, a.name, a.reason]
            for plan in report.projects
            for a in plan.actions
            if a.action == "skip"
        ]
        if skips:
            print_table("Planned Skips", ["Project", "Type", "Name", "Reason"], skips)

    if report.auto_create_clients:
        echo_info(f"Clients to create: {', '.join(report.auto_create_clients)}")
    if report.auto_create_users:
        echo_info(f"Users to create: {', '.join(report.auto_create_users)}")

    for problem in report.blocking_problems:
        echo_error(f"[{problem.code}] {problem.message} ({problem.external_id or '-'})")


def load_json_or_yaml(path: Path) -> dict[str, Any]:
    """
    Load JSON or YAML file based on extension.

    Raises:
        click.BadParameter: If file format is unsupported or not a mapping
    """
    suffix = path.suffix.lower()

    if suffix == ".json":
        with open(path) as f:
            data = json.load(f)
    elif suffix in [".yaml", ".yml"]:
        with open(path) as f:
            data = yaml.safe_load(f)
    else:
        raise click.BadParameter(f"Unsupported file format: {suffix}. Use .json, .yaml, or .yml")

    if not isinstance(data, dict):
        raise click.BadParameter(f"{path} must contain a mapping")
    return data
