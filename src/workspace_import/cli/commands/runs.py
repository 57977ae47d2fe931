"""Import run history commands."""

import json
from pathlib import Path

import click

from workspace_import.cli.context import ImportContext
from workspace_import.cli.decorators import handle_errors, pass_context, requires_config
from workspace_import.cli.utils import (
    echo_success,
    format_timestamp,
    print_errors,
    print_summary,
    print_table,
)
from workspace_import.reporting.report import generate_run_report


@click.group(name="runs")
def runs() -> None:
    """Inspect import runs of the tenant."""
    pass


@runs.command(name="list")
@click.option("--limit", "-n", type=int, help="Number of runs to show")
@pass_context
@requires_config
@handle_errors
def list_runs(ctx: ImportContext, limit: int | None) -> None:
    """List the most recent runs, newest first."""
    tenant_id = ctx.require_tenant()
    items = ctx.service.list_runs(tenant_id, limit=limit)

    print_table(
        "Import Runs",
        ["Run ID", "Status", "Workspace", "Projects", "Phase", "Created"],
        [
            [
                run.id,
                run.status,
                run.external_workspace_name or run.external_workspace_id,
                len(run.external_project_ids),
                run.phase,
                format_timestamp(run.created_at),
            ]
            for run in items
        ],
    )


@runs.command(name="show")
@click.argument("run_id")
@click.option("--json", "as_json", is_flag=True, help="Print the run as JSON")
@click.option(
    "--report-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Write JSON and Markdown reports to this directory",
)
@click.option(
    "--format",
    "formats",
    type=click.Choice(["json", "markdown"]),
    multiple=True,
    help="Report formats (default: both)",
)
@pass_context
@requires_config
@handle_errors
def show(
    ctx: ImportContext,
    run_id: str,
    as_json: bool,
    report_dir: Path | None,
    formats: tuple[str, ...],
) -> None:
    """Show the status, counts and errors of one run."""
    tenant_id = ctx.require_tenant()
    run = ctx.service.get_run(tenant_id, run_id)

    if as_json:
        click.echo(json.dumps(run.to_dict(), indent=2, default=str))
    else:
        print_table(
            f"Run {run.id}",
            ["Field", "Value"],
            [
                ["Status", run.status],
                ["Phase", run.phase],
                ["External Workspace", run.external_workspace_name or run.external_workspace_id],
                ["Projects", ", ".join(run.external_project_ids)],
                ["Target Workspace", run.target_workspace_id],
                ["Actor", run.actor_user_id],
                ["Started", format_timestamp(run.started_at)],
                ["Completed", format_timestamp(run.completed_at)],
            ],
        )
        print_summary(run.execution_summary or {})
        print_errors(run.error_log or [])

    if report_dir is not None:
        files = generate_run_report(run, str(report_dir), list(formats) or None)
        for path in files.values():
            echo_success(f"Report written: {path}")
