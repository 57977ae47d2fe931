"""
Import commands.

``validate`` plans an import without writing anything; ``execute`` runs it
and follows its progress until the run reaches a terminal status.
"""

import asyncio
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from workspace_import.cli.context import ImportContext
from workspace_import.cli.decorators import handle_errors, pass_context, requires_config
from workspace_import.cli.utils import (
    echo_error,
    echo_success,
    echo_warning,
    load_json_or_yaml,
    print_errors,
    print_summary,
    print_validation_report,
    step_progress,
)
from workspace_import.client.exceptions import ConfigurationError
from workspace_import.migration.ledger import ImportRunView
from workspace_import.migration.options import ClientMappingStrategy, ImportOptions
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)

POLL_INTERVAL = 0.5


def import_options(f: Callable) -> Callable:
    """Options shared by validate and execute."""
    decorators = [
        click.option("--workspace", "-w", "external_workspace_id", required=True,
                     help="External workspace ID"),
        click.option("--project", "-p", "external_project_ids", multiple=True, required=True,
                     help="External project ID (repeatable)"),
        click.option("--target-workspace", "-t", "target_workspace_id", required=True,
                     help="Internal workspace to import into"),
        click.option("--options-file", type=click.Path(exists=True, path_type=Path),
                     help="JSON or YAML file with import options"),
        click.option("--strategy", type=click.Choice([s.value for s in ClientMappingStrategy]),
                     help="Client mapping strategy"),
        click.option("--single-client-name", help="Client name for the single strategy"),
        click.option("--single-client-id", help="Existing client ID for the single strategy"),
        click.option("--client-field", "client_custom_field_name",
                     help="Custom field holding the client name"),
        click.option("--auto-create-clients/--no-auto-create-clients", default=None),
        click.option("--auto-create-users/--no-auto-create-users", default=None),
        click.option("--auto-create-projects/--no-auto-create-projects", default=None),
        click.option("--auto-create-tasks/--no-auto-create-tasks", default=None),
        click.option("--fallback-unassigned/--no-fallback-unassigned", default=None),
    ]
    for decorator in reversed(decorators):
        f = decorator(f)
    return f


def build_options(options_file: Path | None, **overrides: Any) -> ImportOptions:
    """Merge an options file with command line overrides."""
    data: dict[str, Any] = load_json_or_yaml(options_file) if options_file else {}

    for key, value in overrides.items():
        if value is not None:
            data[key] = value

    try:
        return ImportOptions.model_validate(data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid import options: {e}") from e


def _option_overrides(kwargs: dict[str, Any]) -> dict[str, Any]:
    return {
        "client_mapping_strategy": kwargs.pop("strategy"),
        "single_client_name": kwargs.pop("single_client_name"),
        "single_client_id": kwargs.pop("single_client_id"),
        "client_custom_field_name": kwargs.pop("client_custom_field_name"),
        "auto_create_clients": kwargs.pop("auto_create_clients"),
        "auto_create_users": kwargs.pop("auto_create_users"),
        "auto_create_projects": kwargs.pop("auto_create_projects"),
        "auto_create_tasks": kwargs.pop("auto_create_tasks"),
        "fallback_unassigned": kwargs.pop("fallback_unassigned"),
    }


@click.command(name="validate")
@import_options
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.option("--verbose", "-v", is_flag=True, help="List every planned action")
@pass_context
@requires_config
@handle_errors
def validate(
    ctx: ImportContext,
    external_workspace_id: str,
    external_project_ids: tuple[str, ...],
    target_workspace_id: str,
    options_file: Path | None,
    as_json: bool,
    verbose: bool,
    **kwargs: Any,
) -> None:
    """Dry-run an import and report what it would do.

    Nothing is written. Exits with status 1 when the report has blocking
    problems.

    Examples:

        workspace-import --tenant acme validate -w 1201 -p 1301 -p 1302 -t ws-1 \\
            --strategy single --single-client-name "Acme Corp"
    """
    tenant_id = ctx.require_tenant()
    options = build_options(options_file, **_option_overrides(kwargs))

    report = asyncio.run(
        ctx.service.validate(
            tenant_id,
            external_workspace_id,
            list(external_project_ids),
            target_workspace_id,
            options,
        )
    )

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        print_validation_report(report, verbose=verbose)

    if not report.ok:
        echo_error(f"{len(report.blocking_problems)} blocking problem(s) found")
        raise click.exceptions.Exit(1)
    if not as_json:
        echo_success("Validation passed")


@click.command(name="execute")
@import_options
@click.option("--actor", "actor_user_id", required=True, envvar="WORKSPACE_IMPORT_ACTOR",
              help="User ID recorded as the creator of imported entities")
@click.option("--workspace-name", "external_workspace_name", help="External workspace name")
@pass_context
@requires_config
@handle_errors
def execute(
    ctx: ImportContext,
    external_workspace_id: str,
    external_project_ids: tuple[str, ...],
    target_workspace_id: str,
    options_file: Path | None,
    actor_user_id: str,
    external_workspace_name: str | None,
    **kwargs: Any,
) -> None:
    """Run an import and follow it until it finishes.

    Exit status is 0 for a completed run, 1 for a run that failed or
    completed with errors.

    Examples:

        workspace-import --tenant acme execute -w 1201 -p 1301 -t ws-1 \\
            --actor user-1 --auto-create-clients
    """
    tenant_id = ctx.require_tenant()
    options = build_options(options_file, **_option_overrides(kwargs))

    async def run_and_follow() -> ImportRunView:
        service = ctx.service
        result = await service.execute(
            tenant_id,
            external_workspace_id,
            list(external_project_ids),
            target_workspace_id,
            options,
            actor_user_id,
            external_workspace_name=external_workspace_name,
        )
        click.echo(f"Run {result.run_id} started")

        with step_progress("Importing") as status:
            while True:
                run = service.get_run(tenant_id, result.run_id)
                if run.is_terminal:
                    break
                status.update(f"[cyan]{run.phase or 'Importing'}...[/cyan]")
                await asyncio.sleep(POLL_INTERVAL)

        return await service.wait_for_run(result.run_id)

    run = asyncio.run(run_and_follow())

    print_summary(run.execution_summary or {})
    print_errors(run.error_log or [])

    if run.status == "completed":
        echo_success(f"Run {run.id} completed")
    elif run.status == "completed_with_errors":
        echo_warning(f"Run {run.id} completed with {len(run.error_log or [])} error(s)")
        raise click.exceptions.Exit(1)
    else:
        echo_error(f"Run {run.id} failed")
        raise click.exceptions.Exit(1)
