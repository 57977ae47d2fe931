"""Read-only listing of the external hierarchy."""

import asyncio

import click

from workspace_import.cli.context import ImportContext
from workspace_import.cli.decorators import handle_errors, pass_context, requires_config
from workspace_import.cli.utils import print_table


@click.command(name="workspaces")
@pass_context
@requires_config
@handle_errors
def workspaces(ctx: ImportContext) -> None:
    """List external workspaces visible to the tenant's token."""
    tenant_id = ctx.require_tenant()
    items = asyncio.run(ctx.service.list_workspaces(tenant_id))
    print_table("External Workspaces", ["ID", "Name"], [[w.id, w.name] for w in items])


@click.command(name="projects")
@click.argument("workspace_id")
@click.option("--include-archived/--no-archived", default=True, help="Show archived projects")
@pass_context
@requires_config
@handle_errors
def projects(ctx: ImportContext, workspace_id: str, include_archived: bool) -> None:
    """List projects of an external workspace.

    Examples:

        workspace-import --tenant acme projects 1200000000000001
    """
    tenant_id = ctx.require_tenant()
    items = asyncio.run(ctx.service.list_projects(tenant_id, workspace_id))
    if not include_archived:
        items = [p for p in items if not p.archived]

    print_table(
        f"Projects of {workspace_id}",
        ["ID", "Name", "Team", "Archived"],
        [[p.id, p.name, p.team_name, "yes" if p.archived else ""] for p in items],
    )


@click.command(name="users")
@click.argument("workspace_id")
@click.option("--unmatched", is_flag=True, help="Only show members without a tenant user")
@pass_context
@requires_config
@handle_errors
def users(ctx: ImportContext, workspace_id: str, unmatched: bool) -> None:
    """List members of an external workspace and the tenant user each maps to.

    Unmatched members are assigned according to the import's fallback and
    auto-create options.

    Examples:

        workspace-import --tenant acme users 1200000000000001 --unmatched
    """
    tenant_id = ctx.require_tenant()
    matches = asyncio.run(ctx.service.list_workspace_users(tenant_id, workspace_id))
    if unmatched:
        matches = [m for m in matches if m.internal_user_id is None]

    print_table(
        f"Members of {workspace_id}",
        ["ID", "Name", "Email", "Tenant User", "Matched By"],
        [
            [m.user.id, m.user.name, m.user.email, m.internal_user_id, m.matched_by]
            for m in matches
        ],
    )
