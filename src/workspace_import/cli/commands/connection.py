"""Connection commands: test and store a tenant's external API token."""

import asyncio

import click

from workspace_import.cli.context import ImportContext
from workspace_import.cli.decorators import handle_errors, pass_context, requires_config
from workspace_import.cli.utils import echo_error, echo_success, echo_warning, print_table
from workspace_import.client.source import ConnectionResult


@click.group(name="connection")
def connection() -> None:
    """Manage the tenant's connection to the external system."""
    pass


def _report(result: ConnectionResult) -> None:
    if not result.ok:
        echo_error(f"Connection failed: {result.error}")
        raise click.exceptions.Exit(3)

    identity = result.identity
    if identity is not None:
        print_table(
            "Connected Identity",
            ["Field", "Value"],
            [["ID", identity.id], ["Name", identity.name], ["Email", identity.email]],
        )
    echo_success("Connection OK")


@connection.command(name="test")
@pass_context
@requires_config
@handle_errors
def test(ctx: ImportContext) -> None:
    """Test the stored token of the tenant.

    Examples:

        workspace-import --tenant acme connection test
    """
    tenant_id = ctx.require_tenant()
    _report(asyncio.run(ctx.service.test_connection(tenant_id)))


@connection.command(name="connect")
@click.option(
    "--token",
    prompt=True,
    hide_input=True,
    envvar="WORKSPACE_IMPORT_SOURCE_TOKEN",
    help="Personal access token of the external system",
)
@pass_context
@requires_config
@handle_errors
def connect(ctx: ImportContext, token: str) -> None:
    """Test a token and store it for the tenant.

    Examples:

        workspace-import --tenant acme connection connect
    """
    tenant_id = ctx.require_tenant()
    result = asyncio.run(ctx.service.connect(tenant_id, token))
    _report(result)
    if ctx.config.credentials.backend == "static":
        echo_warning(
            "The static credential backend keeps this token only until the command exits. "
            "Set credentials.backend to 'vault' to store it."
        )
