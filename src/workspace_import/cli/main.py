"""
Main CLI entry point for the workspace import bridge.

This module provides the command-line interface for importing external
project-management workspaces into a tenant.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from workspace_import import __version__
from workspace_import.cli.commands import browse as browse_commands
from workspace_import.cli.commands import config as config_commands
from workspace_import.cli.commands import connection as connection_commands
from workspace_import.cli.commands import imports as import_commands
from workspace_import.cli.commands import runs as run_commands
from workspace_import.cli.context import ImportContext
from workspace_import.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="workspace-import")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="WORKSPACE_IMPORT_CONFIG",
)
@click.option(
    "--tenant",
    "tenant_id",
    help="Tenant to act for",
    envvar="WORKSPACE_IMPORT_TENANT",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="WORKSPACE_IMPORT_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Log file path",
    envvar="WORKSPACE_IMPORT_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    tenant_id: str | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """Workspace Import - bring external project-management workspaces into a tenant.

    Examples:

        # Check the tenant's token
        workspace-import --tenant acme connection test

        # Dry run
        workspace-import --tenant acme validate -w 1201 -p 1301 -t ws-1 --auto-create-clients

        # Import and follow progress
        workspace-import --tenant acme execute -w 1201 -p 1301 -t ws-1 --actor user-1

        # Inspect runs
        workspace-import --tenant acme runs list
    """
    effective_log_file = str(log_file) if log_file else "logs/workspace_import.log"
    Path(effective_log_file).parent.mkdir(parents=True, exist_ok=True)

    configure_logging(level=log_level, log_file=effective_log_file)

    ctx.obj = ImportContext(
        config_path=config,
        tenant_id=tenant_id,
        log_level=log_level,
        log_file=log_file,
    )
    ctx.call_on_close(ctx.obj.cleanup)

    logger.debug(
        "CLI initialized",
        config=str(config) if config else None,
        tenant_id=tenant_id,
        log_level=log_level,
    )


# Register command groups
cli.add_command(config_commands.config)
cli.add_command(connection_commands.connection)
cli.add_command(run_commands.runs)

# Register standalone commands
cli.add_command(browse_commands.workspaces)
cli.add_command(browse_commands.projects)
cli.add_command(browse_commands.users)
cli.add_command(import_commands.validate)
cli.add_command(import_commands.execute)


def main() -> int:
    """Main entry point for CLI."""
    try:
        # Exit codes raised by commands are returned, not raised, outside standalone mode
        rv = cli(standalone_mode=False)
        return rv if isinstance(rv, int) else 0
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except Exception as e:
        logger.error("Unexpected error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
