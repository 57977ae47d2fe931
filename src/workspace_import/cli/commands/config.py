"""
Configuration management commands.

This module provides commands for validating and showing the import bridge
configuration.
"""

import asyncio
from pathlib import Path

import click

from workspace_import.cli.context import ImportContext
from workspace_import.cli.decorators import handle_errors, pass_context, requires_config
from workspace_import.cli.utils import echo_error, echo_info, echo_success, echo_warning, print_table
from workspace_import.client.source import registered_providers
from workspace_import.config import ImportBridgeConfig
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""
    pass


@config.command(name="validate")
@click.option(
    "--check-connectivity",
    is_flag=True,
    help="Test the tenant's connection to the external system",
)
@pass_context
@requires_config
@handle_errors
def validate(ctx: ImportContext, check_connectivity: bool) -> None:
    """Validate configuration.

    Checks that the configuration loads, that the source provider is known,
    that the state database location is usable and that the credential
    backend is complete.

    Examples:

        workspace-import config validate --config config.yaml

        workspace-import --tenant acme config validate --check-connectivity
    """
    echo_info(f"Validating configuration: {ctx.config_path or 'environment'}")
    config = ctx.config

    click.echo()
    _display_config_summary(config)

    click.echo()
    _validate_provider(config)
    _validate_paths(config)
    _validate_settings(config)

    if check_connectivity:
        click.echo()
        echo_info("Testing connectivity...")
        _test_connectivity(ctx)

    click.echo()
    echo_success("Configuration is valid!")


def _display_config_summary(config: ImportBridgeConfig) -> None:
    rows = [
        ["Provider", config.source.provider],
        ["Source URL", config.source.base_url],
        ["Credential Backend", config.credentials.backend],
        ["State Database", _masked_url(config.state.database_url)],
        ["Max Concurrent Projects", config.performance.max_concurrent_projects],
        ["Request Interval (ms)", config.source.request_interval_ms],
        ["Retry Attempts", config.source.retry_attempts],
    ]
    print_table("Configuration Summary", ["Setting", "Value"], rows)


def _masked_url(url: str) -> str:
    # user:password@host -> user:***@host
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


def _validate_provider(config: ImportBridgeConfig) -> None:
    providers = registered_providers()
    if config.source.provider not in providers:
        echo_error(f"Unknown provider: {config.source.provider}")
        raise click.ClickException(
            f"Provider must be one of: {', '.join(providers) or 'none registered'}"
        )
    echo_success(f"Provider is supported: {config.source.provider}")


def _validate_paths(config: ImportBridgeConfig) -> None:
    if config.state.db_url:
        echo_success("Using external database URL")
        return

    db_dir = Path(config.state.db_path).parent
    if not db_dir.exists():
        try:
            db_dir.mkdir(parents=True, exist_ok=True)
            echo_success(f"Created database directory: {db_dir}")
        except OSError as e:
            echo_error(f"Cannot create database directory: {db_dir}")
            raise click.ClickException(f"Failed to create database directory: {e}") from e
    elif not db_dir.is_dir():
        echo_error(f"Database path is not a directory: {db_dir}")
        raise click.ClickException(f"Invalid database directory: {db_dir}")
    else:
        echo_success(f"Database directory exists: {db_dir}")


def _validate_settings(config: ImportBridgeConfig) -> None:
    if config.credentials.backend == "static" and not config.credentials.tokens:
        echo_warning("No static tokens configured; tenants must connect first")

    if config.source.request_interval_ms == 0:
        echo_warning("Request throttling is disabled; the external API may rate-limit imports")

    if config.performance.max_concurrent_projects > 8:
        echo_warning(
            f"High project concurrency ({config.performance.max_concurrent_projects}) "
            "increases the chance of external rate limiting"
        )

    echo_success("All settings are valid")


def _test_connectivity(ctx: ImportContext) -> None:
    tenant_id = ctx.require_tenant()
    result = asyncio.run(ctx.service.test_connection(tenant_id))

    if not result.ok:
        echo_error(f"Connection failed: {result.error}")
        raise click.ClickException("Connectivity check failed")

    identity = result.identity
    echo_success(
        f"Connected to {ctx.config.source.provider} as "
        f"{identity.name if identity else 'unknown'}"
    )
