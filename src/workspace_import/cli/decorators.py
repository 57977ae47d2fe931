"""
Decorators for CLI commands.

This module provides decorators for error handling and context passing.
"""

import functools
from collections.abc import Callable

import click

from workspace_import.cli.context import ImportContext
from workspace_import.client.exceptions import (
    APIError,
    ConfigurationError,
    ImportBridgeError,
    SourceConnectionError,
    SourceUnavailableError,
    StateError,
)
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)


def pass_context(f: Callable) -> Callable:
    """
    Decorator to pass ImportContext to command function.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: ImportContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        import_ctx: ImportContext = click_ctx.obj
        return f(import_ctx, *args, **kwargs)

    return wrapper


def handle_errors(f: Callable) -> Callable:
    """
    Decorator to handle common errors in CLI commands.

    Exit codes:
        0: Success
        1: General error
        2: Configuration error
        3: Authentication or connection error
        4: API error
        5: State error
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except (click.exceptions.Exit, click.ClickException):
            raise

        except ConfigurationError as e:
            logger.error("Configuration error", error=str(e))
            click.echo(f"Configuration Error: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        except (SourceConnectionError, SourceUnavailableError) as e:
            logger.error("Connection error", error=str(e))
            click.echo(f"Connection Error: {e}", err=True)
            click.echo(
                "\nPlease verify the tenant's token and that the external API is reachable.",
                err=True,
            )
            raise click.exceptions.Exit(3) from e

        except APIError as e:
            logger.error("API error", error=str(e))
            click.echo(f"API Error: {e}", err=True)
            if e.status_code:
                click.echo(f"\nResponse status: {e.status_code}", err=True)
            raise click.exceptions.Exit(4) from e

        except StateError as e:
            logger.error("State error", error=str(e))
            click.echo(f"State Error: {e}", err=True)
            raise click.exceptions.Exit(5) from e

        except ImportBridgeError as e:
            logger.error("Import error", error=str(e))
            click.echo(f"Error: {e}", err=True)
            raise click.exceptions.Exit(1) from e

        except Exception as e:
            logger.error("Unexpected error", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo(
                "\nAn unexpected error occurred. Please check the logs for details.",
                err=True,
            )
            raise click.exceptions.Exit(1) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """Load and validate configuration before the command runs."""

    @functools.wraps(f)
    def wrapper(ctx: ImportContext, *args, **kwargs):
        try:
            _ = ctx.config
        except ConfigurationError as e:
            click.echo(f"Error loading configuration: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        return f(ctx, *args, **kwargs)

    return wrapper
