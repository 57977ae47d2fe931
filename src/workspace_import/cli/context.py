"""
CLI context for the workspace import bridge.

This module provides the context object that is passed to all CLI commands,
containing configuration and the import service.
"""

from dataclasses import dataclass, field
from pathlib import Path

from workspace_import.client.exceptions import ConfigurationError
from workspace_import.config import ImportBridgeConfig, load_config_from_yaml
from workspace_import.migration.service import ImportService
from workspace_import.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@dataclass
class ImportContext:
    """
    Context object for CLI commands.

    Attributes:
        config_path: Path to configuration file (environment only when absent)
        tenant_id: Tenant the commands act for
        log_level: Console logging level
        log_file: Optional log file path
    """

    config_path: Path | None = None
    tenant_id: str | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None

    # Lazy-loaded attributes
    _config: ImportBridgeConfig | None = field(default=None, init=False, repr=False)
    _service: ImportService | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> ImportBridgeConfig:
        """Get or load configuration."""
        if self._config is None:
            try:
                if self.config_path is None:
                    logger.debug("config_from_environment")
                    self._config = ImportBridgeConfig()
                else:
                    logger.debug("config_loading", config_path=str(self.config_path))
                    self._config = load_config_from_yaml(self.config_path)
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"Invalid configuration: {e}") from e

            self._apply_logging_config(self._config)

        return self._config

    def _apply_logging_config(self, config: ImportBridgeConfig) -> None:
        """Re-configure file logging from the loaded configuration.

        The console level given on the command line wins.
        """
        log_file = str(self.log_file) if self.log_file else config.logging.file
        configure_logging(
            level=self.log_level,
            log_format=config.logging.format,
            log_file=log_file,
            file_level=config.logging.file_level,
        )

    @property
    def service(self) -> ImportService:
        """Get or create the import service."""
        if self._service is None:
            self._service = ImportService.from_config(self.config)
            logger.debug("import_service_created", provider=self.config.source.provider)

        return self._service

    def require_tenant(self) -> str:
        if not self.tenant_id:
            raise ConfigurationError(
                "Tenant not provided. Use --tenant or set WORKSPACE_IMPORT_TENANT."
            )
        return self.tenant_id

    def cleanup(self) -> None:
        if self._service is not None:
            self._service.database.dispose()

    def __enter__(self) -> "ImportContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()
