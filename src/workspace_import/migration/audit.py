"""Audit notifications for finished import runs."""

from typing import Protocol

from workspace_import.migration.ledger import ImportRunView
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)


class AuditSink(Protocol):
    def run_completed(self, run: ImportRunView) -> None:
        """Called once per run after its terminal status is written."""
        ...


class LoggingAuditSink:
    """Writes one structured audit event per finished run."""

    def __init__(self, event: str = "import_run_audit"):
        self.event = event

    def run_completed(self, run: ImportRunView) -> None:
        summary = run.execution_summary or {}
        logger.info(
            self.event,
            run_id=run.id,
            tenant_id=run.tenant_id,
            actor_user_id=run.actor_user_id,
            external_system=run.external_system,
            external_workspace_id=run.external_workspace_id,
            status=run.status,
            created={entity: counts.get("created", 0) for entity, counts in summary.items()},
            errors=len(run.error_log or []),
        )
