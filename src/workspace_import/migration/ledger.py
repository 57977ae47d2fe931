"""
Import run ledger.

Persists one row per import attempt and enforces its lifecycle: a run is
created ``running`` (or ``queued``), receives phase updates, and is moved to
exactly one terminal status. Terminal rows are immutable.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select

from workspace_import.client.exceptions import RunNotFoundError, RunStateError
from workspace_import.migration.database import Database
from workspace_import.migration.models import (
    TERMINAL_RUN_STATUSES,
    ImportRun,
    new_id,
    utcnow,
)
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ImportRunView:
    """Read-only snapshot of an import run."""

    id: str
    tenant_id: str
    actor_user_id: str
    external_system: str
    external_workspace_id: str
    external_workspace_name: str | None
    external_project_ids: list[str]
    target_workspace_id: str
    options: dict[str, Any]
    status: str
    phase: str | None
    execution_summary: dict[str, dict[str, int]] | None
    error_log: list[dict[str, Any]] | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    @classmethod
    def from_row(cls, row: ImportRun) -> "ImportRunView":
        return cls(
            id=row.id,
            tenant_id=row.tenant_id,
            actor_user_id=row.actor_user_id,
            external_system=row.external_system,
            external_workspace_id=row.external_workspace_id,
            external_workspace_name=row.external_workspace_name,
            external_project_ids=list(row.external_project_ids or []),
            target_workspace_id=row.target_workspace_id,
            options=dict(row.options or {}),
            status=row.status,
            phase=row.phase,
            execution_summary=row.execution_summary,
            error_log=row.error_log,
            started_at=row.started_at,
            completed_at=row.completed_at,
            created_at=row.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "actor_user_id": self.actor_user_id,
            "external_system": self.external_system,
            "external_workspace_id": self.external_workspace_id,
            "external_workspace_name": self.external_workspace_name,
            "external_project_ids": self.external_project_ids,
            "target_workspace_id": self.target_workspace_id,
            "options": self.options,
            "status": self.status,
            "phase": self.phase,
            "execution_summary": self.execution_summary,
            "error_log": self.error_log,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class RunLedger:
    """Persistence for ``ImportRun`` rows.

    Writes to one run are serialized by a per-run lock.
    """

    def __init__(self, database: Database):
        self.database = database
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _run_lock(self, run_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(run_id)
            if lock is None:
                lock = self._locks[run_id] = threading.Lock()
            return lock

    def create(
        self,
        tenant_id: str,
        actor_user_id: str,
        external_system: str,
        external_workspace_id: str,
        external_project_ids: list[str],
        target_workspace_id: str,
        options: dict[str, Any],
        external_workspace_name: str | None = None,
        status: str = "running",
        phase: str = "Starting...",
    ) -> str:
        """
        Create a run row.

        Returns:
            The new run id
        """
        if status not in ("queued", "running"):
            raise RunStateError(f"A run cannot be created with status '{status}'")

        run_id = new_id()
        now = utcnow()
        with self.database.session() as session:
            session.add(
                ImportRun(
                    id=run_id,
                    tenant_id=tenant_id,
                    actor_user_id=actor_user_id,
                    external_system=external_system,
                    external_workspace_id=external_workspace_id,
                    external_workspace_name=external_workspace_name,
                    external_project_ids=list(external_project_ids),
                    target_workspace_id=target_workspace_id,
                    options=options,
                    status=status,
                    phase=phase,
                    started_at=now if status == "running" else None,
                    created_at=now,
                )
            )

        logger.info(
            "import_run_created",
            run_id=run_id,
            tenant_id=tenant_id,
            external_workspace_id=external_workspace_id,
            projects=len(external_project_ids),
        )
        return run_id

    def _load_mutable(self, session, run_id: str) -> ImportRun:
        row = session.get(ImportRun, run_id)
        if row is None:
            raise RunNotFoundError(f"Import run {run_id} not found")
        if row.is_terminal:
            raise RunStateError(f"Import run {run_id} is already {row.status}")
        return row

    def update_phase(self, run_id: str, phase: str) -> None:
        """Record the latest progress marker of a non-terminal run.

        Raises:
            RunStateError: If the run already reached a terminal status
        """
        with self._run_lock(run_id):
            with self.database.session() as session:
                row = self._load_mutable(session, run_id)
                if row.status == "queued":
                    row.status = "running"
                    row.started_at = utcnow()
                row.phase = phase

        logger.debug("import_run_phase", run_id=run_id, phase=phase)

    def complete(
        self,
        run_id: str,
        status: str,
        summary: dict[str, dict[str, int]],
        errors: list[dict[str, Any]],
        phase: str | None = None,
    ) -> None:
        """Move a run to its terminal status.

        Raises:
            RunStateError: If ``status`` is not terminal or the run already is
        """
        if status not in TERMINAL_RUN_STATUSES:
            raise RunStateError(f"'{status}' is not a terminal run status")

        with self._run_lock(run_id):
            with self.database.session() as session:
                row = self._load_mutable(session, run_id)
                row.status = status
                row.execution_summary = summary
                row.error_log = errors
                row.completed_at = utcnow()
                if row.started_at is None:
                    row.started_at = row.completed_at
                if phase is not None:
                    row.phase = phase

        with self._locks_guard:
            self._locks.pop(run_id, None)

        logger.info("import_run_completed", run_id=run_id, status=status, errors=len(errors))

    def get(self, run_id: str, tenant_id: str | None = None) -> ImportRunView:
        """Fetch a run, optionally scoped to a tenant.

        Raises:
            RunNotFoundError: If the run does not exist or belongs to another tenant
        """
        with self.database.session() as session:
            row = session.get(ImportRun, run_id)
            if row is None or (tenant_id is not None and row.tenant_id != tenant_id):
                raise RunNotFoundError(f"Import run {run_id} not found")
            return ImportRunView.from_row(row)

    def list_recent(self, tenant_id: str, limit: int = 20) -> list[ImportRunView]:
        """Most recent runs of a tenant, newest first."""
        with self.database.session() as session:
            rows = session.scalars(
                select(ImportRun)
                .where(ImportRun.tenant_id == tenant_id)
                .order_by(ImportRun.created_at.desc(), ImportRun.id)
                .limit(limit)
            )
            return [ImportRunView.from_row(row) for row in rows]
