"""
Import service.

Transport-agnostic entry point used by the CLI: connection checks, listing
of the external hierarchy, validation, and background execution of imports
with pollable run state.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from workspace_import.client import asana_client  # noqa: F401  (registers the provider)
from workspace_import.client.credentials import CredentialStore, create_credential_store
from workspace_import.client.exceptions import (
    CredentialError,
    RunConflictError,
    RunStateError,
    StateError,
    WorkspaceNotFoundError,
)
from workspace_import.client.source import (
    ConnectionResult,
    ExternalProject,
    ExternalUser,
    ExternalWorkspace,
    SourceAdapter,
    create_adapter,
)
from workspace_import.config import ImportBridgeConfig
from workspace_import.migration.audit import AuditSink, LoggingAuditSink
from workspace_import.migration.database import Database
from workspace_import.migration.ledger import ImportRunView, RunLedger
from workspace_import.migration.mappings import EntityMappingStore
from workspace_import.migration.options import ImportOptions
from workspace_import.migration.persistence import DomainStore, SqlDomainStore
from workspace_import.migration.pipeline import ImportPipeline, RunOutcome
from workspace_import.migration.resolution import UserDirectory
from workspace_import.migration.summary import ValidationReport, empty_summary
from workspace_import.utils.logging import bind_run_context, get_logger

logger = get_logger(__name__)

AdapterFactory = Callable[[str], SourceAdapter]


@dataclass(frozen=True)
class ExecuteResult:
    run_id: str
    status: str


@dataclass(frozen=True)
class UserMatch:
    """An external workspace member and the tenant user it resolves to."""

    user: ExternalUser
    internal_user_id: str | None = None
    #: "mapping", "email" or None when unmatched
    matched_by: str | None = None


def _coerce_options(options: ImportOptions | dict[str, Any] | None) -> ImportOptions:
    if isinstance(options, ImportOptions):
        return options
    return ImportOptions.model_validate(options or {})


def _failed_outcome(message: str, phase: str) -> RunOutcome:
    return RunOutcome(
        status="failed",
        summary=empty_summary(),
        errors=[{"entity_type": "system", "external_id": None, "name": None, "message": message}],
        phase=phase,
    )


class ImportService:
    """Wires credentials, adapters, pipeline and ledger together.

    Active runs are tracked in process: one execute per
    ``(tenant_id, external_workspace_id)`` at a time.
    """

    def __init__(
        self,
        config: ImportBridgeConfig,
        database: Database,
        credentials: CredentialStore,
        store: DomainStore | None = None,
        audit_sink: AuditSink | None = None,
        adapter_factory: AdapterFactory | None = None,
    ):
        self.config = config
        self.database = database
        self.credentials = credentials
        self.store = store or SqlDomainStore(database)
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.mappings = EntityMappingStore(database)
        self.ledger = RunLedger(database)
        self.provider = config.source.provider
        self._adapter_factory = adapter_factory or self._default_adapter

        self._active: dict[tuple[str, str], str] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    @classmethod
    def from_config(cls, config: ImportBridgeConfig, **kwargs: Any) -> "ImportService":
        database = Database.from_config(config.state)
        credentials = create_credential_store(config.credentials)
        return cls(config, database, credentials, **kwargs)

    def _default_adapter(self, token: str) -> SourceAdapter:
        source = self.config.source
        return create_adapter(
            self.provider,
            token,
            base_url=source.base_url,
            page_size=source.page_size,
            verify_ssl=source.verify_ssl,
            timeout=source.timeout,
            request_interval_ms=source.request_interval_ms,
            max_connections=source.http_max_connections,
            max_keepalive_connections=source.http_max_keepalive_connections,
            retry_attempts=source.retry_attempts,
            retry_backoff_min=source.retry_backoff_min,
            retry_backoff_max=source.retry_backoff_max,
            log_payloads=self.config.logging.log_payloads,
        )

    def _adapter_for(self, tenant_id: str) -> SourceAdapter:
        return self._adapter_factory(self.credentials.get_token(tenant_id, self.provider))

    # Connection

    async def test_connection(self, tenant_id: str) -> ConnectionResult:
        try:
            adapter = self._adapter_for(tenant_id)
        except CredentialError as e:
            return ConnectionResult(ok=False, error=str(e))

        async with adapter:
            return await adapter.test_connection()

    async def connect(self, tenant_id: str, token: str) -> ConnectionResult:
        """Test a token and store it for the tenant when it works."""
        async with self._adapter_factory(token) as adapter:
            result = await adapter.test_connection()

        if result.ok:
            self.credentials.store_token(tenant_id, self.provider, token)
            logger.info("source_connected", tenant_id=tenant_id, provider=self.provider)
        return result

    async def list_workspaces(self, tenant_id: str) -> list[ExternalWorkspace]:
        async with self._adapter_for(tenant_id) as adapter:
            return await adapter.list_workspaces()

    async def list_projects(self, tenant_id: str, workspace_id: str) -> list[ExternalProject]:
        async with self._adapter_for(tenant_id) as adapter:
            return await adapter.list_projects(workspace_id)

    async def list_workspace_users(self, tenant_id: str, workspace_id: str) -> list[UserMatch]:
        """List external workspace members with the tenant user each one maps to.

        A stored user mapping wins over an email match, as during an import.
        """
        async with self._adapter_for(tenant_id) as adapter:
            users = await adapter.list_workspace_users(workspace_id)

        directory = UserDirectory(self.store.list_users(tenant_id))
        matches = []
        for user in users:
            mapped = (
                self.mappings.lookup(tenant_id, self.provider, "user", user.id) if user.id else None
            )
            if mapped is not None:
                matches.append(UserMatch(user, mapped, "mapping"))
                continue
            by_email = directory.find(user.email)
            matches.append(UserMatch(user, by_email, "email" if by_email else None))
        return matches

    # Validate / execute

    def _pipeline(
        self,
        adapter: SourceAdapter,
        tenant_id: str,
        target_workspace_id: str,
        options: ImportOptions,
        actor_user_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ImportPipeline:
        return ImportPipeline(
            adapter=adapter,
            tenant_id=tenant_id,
            target_workspace_id=target_workspace_id,
            options=options,
            mappings=self.mappings,
            store=self.store,
            actor_user_id=actor_user_id,
            max_concurrent_projects=self.config.performance.max_concurrent_projects,
            cancel_event=cancel_event,
        )

    async def validate(
        self,
        tenant_id: str,
        external_workspace_id: str,
        external_project_ids: list[str],
        target_workspace_id: str,
        options: ImportOptions | dict[str, Any] | None = None,
    ) -> ValidationReport:
        options = _coerce_options(options)

        async with self._adapter_for(tenant_id) as adapter:
            pipeline = self._pipeline(adapter, tenant_id, target_workspace_id, options)
            return await pipeline.validate(external_workspace_id, external_project_ids)

    async def execute(
        self,
        tenant_id: str,
        external_workspace_id: str,
        external_project_ids: list[str],
        target_workspace_id: str,
        options: ImportOptions | dict[str, Any] | None,
        actor_user_id: str,
        external_workspace_name: str | None = None,
    ) -> ExecuteResult:
        """Start an import in the background and return its run id.

        Raises:
            RunConflictError: If an import of the same external workspace is active
            WorkspaceNotFoundError: If the target workspace is not in the tenant
        """
        options = _coerce_options(options)

        key = (tenant_id, external_workspace_id)
        if key in self._active:
            raise RunConflictError(tenant_id, external_workspace_id)
        # Reserved before the first await or write
        self._active[key] = ""

        try:
            if not self.store.workspace_exists(tenant_id, target_workspace_id):
                raise WorkspaceNotFoundError(
                    f"Target workspace {target_workspace_id} not found in tenant"
                )
            run_id = self.ledger.create(
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                external_system=self.provider,
                external_workspace_id=external_workspace_id,
                external_project_ids=external_project_ids,
                target_workspace_id=target_workspace_id,
                options=options.snapshot(),
                external_workspace_name=external_workspace_name,
            )
        except BaseException:
            del self._active[key]
            raise

        self._active[key] = run_id
        cancel_event = asyncio.Event()
        self._cancel_events[run_id] = cancel_event

        task = asyncio.create_task(
            self._run(
                run_id,
                tenant_id,
                external_workspace_id,
                external_project_ids,
                target_workspace_id,
                options,
                actor_user_id,
                cancel_event,
            ),
            name=f"import-run-{run_id}",
        )
        self._tasks[run_id] = task

        def release(_: asyncio.Task) -> None:
            self._active.pop(key, None)
            self._tasks.pop(run_id, None)
            self._cancel_events.pop(run_id, None)

        task.add_done_callback(release)

        return ExecuteResult(run_id=run_id, status="running")

    async def _run(
        self,
        run_id: str,
        tenant_id: str,
        external_workspace_id: str,
        external_project_ids: list[str],
        target_workspace_id: str,
        options: ImportOptions,
        actor_user_id: str,
        cancel_event: asyncio.Event,
    ) -> None:
        bind_run_context(run_id, tenant_id, external_workspace_id=external_workspace_id)
        logger.info("import_run_started", projects=len(external_project_ids))

        def on_phase(phase: str) -> None:
            self.ledger.update_phase(run_id, phase)

        try:
            async with self._adapter_for(tenant_id) as adapter:
                pipeline = self._pipeline(
                    adapter, tenant_id, target_workspace_id, options, actor_user_id, cancel_event
                )
                outcome = await pipeline.execute(
                    external_workspace_id, external_project_ids, on_phase=on_phase
                )
        except asyncio.CancelledError:
            self._finish(run_id, _failed_outcome("Import task was cancelled", "Cancelled"))
            raise
        except Exception as e:
            logger.error("import_run_crashed", error=str(e), error_type=type(e).__name__)
            outcome = _failed_outcome(str(e) or type(e).__name__, "Error")

        self._finish(run_id, outcome)

    def _finish(self, run_id: str, outcome: RunOutcome) -> None:
        try:
            self.ledger.complete(
                run_id, outcome.status, outcome.summary, outcome.errors, phase=outcome.phase
            )
            run = self.ledger.get(run_id)
        except StateError as e:
            logger.error("import_run_completion_failed", run_id=run_id, error=str(e))
            return

        # Audit is fire-and-forget
        try:
            self.audit_sink.run_completed(run)
        except Exception as e:
            logger.warning("audit_sink_failed", run_id=run_id, error=str(e))

    # Runs

    def get_run(self, tenant_id: str, run_id: str) -> ImportRunView:
        return self.ledger.get(run_id, tenant_id=tenant_id)

    def list_runs(self, tenant_id: str, limit: int | None = None) -> list[ImportRunView]:
        return self.ledger.list_recent(
            tenant_id, limit=limit or self.config.performance.run_history_limit
        )

    def cancel_run(self, tenant_id: str, run_id: str) -> None:
        """Ask an active run to stop at the next entity boundary.

        Raises:
            RunNotFoundError: If the run does not exist for the tenant
            RunStateError: If the run is finished or not active in this process
        """
        run = self.get_run(tenant_id, run_id)
        if run.is_terminal:
            raise RunStateError(f"Import run {run_id} is already {run.status}")

        event = self._cancel_events.get(run_id)
        if event is None:
            raise RunStateError(f"Import run {run_id} is not active in this process")
        event.set()
        logger.info("import_run_cancel_requested", run_id=run_id, tenant_id=tenant_id)

    def is_active(self, tenant_id: str, external_workspace_id: str) -> bool:
        return (tenant_id, external_workspace_id) in self._active

    async def wait_for_run(self, run_id: str) -> ImportRunView:
        """Wait for a background run of this process to finish and return it."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait([task])
        return self.ledger.get(run_id)

    async def close(self) -> None:
        """Wait for active runs, then release the database."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.database.dispose()
