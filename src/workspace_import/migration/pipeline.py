"""
Import pipeline.

Walks an external workspace (projects, sections, tasks, subtasks) and maps it
onto the tenant's schema. ``validate`` plans the import without writing;
``execute`` performs it. Both apply the same resolution rules so a report
describes what a run would do against the same state.

Errors local to one entity are recorded in the run's error log and the walk
continues. Invariant violations, cancellation and unexpected exceptions end
the run as ``failed``.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from workspace_import.client.exceptions import (
    AuthorizationError,
    ImportBridgeError,
    InvariantError,
    NotFoundError,
    RunCancelledError,
    SourceConnectionError,
    SourceUnavailableError,
    WorkspaceNotFoundError,
)
from workspace_import.client.source import (
    ExternalProject,
    ExternalSection,
    ExternalTask,
    ExternalUser,
    SourceAdapter,
)
from workspace_import.migration.mappings import EntityMappingStore
from workspace_import.migration.options import ImportOptions
from workspace_import.migration.persistence import DomainStore
from workspace_import.migration.resolution import (
    AssigneeAction,
    AssigneeDecision,
    ClientAction,
    EntityResolver,
    UserDirectory,
)
from workspace_import.migration.summary import (
    BlockingProblem,
    ExecutionSummary,
    ProjectPlan,
    ValidationReport,
)
from workspace_import.utils.logging import get_logger, log_import_progress

logger = get_logger(__name__)

PhaseCallback = Callable[[str], None]

CANCELLED_MESSAGE = "Import cancelled by operator"
PARENT_NOT_IMPORTED = "parent task not imported"
PROJECT_NOT_FOUND = "project not found in external workspace"


def nested_items_message(count: int) -> str:
    return f"{count} nested item(s) below this subtask were not imported (only two levels are supported)"


@dataclass
class RunOutcome:
    """Terminal result of ``execute``."""

    status: str
    summary: dict[str, dict[str, int]]
    errors: list[dict[str, Any]] = field(default_factory=list)
    phase: str = "Done"


def _unique(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


class ImportPipeline:
    """Validate or execute one import for one tenant.

    A pipeline instance serves a single ``validate`` or ``execute`` call.
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        tenant_id: str,
        target_workspace_id: str,
        options: ImportOptions,
        mappings: EntityMappingStore,
        store: DomainStore,
        actor_user_id: str | None = None,
        max_concurrent_projects: int = 4,
        cancel_event: asyncio.Event | None = None,
    ):
        self.adapter = adapter
        self.tenant_id = tenant_id
        self.target_workspace_id = target_workspace_id
        self.options = options
        self.mappings = mappings
        self.store = store
        self.actor_user_id = actor_user_id
        self.max_concurrent_projects = max_concurrent_projects
        self.cancel_event = cancel_event
        self.external_system = adapter.provider

        self._client_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._seen_users: set[str] = set()

    # Shared helpers

    def _mapped(self, entity_type: str, external_gid: str) -> str | None:
        return self.mappings.lookup(
            self.tenant_id, self.external_system, entity_type, external_gid
        )

    def _materialize(
        self,
        entity_type: str,
        external_gid: str,
        create_fn: Callable[[Any], str],
        external_name: str | None,
    ) -> tuple[str, bool]:
        return self.mappings.materialize(
            self.tenant_id,
            self.external_system,
            entity_type,
            external_gid,
            create_fn,
            external_name=external_name,
        )

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RunCancelledError(CANCELLED_MESSAGE)

    async def _check_connection(self) -> None:
        result = await self.adapter.test_connection()
        if result.ok:
            return
        error = result.error or "unknown error"
        message = f"Cannot connect to {self.external_system}: {error}"
        if result.transient:
            raise SourceUnavailableError(message)
        raise SourceConnectionError(message)

    def _new_resolver(self) -> EntityResolver:
        directory = UserDirectory(self.store.list_users(self.tenant_id))
        return EntityResolver(
            tenant_id=self.tenant_id,
            external_system=self.external_system,
            options=self.options,
            mappings=self.mappings,
            store=self.store,
            directory=directory,
        )

    def _first_sighting(self, user: ExternalUser | None) -> bool:
        """True the first time an external user is seen in this call."""
        if user is None or not user.id or user.id in self._seen_users:
            return False
        self._seen_users.add(user.id)
        return True

    # Validate

    async def validate(
        self, external_workspace_id: str, external_project_ids: list[str]
    ) -> ValidationReport:
        """Plan an import without writing anything.

        Raises:
            SourceConnectionError: If the external system rejects the credential
            SourceUnavailableError: If the external system stays unreachable
        """
        self._seen_users = set()
        await self._check_connection()

        report = ValidationReport()
        if not self.store.workspace_exists(self.tenant_id, self.target_workspace_id):
            report.blocking_problems.append(
                BlockingProblem(
                    code="workspace_not_found",
                    message=f"Target workspace {self.target_workspace_id} not found in tenant",
                    external_id=None,
                )
            )

        try:
            projects = await self.adapter.list_projects(external_workspace_id)
        except (AuthorizationError, NotFoundError) as e:
            report.blocking_problems.append(
                BlockingProblem(
                    code="permission_denied" if isinstance(e, AuthorizationError) else "not_found",
                    message=f"Cannot list projects of external workspace: {e}",
                    external_id=external_workspace_id,
                )
            )
            return report

        by_id = {project.id: project for project in projects}
        resolver = self._new_resolver()

        for project_id in _unique(external_project_ids):
            project = by_id.get(project_id)
            if project is None:
                report.blocking_problems.append(
                    BlockingProblem(
                        code="project_not_found", message=PROJECT_NOT_FOUND, external_id=project_id
                    )
                )
                continue

            try:
                report.projects.append(await self._plan_project(project, resolver, report))
            except (AuthorizationError, NotFoundError) as e:
                report.blocking_problems.append(
                    BlockingProblem(
                        code="permission_denied"
                        if isinstance(e, AuthorizationError)
                        else "project_not_found",
                        message=str(e),
                        external_id=project_id,
                    )
                )

        logger.info(
            "import_validated",
            tenant_id=self.tenant_id,
            projects=len(report.projects),
            blocking_problems=len(report.blocking_problems),
        )
        return report

    async def _plan_project(
        self, project: ExternalProject, resolver: EntityResolver, report: ValidationReport
    ) -> ProjectPlan:
        plan = ProjectPlan(external_id=project.id, name=project.name)

        if self._mapped("project", project.id) is not None:
            plan.add("reuse", "project", project.id, project.name)
        elif not self.options.auto_create_projects:
            plan.add("skip", "project", project.id, project.name, "auto-create projects disabled")
            return plan
        else:
            decision = resolver.resolve_client(project)
            if decision.action == ClientAction.SKIP:
                plan.add("skip", "project", project.id, project.name, decision.reason)
                return plan

            if decision.action == ClientAction.CREATE:
                plan.add("create", "client", decision.mapping_key, decision.client_name)
                resolver.planned_clients[decision.mapping_key] = f"planned:{decision.mapping_key}"
                if decision.client_name not in report.auto_create_clients:
                    report.auto_create_clients.append(decision.client_name)
            else:
                plan.add(
                    "reuse",
                    "client",
                    decision.mapping_key or decision.client_id,
                    decision.client_name,
                )
            plan.add("create", "project", project.id, project.name)

        for section in await self.adapter.list_sections(project.id):
            action = "reuse" if self._mapped("section", section.id) else "create"
            plan.add(action, "section", section.id, section.name)

        items = await self.adapter.list_tasks_and_subtasks(project.id)
        planned_tasks: set[str] = set()
        policy_skipped: set[str] = set()

        for task in (item for item in items if not item.is_subtask):
            if self._mapped("task", task.id) is not None:
                plan.add("reuse", "task", task.id, task.name)
                planned_tasks.add(task.id)
            elif not self.options.auto_create_tasks:
                plan.add("skip", "task", task.id, task.name, "auto-create tasks disabled")
                policy_skipped.add(task.id)
            elif self._plan_assignee(task, resolver, plan, report):
                plan.add("create", "task", task.id, task.name)
                planned_tasks.add(task.id)

        for subtask in (item for item in items if item.is_subtask):
            if subtask.num_subtasks > 0:
                plan.add(
                    "skip",
                    "subtask",
                    None,
                    f"items below {subtask.name}",
                    nested_items_message(subtask.num_subtasks),
                )
            if self._mapped("subtask", subtask.id) is not None:
                plan.add("reuse", "subtask", subtask.id, subtask.name)
            elif not self.options.auto_create_tasks or subtask.parent_id in policy_skipped:
                plan.add("skip", "subtask", subtask.id, subtask.name, "auto-create tasks disabled")
            elif subtask.parent_id not in planned_tasks:
                plan.add("skip", "subtask", subtask.id, subtask.name, PARENT_NOT_IMPORTED)
            elif self._plan_assignee(subtask, resolver, plan, report):
                plan.add("create", "subtask", subtask.id, subtask.name)

        return plan

    def _plan_assignee(
        self,
        task: ExternalTask,
        resolver: EntityResolver,
        plan: ProjectPlan,
        report: ValidationReport,
    ) -> bool:
        """Plan the assignee of a task to be created. Returns False if the task would fail."""
        decision = resolver.resolve_assignee(task.assignee)
        entity_type = "subtask" if task.is_subtask else "task"
        user = task.assignee
        first = self._first_sighting(user)

        if decision.action == AssigneeAction.FAIL_TASK:
            plan.add("skip", entity_type, task.id, task.name, decision.reason)
            return False

        if decision.action == AssigneeAction.CREATE_USER:
            resolver.planned_users[user.id] = f"planned:{user.id}"
            if user.email not in report.auto_create_users:
                report.auto_create_users.append(user.email)
            if first:
                plan.add("create", "user", user.id, user.email)
        elif decision.action == AssigneeAction.ASSIGN and first:
            plan.add("reuse", "user", user.id, user.email or user.name)
        elif decision.action == AssigneeAction.SKIP_ASSIGNEE and first:
            plan.add("skip", "user", user.id, user.email or user.name, decision.reason)
        return True

    # Execute

    async def execute(
        self,
        external_workspace_id: str,
        external_project_ids: list[str],
        on_phase: PhaseCallback | None = None,
    ) -> RunOutcome:
        """Run the import and return its terminal outcome.

        Never raises for import failures: they are reflected in the outcome.
        """
        summary = ExecutionSummary()
        self._seen_users = set()

        try:
            await self._execute(external_workspace_id, external_project_ids, summary, on_phase)
        except RunCancelledError:
            logger.warning("import_cancelled", tenant_id=self.tenant_id)
            summary.add_error("system", None, None, CANCELLED_MESSAGE)
            return RunOutcome("failed", summary.snapshot(), summary.errors, phase="Cancelled")
        except Exception as e:
            logger.error(
                "import_failed",
                tenant_id=self.tenant_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=not isinstance(e, ImportBridgeError),
            )
            summary.add_error("system", None, None, str(e) or type(e).__name__)
            return RunOutcome("failed", summary.snapshot(), summary.errors, phase="Error")

        status = "completed_with_errors" if summary.has_errors else "completed"
        logger.info(
            "import_finished",
            tenant_id=self.tenant_id,
            status=status,
            errors=len(summary.errors),
        )
        return RunOutcome(status, summary.snapshot(), summary.errors, phase="Done")

    async def _execute(
        self,
        external_workspace_id: str,
        external_project_ids: list[str],
        summary: ExecutionSummary,
        on_phase: PhaseCallback | None,
    ) -> None:
        def report_phase(phase: str) -> None:
            if on_phase is None:
                return
            # A failed progress write does not stop the import
            try:
                on_phase(phase)
            except ImportBridgeError as e:
                logger.warning(
                    "import_phase_update_failed",
                    tenant_id=self.tenant_id,
                    phase=phase,
                    error=str(e),
                )

        # Everything before the first entity is fatal on failure
        report_phase("Checking connection")
        await self._check_connection()

        if not self.store.workspace_exists(self.tenant_id, self.target_workspace_id):
            raise WorkspaceNotFoundError(
                f"Target workspace {self.target_workspace_id} not found in tenant"
            )

        report_phase("Loading projects")
        projects = await self.adapter.list_projects(external_workspace_id)
        by_id = {project.id: project for project in projects}
        resolver = self._new_resolver()

        requested = _unique(external_project_ids)
        to_import: list[ExternalProject] = []
        for project_id in requested:
            project = by_id.get(project_id)
            if project is None:
                summary.fail("project", project_id, None, PROJECT_NOT_FOUND)
            else:
                to_import.append(project)

        total = len(to_import)
        completed = 0
        semaphore = asyncio.Semaphore(self.max_concurrent_projects)

        async def run_project(project: ExternalProject) -> None:
            nonlocal completed

            async with semaphore:
                self._check_cancelled()
                await self._import_project(project, resolver, summary, report_phase)
                completed += 1
                report_phase(f"Completed {completed}/{total} projects (last: {project.name})")
                log_import_progress(
                    logger, "projects", completed, total, last_project=project.name
                )

        results = await asyncio.gather(
            *(run_project(project) for project in to_import), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _import_project(
        self,
        project: ExternalProject,
        resolver: EntityResolver,
        summary: ExecutionSummary,
        report_phase: PhaseCallback,
    ) -> None:
        try:
            project_id = await self._import_project_row(project, resolver, summary)
        except (InvariantError, RunCancelledError):
            raise
        except ImportBridgeError as e:
            summary.fail("project", project.id, project.name, str(e))
            return

        if project_id is None:
            return

        report_phase(f"Importing tasks for project {project.name}")

        section_ids = await self._import_sections(project, project_id, summary)

        try:
            items = await self.adapter.list_tasks_and_subtasks(project.id)
        except (InvariantError, RunCancelledError):
            raise
        except ImportBridgeError as e:
            summary.add_error("task", project.id, f"tasks of {project.name}", str(e))
            return

        task_ids: dict[str, str] = {}
        policy_skipped: set[str] = set()

        top_level = [item for item in items if not item.is_subtask]
        subtasks = [item for item in items if item.is_subtask]

        for index, task in enumerate(top_level):
            self._check_cancelled()
            try:
                self._import_task(
                    task, index, project_id, section_ids, resolver, summary, task_ids, policy_skipped
                )
            except (InvariantError, RunCancelledError):
                raise
            except ImportBridgeError as e:
                summary.fail("task", task.id, task.name, str(e))

        for index, subtask in enumerate(subtasks):
            self._check_cancelled()
            try:
                self._import_subtask(subtask, index, resolver, summary, task_ids, policy_skipped)
            except (InvariantError, RunCancelledError):
                raise
            except ImportBridgeError as e:
                summary.fail("subtask", subtask.id, subtask.name, str(e))

        logger.info(
            "project_imported",
            external_id=project.id,
            project_id=project_id,
            tasks=len(top_level),
            subtasks=len(subtasks),
        )

    async def _import_project_row(
        self, project: ExternalProject, resolver: EntityResolver, summary: ExecutionSummary
    ) -> str | None:
        """Reuse or create the internal project. Returns None when it is skipped."""
        existing = self._mapped("project", project.id)
        if existing is not None:
            summary.record("project", "reused")
            return existing

        if not self.options.auto_create_projects:
            summary.record("project", "skipped")
            return None

        client_id = await self._resolve_client(project, resolver, summary)
        if client_id is None:
            return None

        project_id, created = self._materialize(
            "project",
            project.id,
            lambda session: self.store.create_project(
                session,
                self.tenant_id,
                self.target_workspace_id,
                client_id,
                project,
                self.actor_user_id,
            ),
            external_name=project.name,
        )
        summary.record("project", "created" if created else "reused")
        return project_id

    async def _resolve_client(
        self, project: ExternalProject, resolver: EntityResolver, summary: ExecutionSummary
    ) -> str | None:
        key, _ = resolver.client_key(project)
        lock = self._client_locks[key or f"project:{project.id}"]

        # Projects sharing a client key create it once
        async with lock:
            decision = resolver.resolve_client(project)

            if decision.action == ClientAction.SKIP:
                summary.record("project", "skipped")
                summary.add_error("project", project.id, project.name, decision.reason)
                return None

            if decision.action == ClientAction.REUSE:
                if decision.mapping_key and not decision.mapped:
                    self.mappings.insert_if_absent(
                        self.tenant_id,
                        self.external_system,
                        "client",
                        decision.mapping_key,
                        decision.client_id,
                        external_name=decision.client_name,
                    )
                summary.record("client", "reused")
                return decision.client_id

            try:
                client_id, created = self._materialize(
                    "client",
                    decision.mapping_key,
                    lambda session: self.store.create_client(
                        session, self.tenant_id, self.target_workspace_id, decision.client_name
                    ),
                    external_name=decision.client_name,
                )
            except (InvariantError, RunCancelledError):
                raise
            except ImportBridgeError as e:
                summary.fail("client", decision.mapping_key, decision.client_name, str(e))
                summary.record("project", "skipped")
                return None

            summary.record("client", "created" if created else "reused")
            if created:
                logger.info("client_created", client_id=client_id, name=decision.client_name)
            return client_id

    async def _import_sections(
        self, project: ExternalProject, project_id: str, summary: ExecutionSummary
    ) -> dict[str, str]:
        section_ids: dict[str, str] = {}

        try:
            sections = await self.adapter.list_sections(project.id)
        except (InvariantError, RunCancelledError):
            raise
        except ImportBridgeError as e:
            summary.add_error("section", project.id, f"sections of {project.name}", str(e))
            return section_ids

        for section in sections:
            self._check_cancelled()
            try:
                section_ids[section.id] = self._import_section(section, project_id, summary)
            except (InvariantError, RunCancelledError):
                raise
            except ImportBridgeError as e:
                summary.fail("section", section.id, section.name, str(e))

        return section_ids

    def _import_section(
        self, section: ExternalSection, project_id: str, summary: ExecutionSummary
    ) -> str:
        section_id, created = self._materialize(
            "section",
            section.id,
            lambda session: self.store.create_section(session, project_id, section),
            external_name=section.name,
        )
        summary.record("section", "created" if created else "reused")
        return section_id

    def _assignee_for(
        self, task: ExternalTask, resolver: EntityResolver, summary: ExecutionSummary
    ) -> AssigneeDecision:
        """Resolve and, where needed, materialize the assignee of a task being created."""
        decision = resolver.resolve_assignee(task.assignee)
        user = task.assignee
        first = self._first_sighting(user)

        if decision.action == AssigneeAction.ASSIGN:
            user_id = decision.user_id
            if not decision.mapped:
                user_id = self.mappings.insert_if_absent(
                    self.tenant_id,
                    self.external_system,
                    "user",
                    user.id,
                    decision.user_id,
                    external_name=user.name,
                )
            if first:
                summary.record("user", "reused")
            return AssigneeDecision(AssigneeAction.ASSIGN, user_id=user_id, external_user=user)

        if decision.action == AssigneeAction.CREATE_USER:
            user_id, created = self._materialize(
                "user",
                user.id,
                lambda session: self.store.create_user(
                    session, self.tenant_id, user.email, user.name
                ),
                external_name=user.name,
            )
            resolver.directory.add(user.email, user_id)
            if first:
                summary.record("user", "created" if created else "reused")
            return AssigneeDecision(AssigneeAction.ASSIGN, user_id=user_id, external_user=user)

        if decision.action == AssigneeAction.SKIP_ASSIGNEE and first:
            summary.record("user", "skipped")
        elif decision.action == AssigneeAction.FAIL_TASK and first:
            summary.record("user", "failed")

        return decision

    def _import_task(
        self,
        task: ExternalTask,
        index: int,
        project_id: str,
        section_ids: dict[str, str],
        resolver: EntityResolver,
        summary: ExecutionSummary,
        task_ids: dict[str, str],
        policy_skipped: set[str],
    ) -> None:
        existing = self._mapped("task", task.id)
        if existing is not None:
            task_ids[task.id] = existing
            summary.record("task", "reused")
            return

        if not self.options.auto_create_tasks:
            policy_skipped.add(task.id)
            summary.record("task", "skipped")
            return

        assignee = self._assignee_for(task, resolver, summary)
        if assignee.action == AssigneeAction.FAIL_TASK:
            summary.fail("task", task.id, task.name, assignee.reason)
            return

        section_id = section_ids.get(task.section_id) if task.section_id else None

        def create(session) -> str:
            task_id = self.store.create_task(
                session,
                self.tenant_id,
                project_id,
                section_id,
                task,
                index,
                self.actor_user_id,
            )
            if assignee.user_id:
                self.store.add_task_assignee(session, self.tenant_id, task_id, assignee.user_id)
            return task_id

        task_id, created = self._materialize("task", task.id, create, external_name=task.name)
        task_ids[task.id] = task_id
        summary.record("task", "created" if created else "reused")

    def _import_subtask(
        self,
        subtask: ExternalTask,
        index: int,
        resolver: EntityResolver,
        summary: ExecutionSummary,
        task_ids: dict[str, str],
        policy_skipped: set[str],
    ) -> None:
        if subtask.num_subtasks > 0:
            logger.warning(
                "nested_subtasks_not_imported",
                external_id=subtask.id,
                nested=subtask.num_subtasks,
            )
            summary.add_error(
                "subtask", subtask.id, subtask.name, nested_items_message(subtask.num_subtasks)
            )

        if self._mapped("subtask", subtask.id) is not None:
            summary.record("subtask", "reused")
            return

        if not self.options.auto_create_tasks or subtask.parent_id in policy_skipped:
            summary.record("subtask", "skipped")
            return

        parent_id = task_ids.get(subtask.parent_id)
        if parent_id is None:
            summary.fail("subtask", subtask.id, subtask.name, PARENT_NOT_IMPORTED)
            return

        assignee = self._assignee_for(subtask, resolver, summary)
        if assignee.action == AssigneeAction.FAIL_TASK:
            summary.fail("subtask", subtask.id, subtask.name, assignee.reason)
            return

        _, created = self._materialize(
            "subtask",
            subtask.id,
            lambda session: self.store.create_subtask(
                session, parent_id, subtask, assignee.user_id, index
            ),
            external_name=subtask.name,
        )
        summary.record("subtask", "created" if created else "reused")
