"""Tests for the import pipeline: validate and execute against a temporary tenant."""

import asyncio

import httpx
import pytest
from sqlalchemy import select

from tests.fakes import ALICE, CAROL, TENANT, WORKSPACE, FakeAdapter, unavailable
from workspace_import.client.asana_client import AsanaSourceClient
from workspace_import.client.exceptions import (
    AuthorizationError,
    MalformedPayloadError,
    PersistenceError,
    SourceConnectionError,
    SourceUnavailableError,
)
from workspace_import.client.source import (
    ExternalProject,
    ExternalSection,
    ExternalTask,
    ExternalUser,
)
from workspace_import.migration.models import (
    Client,
    EntityMapping,
    Project,
    Subtask,
    Task,
    TaskAssignee,
    TenantUser,
)
from workspace_import.migration.options import ImportOptions
from workspace_import.migration.pipeline import (
    CANCELLED_MESSAGE,
    PARENT_NOT_IMPORTED,
    ImportPipeline,
)
from workspace_import.migration.resolution import REASON_MALFORMED_ASSIGNEE, REASON_NO_CLIENT_MAPPING


def make_pipeline(adapter, tenant, mappings, store, cancel_event=None, concurrency=4, **options):
    return ImportPipeline(
        adapter=adapter,
        tenant_id=tenant.tenant_id,
        target_workspace_id=tenant.workspace_id,
        options=ImportOptions(**options),
        mappings=mappings,
        store=store,
        actor_user_id="actor-1",
        max_concurrent_projects=concurrency,
        cancel_event=cancel_event,
    )


def scenario_adapter() -> FakeAdapter:
    """P1 has two resolvable tasks; P2 has one task assigned to an unknown user."""
    return FakeAdapter(
        projects=[
            ExternalProject(id="P1", name="Website", team_id="team-1", team_name="Design"),
            ExternalProject(id="P2", name="Backend", team_id="team-2", team_name="Platform"),
        ],
        tasks={
            "P1": [
                ExternalTask(id="T1", name="Wireframes", assignee=ALICE),
                ExternalTask(id="T2", name="Copy", assignee=None),
            ],
            "P2": [ExternalTask(id="T3", name="API", assignee=CAROL)],
        },
    )


def scenario_options() -> dict:
    return {
        "auto_create_clients": True,
        "auto_create_projects": True,
        "auto_create_tasks": True,
        "fallback_unassigned": False,
    }


def rows(database, column, *criteria):
    stmt = select(column)
    if criteria:
        stmt = stmt.where(*criteria)
    with database.session() as session:
        return list(session.scalars(stmt))


class TestScenario:
    @pytest.mark.asyncio
    async def test_first_run_creates_and_records_unresolved_task(
        self, tenant, mappings, store
    ):
        adapter = scenario_adapter()
        pipeline = make_pipeline(adapter, tenant, mappings, store, **scenario_options())

        outcome = await pipeline.execute(WORKSPACE, ["P1", "P2"])

        assert outcome.status == "completed_with_errors"
        assert outcome.summary["projects"]["created"] == 2
        assert outcome.summary["tasks"]["created"] == 2
        assert outcome.summary["tasks"]["failed"] == 1
        assert outcome.summary["clients"]["created"] == 2
        assert outcome.summary["users"]["reused"] == 1
        assert len(outcome.errors) == 1
        error = outcome.errors[0]
        assert error["entity_type"] == "task"
        assert error["external_id"] == "T3"
        assert "carol@elsewhere.io" in error["message"]

    @pytest.mark.asyncio
    async def test_rerun_reuses_everything(self, tenant, mappings, store):
        options = scenario_options()
        first = await make_pipeline(scenario_adapter(), tenant, mappings, store, **options).execute(
            WORKSPACE, ["P1", "P2"]
        )
        mapping_count = mappings.count(TENANT)

        second = await make_pipeline(
            scenario_adapter(), tenant, mappings, store, **options
        ).execute(WORKSPACE, ["P1", "P2"])

        assert first.status == second.status == "completed_with_errors"
        assert second.summary["projects"] == {"created": 0, "reused": 2, "skipped": 0, "failed": 0}
        assert second.summary["tasks"] == {"created": 0, "reused": 2, "skipped": 0, "failed": 1}
        assert mappings.count(TENANT) == mapping_count
        assert [e["external_id"] for e in second.errors] == ["T3"]
        assert store.count(Project, TENANT) == 2
        assert store.count(Task, TENANT) == 2


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_second_clean_run_has_no_errors_and_creates_nothing(
        self, database, tenant, mappings, store
    ):
        adapter = FakeAdapter(
            projects=[ExternalProject(id="P1", name="Website")],
            sections={"P1": [ExternalSection(id="S1", name="Backlog")]},
            tasks={
                "P1": [
                    ExternalTask(id="T1", name="One", assignee=ALICE, section_id="S1"),
                    ExternalTask(id="ST1", name="Sub", parent_id="T1", assignee=ALICE),
                ]
            },
        )
        options = {"auto_create_clients": True}

        first = await make_pipeline(adapter, tenant, mappings, store, **options).execute(
            WORKSPACE, ["P1"]
        )
        second = await make_pipeline(adapter, tenant, mappings, store, **options).execute(
            WORKSPACE, ["P1"]
        )

        assert first.status == "completed"
        assert second.status == "completed"
        assert second.errors == []
        for entity in ("projects", "sections", "tasks", "subtasks"):
            assert second.summary[entity]["created"] == 0
            assert second.summary[entity]["reused"] == 1
        assert store.count(Subtask) == 1
        assert len(rows(database, TaskAssignee.task_id)) == 1


class TestIsolation:
    @pytest.mark.asyncio
    async def test_malformed_assignee_fails_only_that_task(self, tenant, mappings, store):
        broken = ExternalUser(id="", name="ghost")
        adapter = FakeAdapter(
            projects=[ExternalProject(id="P1", name="Website")],
            tasks={
                "P1": [
                    ExternalTask(id="T1", name="One", assignee=ALICE),
                    ExternalTask(id="T2", name="Two", assignee=broken),
                    ExternalTask(id="T3", name="Three"),
                ]
            },
        )

        outcome = await make_pipeline(
            adapter, tenant, mappings, store, auto_create_clients=True
        ).execute(WORKSPACE, ["P1"])

        assert outcome.status == "completed_with_errors"
        assert outcome.summary["tasks"]["created"] == 2
        assert outcome.errors == [
            {
                "entity_type": "task",
                "external_id": "T2",
                "name": "Two",
                "message": REASON_MALFORMED_ASSIGNEE,
            }
        ]

    @pytest.mark.asyncio
    async def test_adapter_error_for_one_project_does_not_stop_the_other(
        self, tenant, mappings, store
    ):
        adapter = scenario_adapter()
        adapter.errors[("list_tasks", "P2")] = unavailable()

        outcome = await make_pipeline(
            adapter, tenant, mappings, store, auto_create_clients=True
        ).execute(WORKSPACE, ["P1", "P2"])

        assert outcome.status == "completed_with_errors"
        assert outcome.summary["tasks"]["created"] == 2
        assert outcome.summary["projects"]["created"] == 2
        assert [(e["entity_type"], e["external_id"]) for e in outcome.errors] == [("task", "P2")]

    @pytest.mark.asyncio
    async def test_unknown_project_id_is_recorded(self, tenant, mappings, store):
        outcome = await make_pipeline(
            scenario_adapter(), tenant, mappings, store, auto_create_clients=True
        ).execute(WORKSPACE, ["P1", "missing"])

        assert outcome.summary["projects"]["failed"] == 1
        assert outcome.errors[-1]["external_id"] == "missing"


class TestFallbackPolicy:
    def adapter(self) -> FakeAdapter:
        return FakeAdapter(
            projects=[ExternalProject(id="P1", name="Website")],
            tasks={"P1": [ExternalTask(id="T1", name="One", assignee=CAROL)]},
        )

    @pytest.mark.asyncio
    async def test_fallback_creates_unassigned_task_without_error(
        self, database, tenant, mappings, store
    ):
        outcome = await make_pipeline(
            self.adapter(), tenant, mappings, store, auto_create_clients=True
        ).execute(WORKSPACE, ["P1"])

        assert outcome.status == "completed"
        assert outcome.errors == []
        assert outcome.summary["tasks"]["created"] == 1
        assert outcome.summary["users"]["skipped"] == 1
        assert rows(database, TaskAssignee.task_id) == []

    @pytest.mark.asyncio
    async def test_no_fallback_records_error_and_skips_creation(self, tenant, mappings, store):
        outcome = await make_pipeline(
            self.adapter(),
            tenant,
            mappings,
            store,
            auto_create_clients=True,
            fallback_unassigned=False,
        ).execute(WORKSPACE, ["P1"])

        assert outcome.status == "completed_with_errors"
        assert outcome.summary["tasks"]["created"] == 0
        assert [e["external_id"] for e in outcome.errors] == ["T1"]
        assert store.count(Task, TENANT) == 0

    @pytest.mark.asyncio
    async def test_auto_create_users_creates_one_user_per_assignee(
        self, database, tenant, mappings, store
    ):
        adapter = FakeAdapter(
            projects=[ExternalProject(id="P1", name="Website")],
            tasks={
                "P1": [
                    ExternalTask(id="T1", name="One", assignee=CAROL),
                    ExternalTask(id="T2", name="Two", assignee=CAROL),
                ]
            },
        )

        outcome = await make_pipeline(
            adapter, tenant, mappings, store, auto_create_clients=True, auto_create_users=True
        ).execute(WORKSPACE, ["P1"])

        assert outcome.status == "completed"
        assert outcome.summary["users"]["created"] == 1
        emails = rows(database, TenantUser.email, TenantUser.tenant_id == TENANT)
        assert sorted(emails) == ["alice@example.com", "carol@elsewhere.io"]
        assert len(rows(database, TaskAssignee.task_id)) == 2


class TestClientStrategies:
    def adapter(self) -> FakeAdapter:
        return FakeAdapter(
            projects=[
                ExternalProject(
                    id="P1", name="Website", team_id="t1", custom_fields={"Client": "Globex"}
                ),
                ExternalProject(
                    id="P2", name="Backend", team_id="t2", custom_fields={"Client": "Initech"}
                ),
            ]
        )

    @pytest.mark.asyncio
    async def test_single_strategy_ignores_team_and_custom_fields(
        self, database, tenant, mappings, store
    ):
        outcome = await make_pipeline(
            self.adapter(),
            tenant,
            mappings,
            store,
            concurrency=1,
            auto_create_clients=True,
            client_mapping_strategy="single",
            single_client_name="Acme Corp",
        ).execute(WORKSPACE, ["P1", "P2"])

        assert outcome.status == "completed"
        assert outcome.summary["clients"]["created"] == 1
        assert outcome.summary["clients"]["reused"] == 1
        names = rows(database, Client.company_name, Client.tenant_id == TENANT)
        assert names == ["Acme Corp"]
        client_ids = set(rows(database, Project.client_id, Project.tenant_id == TENANT))
        assert len(client_ids) == 1

    @pytest.mark.asyncio
    async def test_per_project_without_mapping_skips_with_reason(self, tenant, mappings, store):
        adapter = self.adapter()
        outcome = await make_pipeline(adapter, tenant, mappings, store).execute(
            WORKSPACE, ["P1"]
        )

        assert outcome.status == "completed_with_errors"
        assert outcome.summary["projects"]["skipped"] == 1
        assert outcome.errors[0]["message"] == REASON_NO_CLIENT_MAPPING
        assert store.count(Project, TENANT) == 0
        assert ("list_tasks", "P1") not in adapter.calls

    @pytest.mark.asyncio
    async def test_per_project_client_id_reuses_existing_client(
        self, database, tenant, mappings, store
    ):
        with database.session() as session:
            client_id = store.create_client(session, TENANT, tenant.workspace_id, "Existing")

        outcome = await make_pipeline(
            self.adapter(),
            tenant,
            mappings,
            store,
            project_client_map={"P1": {"clientId": client_id}},
        ).execute(WORKSPACE, ["P1"])

        assert outcome.status == "completed"
        assert outcome.summary["clients"]["reused"] == 1
        assert rows(database, Project.client_id) == [client_id]

    @pytest.mark.asyncio
    async def test_custom_field_strategy_uses_field_value(self, database, tenant, mappings, store):
        outcome = await make_pipeline(
            self.adapter(),
            tenant,
            mappings,
            store,
            auto_create_clients=True,
            client_mapping_strategy="custom_field",
            client_custom_field_name="Client",
        ).execute(WORKSPACE, ["P1", "P2"])

        assert outcome.summary["clients"]["created"] == 2
        names = sorted(rows(database, Client.company_name))
        assert names == ["Globex", "Initech"]

    @pytest.mark.asyncio
    async def test_team_strategy_creates_one_client_for_concurrent_projects(
        self, database, tenant, mappings, store
    ):
        adapter = FakeAdapter(
            projects=[
                ExternalProject(id=f"P{i}", name=f"Project {i}", team_id="t1", team_name="Design")
                for i in range(4)
            ]
        )

        outcome = await make_pipeline(
            adapter,
            tenant,
            mappings,
            store,
            concurrency=4,
            auto_create_clients=True,
            client_mapping_strategy="team",
        ).execute(WORKSPACE, [f"P{i}" for i in range(4)])

        assert outcome.status == "completed"
        assert outcome.summary["clients"]["created"] == 1
        assert outcome.summary["clients"]["reused"] == 3
        assert rows(database, Client.company_name) == ["Design"]
        assert mappings.lookup(TENANT, "asana", "client", "team:t1") is not None


class TestPolicies:
    @pytest.mark.asyncio
    async def test_auto_create_tasks_disabled_skips_without_errors(self, tenant, mappings, store):
        adapter = FakeAdapter(
            projects=[ExternalProject(id="P1", name="Website")],
            tasks={
                "P1": [
                    ExternalTask(id="T1", name="One"),
                    ExternalTask(id="ST1", name="Sub", parent_id="T1"),
                ]
            },
        )

        outcome = await make_pipeline(
            adapter, tenant, mappings, store, auto_create_clients=True, auto_create_tasks=False
        ).execute(WORKSPACE, ["P1"])

        assert outcome.status == "completed"
        assert outcome.summary["tasks"]["skipped"] == 1
        assert outcome.summary["subtasks"]["skipped"] == 1
        assert outcome.errors == []

    @pytest.mark.asyncio
    async def test_auto_create_projects_disabled_skips_without_errors(
        self, tenant, mappings, store
    ):
        outcome = await make_pipeline(
            scenario_adapter(),
            tenant,
            mappings,
            store,
            auto_create_clients=True,
            auto_create_projects=False,
        ).execute(WORKSPACE, ["P1"])

        assert outcome.status == "completed"
        assert outcome.summary["projects"]["skipped"] == 1
        assert store.count(Task, TENANT) == 0


class TestHierarchy:
    @pytest.mark.asyncio
    async def test_sections_link_tasks(self, database, tenant, mappings, store):
        adapter = FakeAdapter(
            projects=[ExternalProject(id="P1", name="Website")],
            sections={"P1": [ExternalSection(id="S1", name="Todo", order_index=0)]},
            tasks={"P1": [ExternalTask(id="T1", name="One", section_id="S1")]},
        )

        outcome = await make_pipeline(
            adapter, tenant, mappings, store, auto_create_clients=True
        ).execute(WORKSPACE, ["P1"])

        assert outcome.summary["sections"]["created"] == 1
        section_id = mappings.lookup(TENANT, "asana", "section", "S1")
        assert rows(database, Task.section_id) == [section_id]

    @pytest.mark.asyncio
    async def test_subtask_of_failed_parent_is_recorded(self, tenant, mappings, store):
        adapter = FakeAdapter(
            projects=[ExternalProject(id="P1", name="Website")],
            tasks={
                "P1": [
                    ExternalTask(id="T1", name="One", assignee=CAROL),
                    ExternalTask(id="ST1", name="Sub", parent_id="T1"),
                ]
            },
        )

        outcome = await make_pipeline(
            adapter, tenant, mappings, store, auto_create_clients=True, fallback_unassigned=False
        ).execute(WORKSPACE, ["P1"])

        assert outcome.summary["subtasks"]["failed"] == 1
        assert outcome.errors[-1] == {
            "entity_type": "subtask",
            "external_id": "ST1",
            "name": "Sub",
            "message": PARENT_NOT_IMPORTED,
        }

    @pytest.mark.asyncio
    async def test_deeper_nesting_is_recorded_not_fatal(self, tenant, mappings, store):
        adapter = FakeAdapter(
            projects=[ExternalProject(id="P1", name="Website")],
            tasks={
                "P1": [
                    ExternalTask(id="T1", name="One", num_subtasks=1),
                    ExternalTask(id="ST1", name="Sub", parent_id="T1", num_subtasks=2),
                ]
            },
        )

        outcome = await make_pipeline(
            adapter, tenant, mappings, store, auto_create_clients=True
        ).execute(WORKSPACE, ["P1"])

        assert outcome.status == "completed_with_errors"
        assert outcome.summary["subtasks"]["created"] == 1
        assert outcome.errors[0]["external_id"] == "ST1"
        assert "2 nested item(s)" in outcome.errors[0]["message"]


class TestRunFailure:
    @pytest.mark.asyncio
    async def test_connection_failure_is_fatal(self, tenant, mappings, store):
        adapter = scenario_adapter()
        adapter.connection_ok = False

        outcome = await make_pipeline(adapter, tenant, mappings, store).execute(WORKSPACE, ["P1"])

        assert outcome.status == "failed"
        assert len(outcome.errors) == 1
        assert outcome.errors[0]["entity_type"] == "system"
        assert "Not Authorized" in outcome.errors[0]["message"]
        assert ("list_projects", None) not in adapter.calls

    @pytest.mark.asyncio
    async def test_project_listing_failure_is_fatal(self, tenant, mappings, store):
        adapter = scenario_adapter()
        adapter.errors[("list_projects", None)] = unavailable("list_projects")

        outcome = await make_pipeline(adapter, tenant, mappings, store).execute(WORKSPACE, ["P1"])

        assert outcome.status == "failed"
        assert [e["entity_type"] for e in outcome.errors] == ["system"]

    @pytest.mark.asyncio
    async def test_invariant_error_fails_run_and_keeps_progress(self, tenant, mappings, store):
        adapter = scenario_adapter()
        adapter.errors[("list_tasks", "P2")] = MalformedPayloadError("task record has no gid")

        outcome = await make_pipeline(
            adapter, tenant, mappings, store, concurrency=1, auto_create_clients=True
        ).execute(WORKSPACE, ["P1", "P2"])

        assert outcome.status == "failed"
        assert outcome.summary["tasks"]["created"] == 2
        assert outcome.errors[-1]["entity_type"] == "system"
        assert "no gid" in outcome.errors[-1]["message"]
        assert sum(1 for e in outcome.errors if e["entity_type"] == "system") == 1

    @pytest.mark.asyncio
    async def test_cancelled_run_ends_failed(self, tenant, mappings, store):
        cancel = asyncio.Event()
        cancel.set()

        outcome = await make_pipeline(
            scenario_adapter(), tenant, mappings, store, cancel_event=cancel
        ).execute(WORKSPACE, ["P1", "P2"])

        assert outcome.status == "failed"
        assert outcome.errors[-1]["message"] == CANCELLED_MESSAGE
        assert store.count(Project, TENANT) == 0

    @pytest.mark.asyncio
    async def test_phase_markers(self, tenant, mappings, store):
        phases: list[str] = []

        await make_pipeline(
            scenario_adapter(), tenant, mappings, store, auto_create_clients=True
        ).execute(WORKSPACE, ["P1", "P2"], on_phase=phases.append)

        assert "Importing tasks for project Website" in phases
        assert phases[-1].startswith("Completed 2/2 projects (last: ")

    @pytest.mark.asyncio
    async def test_failed_phase_write_does_not_fail_the_run(self, tenant, mappings, store):
        def on_phase(phase: str) -> None:
            if phase.startswith("Completed"):
                raise PersistenceError("database is locked")

        outcome = await make_pipeline(
            scenario_adapter(), tenant, mappings, store, auto_create_clients=True
        ).execute(WORKSPACE, ["P1"], on_phase=on_phase)

        assert outcome.status == "completed"
        assert outcome.phase == "Done"
        assert outcome.summary["tasks"]["created"] == 2
        assert outcome.errors == []


class TestValidate:
    @pytest.mark.asyncio
    async def test_validate_is_a_pure_dry_run(self, database, tenant, mappings, store):
        adapter = scenario_adapter()
        pipeline_kwargs = scenario_options()

        first = await make_pipeline(adapter, tenant, mappings, store, **pipeline_kwargs).validate(
            WORKSPACE, ["P1", "P2"]
        )
        second = await make_pipeline(adapter, tenant, mappings, store, **pipeline_kwargs).validate(
            WORKSPACE, ["P1", "P2"]
        )

        assert first.to_dict() == second.to_dict()
        assert first.ok
        assert mappings.count(TENANT) == 0
        assert store.count(Project) == 0
        assert store.count(Client) == 0
        assert rows(database, EntityMapping.id) == []

    @pytest.mark.asyncio
    async def test_validate_matches_execute(self, tenant, mappings, store):
        options = scenario_options()
        report = await make_pipeline(
            scenario_adapter(), tenant, mappings, store, **options
        ).validate(WORKSPACE, ["P1", "P2"])
        outcome = await make_pipeline(
            scenario_adapter(), tenant, mappings, store, **options
        ).execute(WORKSPACE, ["P1", "P2"])

        counts = report.counts
        assert counts["projects"]["create"] == outcome.summary["projects"]["created"]
        assert counts["tasks"]["create"] == outcome.summary["tasks"]["created"]
        assert counts["clients"]["create"] == outcome.summary["clients"]["created"]
        assert counts["tasks"]["skip"] == outcome.summary["tasks"]["failed"]
        assert sorted(report.auto_create_clients) == ["Backend", "Website"]

    @pytest.mark.asyncio
    async def test_validate_after_execute_plans_reuse(self, tenant, mappings, store):
        options = scenario_options()
        await make_pipeline(scenario_adapter(), tenant, mappings, store, **options).execute(
            WORKSPACE, ["P1", "P2"]
        )

        report = await make_pipeline(
            scenario_adapter(), tenant, mappings, store, **options
        ).validate(WORKSPACE, ["P1", "P2"])

        assert report.counts["projects"] == {"create": 0, "reuse": 2, "skip": 0}
        assert report.counts["tasks"] == {"create": 0, "reuse": 2, "skip": 1}

    @pytest.mark.asyncio
    async def test_blocking_problems(self, tenant, mappings, store):
        adapter = scenario_adapter()
        adapter.errors[("list_tasks", "P2")] = AuthorizationError("Forbidden", status_code=403)

        report = await make_pipeline(
            adapter, tenant, mappings, store, auto_create_clients=True
        ).validate(WORKSPACE, ["P1", "P2", "P9"])

        assert not report.ok
        codes = {(p.code, p.external_id) for p in report.blocking_problems}
        assert codes == {("permission_denied", "P2"), ("project_not_found", "P9")}
        assert [plan.external_id for plan in report.projects] == ["P1"]

    @pytest.mark.asyncio
    async def test_missing_target_workspace_is_blocking(self, tenant, mappings, store):
        pipeline = make_pipeline(scenario_adapter(), tenant, mappings, store)
        pipeline.target_workspace_id = "no-such-workspace"

        report = await pipeline.validate(WORKSPACE, ["P1"])

        assert [p.code for p in report.blocking_problems] == ["workspace_not_found"]

    @pytest.mark.asyncio
    async def test_validate_connection_failure_raises(self, tenant, mappings, store):
        adapter = scenario_adapter()
        adapter.connection_ok = False

        with pytest.raises(SourceConnectionError):
            await make_pipeline(adapter, tenant, mappings, store).validate(WORKSPACE, ["P1"])

    @pytest.mark.asyncio
    async def test_validate_plans_auto_created_users(self, tenant, mappings, store):
        report = await make_pipeline(
            scenario_adapter(),
            tenant,
            mappings,
            store,
            auto_create_clients=True,
            auto_create_users=True,
        ).validate(WORKSPACE, ["P1", "P2"])

        assert report.auto_create_users == ["carol@elsewhere.io"]
        assert report.counts["users"]["create"] == 1
        assert report.counts["users"]["reuse"] == 1


def asana_answering(status_code: int) -> AsanaSourceClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"errors": [{"message": "nope"}]})

    return AsanaSourceClient(
        token="pat-123",
        base_url="https://asana.test/api/1.0",
        request_interval_ms=0,
        retry_backoff_min=0,
        retry_backoff_max=0,
        transport=httpx.MockTransport(handler),
    )


class TestConnectionFailureKinds:
    @pytest.mark.asyncio
    async def test_unreachable_api_is_not_reported_as_rejected_token(
        self, tenant, mappings, store
    ):
        async with asana_answering(503) as adapter:
            with pytest.raises(SourceUnavailableError):
                await make_pipeline(adapter, tenant, mappings, store).validate(WORKSPACE, ["P1"])

    @pytest.mark.asyncio
    async def test_rejected_token_is_a_connection_error(self, tenant, mappings, store):
        async with asana_answering(401) as adapter:
            with pytest.raises(SourceConnectionError) as excinfo:
                await make_pipeline(adapter, tenant, mappings, store).validate(WORKSPACE, ["P1"])

        assert not isinstance(excinfo.value, SourceUnavailableError)
        assert "Authentication failed" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_unreachable_api_fails_the_run(self, tenant, mappings, store):
        async with asana_answering(503) as adapter:
            outcome = await make_pipeline(adapter, tenant, mappings, store).execute(
                WORKSPACE, ["P1"]
            )

        assert outcome.status == "failed"
        assert "unavailable" in outcome.errors[0]["message"]
