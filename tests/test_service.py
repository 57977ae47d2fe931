"""Tests for the import service: background runs, conflicts and run queries."""

import pytest

from tests.fakes import ALICE, BOB, CAROL, OTHER_TENANT, TENANT, WORKSPACE, FakeAdapter
from workspace_import.client.credentials import StaticCredentialStore
from workspace_import.client.exceptions import (
    RunConflictError,
    RunNotFoundError,
    RunStateError,
    WorkspaceNotFoundError,
)
from workspace_import.client.source import ExternalProject, ExternalTask
from workspace_import.migration.pipeline import CANCELLED_MESSAGE
from workspace_import.migration.service import ImportService

OPTIONS = {"autoCreateClients": True}


class RecordingAuditSink:
    def __init__(self, fail: bool = False):
        self.runs = []
        self.fail = fail

    def run_completed(self, run):
        self.runs.append(run)
        if self.fail:
            raise RuntimeError("audit backend down")


def sample_adapter() -> FakeAdapter:
    return FakeAdapter(
        projects=[ExternalProject(id="P1", name="Website")],
        tasks={"P1": [ExternalTask(id="T1", name="Wireframes", assignee=ALICE)]},
    )


@pytest.fixture
def adapter():
    return sample_adapter()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def service(config, database, adapter, audit_sink):
    credentials = StaticCredentialStore(config.credentials.tokens)
    return ImportService(
        config,
        database,
        credentials,
        audit_sink=audit_sink,
        adapter_factory=lambda token: adapter,
    )


async def run_import(service, tenant, project_ids=("P1",), tenant_id=TENANT):
    result = await service.execute(
        tenant_id, WORKSPACE, list(project_ids), tenant.workspace_id, OPTIONS, "actor-1"
    )
    return await service.wait_for_run(result.run_id)


class TestExecute:
    @pytest.mark.asyncio
    async def test_background_run_completes_and_is_audited(
        self, service, tenant, adapter, audit_sink
    ):
        result = await service.execute(
            TENANT, WORKSPACE, ["P1"], tenant.workspace_id, OPTIONS, "actor-1", "Acme Asana"
        )
        assert result.status == "running"
        assert service.is_active(TENANT, WORKSPACE)

        run = await service.wait_for_run(result.run_id)

        assert run.status == "completed"
        assert run.phase == "Done"
        assert run.execution_summary["tasks"]["created"] == 1
        assert run.external_workspace_name == "Acme Asana"
        assert run.options["auto_create_clients"] is True
        assert not service.is_active(TENANT, WORKSPACE)
        assert [r.id for r in audit_sink.runs] == [result.run_id]
        assert adapter.closed

    @pytest.mark.asyncio
    async def test_concurrent_execute_for_same_workspace_conflicts(self, service, tenant):
        first = await service.execute(
            TENANT, WORKSPACE, ["P1"], tenant.workspace_id, OPTIONS, "actor-1"
        )

        with pytest.raises(RunConflictError):
            await service.execute(TENANT, WORKSPACE, ["P1"], tenant.workspace_id, OPTIONS, "actor-1")

        await service.wait_for_run(first.run_id)
        assert len(service.list_runs(TENANT)) == 1

    @pytest.mark.asyncio
    async def test_execute_can_run_again_after_completion(self, service, tenant):
        first = await run_import(service, tenant)
        second = await run_import(service, tenant)

        assert first.status == second.status == "completed"
        assert second.execution_summary["tasks"] == {
            "created": 0,
            "reused": 1,
            "skipped": 0,
            "failed": 0,
        }

    @pytest.mark.asyncio
    async def test_unknown_target_workspace_creates_no_run(self, service, tenant):
        with pytest.raises(WorkspaceNotFoundError):
            await service.execute(TENANT, WORKSPACE, ["P1"], "nope", OPTIONS, "actor-1")

        assert service.list_runs(TENANT) == []
        assert not service.is_active(TENANT, WORKSPACE)

    @pytest.mark.asyncio
    async def test_missing_credential_fails_the_run(self, service, other_tenant):
        run = await run_import(service, other_tenant, tenant_id=OTHER_TENANT)

        assert run.status == "failed"
        assert run.phase == "Error"
        assert "not connected" in run.error_log[0]["message"]

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_change_the_run(self, config, database, tenant, adapter):
        service = ImportService(
            config,
            database,
            StaticCredentialStore(config.credentials.tokens),
            audit_sink=RecordingAuditSink(fail=True),
            adapter_factory=lambda token: adapter,
        )

        run = await run_import(service, tenant)

        assert run.status == "completed"


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_before_first_project(self, service, tenant):
        result = await service.execute(
            TENANT, WORKSPACE, ["P1"], tenant.workspace_id, OPTIONS, "actor-1"
        )

        service.cancel_run(TENANT, result.run_id)
        run = await service.wait_for_run(result.run_id)

        assert run.status == "failed"
        assert run.phase == "Cancelled"
        assert run.error_log[-1]["message"] == CANCELLED_MESSAGE

    @pytest.mark.asyncio
    async def test_cancel_finished_run_is_rejected(self, service, tenant):
        run = await run_import(service, tenant)

        with pytest.raises(RunStateError):
            service.cancel_run(TENANT, run.id)


class TestQueries:
    @pytest.mark.asyncio
    async def test_runs_are_tenant_scoped(self, service, tenant):
        run = await run_import(service, tenant)

        assert service.get_run(TENANT, run.id).id == run.id
        with pytest.raises(RunNotFoundError):
            service.get_run(OTHER_TENANT, run.id)
        assert service.list_runs(OTHER_TENANT) == []

    @pytest.mark.asyncio
    async def test_validate_does_not_write(self, service, tenant):
        report = await service.validate(TENANT, WORKSPACE, ["P1"], tenant.workspace_id, OPTIONS)

        assert report.ok
        assert service.mappings.count(TENANT) == 0
        assert service.list_runs(TENANT) == []


class TestConnection:
    @pytest.mark.asyncio
    async def test_connect_stores_working_token(self, service):
        result = await service.connect(OTHER_TENANT, "pat-b")

        assert result.ok
        assert service.credentials.get_token(OTHER_TENANT, "asana") == "pat-b"

    @pytest.mark.asyncio
    async def test_connect_keeps_rejected_token_out(self, config, database):
        service = ImportService(
            config,
            database,
            StaticCredentialStore(),
            adapter_factory=lambda token: FakeAdapter(connection_ok=False),
        )

        result = await service.connect(OTHER_TENANT, "bad")

        assert not result.ok
        assert (await service.test_connection(OTHER_TENANT)).ok is False

    @pytest.mark.asyncio
    async def test_list_projects(self, service):
        projects = await service.list_projects(TENANT, WORKSPACE)

        assert [p.id for p in projects] == ["P1"]

    @pytest.mark.asyncio
    async def test_workspace_users_are_matched_to_tenant_users(self, service, tenant, adapter):
        adapter.users = [ALICE, BOB, CAROL]
        service.mappings.insert_if_absent(TENANT, "asana", "user", BOB.id, "internal-bob")

        matches = await service.list_workspace_users(TENANT, WORKSPACE)

        assert [(m.user.id, m.internal_user_id, m.matched_by) for m in matches] == [
            (ALICE.id, tenant.users["alice@example.com"], "email"),
            (BOB.id, "internal-bob", "mapping"),
            (CAROL.id, None, None),
        ]
        assert service.mappings.count(TENANT, entity_type="user") == 1
