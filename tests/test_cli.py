"""Tests for the command line interface."""

import json

import pytest
from click.testing import CliRunner

from tests.fakes import ALICE, TENANT, WORKSPACE, FakeAdapter
from workspace_import.cli.main import cli
from workspace_import.client.source import ExternalProject, ExternalTask
from workspace_import.migration.service import ImportService


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        f"""
state:
  db_path: {tmp_path / 'import.db'}
credentials:
  tokens:
    {TENANT}: pat-a
logging:
  file: {tmp_path / 'logs' / 'import.log'}
"""
    )
    return path


@pytest.fixture
def fake_adapter(monkeypatch):
    adapter = FakeAdapter(
        projects=[ExternalProject(id="P1", name="Website")],
        tasks={"P1": [ExternalTask(id="T1", name="Wireframes", assignee=ALICE)]},
    )
    monkeypatch.setattr(ImportService, "_default_adapter", lambda self, token: adapter)
    return adapter


def invoke(tmp_path, config_file, *args):
    runner = CliRunner()
    return runner.invoke(
        cli,
        [
            "--config",
            str(config_file),
            "--log-file",
            str(tmp_path / "logs" / "cli.log"),
            "--tenant",
            TENANT,
            *args,
        ],
    )


class TestConfigCommand:
    def test_validate_reports_valid_configuration(self, tmp_path, config_file):
        result = invoke(tmp_path, config_file, "config", "validate")

        assert result.exit_code == 0, result.output
        assert "Configuration is valid!" in result.output

    def test_invalid_configuration_exits_with_code_2(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("logging:\n  level: loud\n")

        result = invoke(tmp_path, bad, "config", "validate")

        assert result.exit_code == 2

    def test_unknown_provider_fails(self, tmp_path):
        path = tmp_path / "other.yaml"
        path.write_text(f"source:\n  provider: trello\nstate:\n  db_path: {tmp_path / 'x.db'}\n")

        result = invoke(tmp_path, path, "config", "validate")

        assert result.exit_code != 0
        assert "Unknown provider" in result.output


class TestImportCommands:
    def test_validate_json_report(self, tmp_path, config_file, fake_adapter, database, tenant):
        result = invoke(
            tmp_path,
            config_file,
            "validate",
            "-w",
            WORKSPACE,
            "-p",
            "P1",
            "-t",
            tenant.workspace_id,
            "--auto-create-clients",
            "--json",
        )

        assert result.exit_code == 0, result.output
        assert '"ok": true' in result.output

    def test_validate_with_blocking_problem_exits_1(
        self, tmp_path, config_file, fake_adapter, database, tenant
    ):
        result = invoke(
            tmp_path, config_file, "validate", "-w", WORKSPACE, "-p", "missing", "-t", "nope"
        )

        assert result.exit_code == 1

    def test_invalid_options_file_is_a_configuration_error(
        self, tmp_path, config_file, fake_adapter, database, tenant
    ):
        options_file = tmp_path / "options.json"
        options_file.write_text(json.dumps({"clientMappingStrategy": "single"}))

        result = invoke(
            tmp_path,
            config_file,
            "validate",
            "-w",
            WORKSPACE,
            "-p",
            "P1",
            "-t",
            tenant.workspace_id,
            "--options-file",
            str(options_file),
        )

        assert result.exit_code == 2
        assert "Invalid import options" in result.output

    def test_execute_then_list_runs(self, tmp_path, config_file, fake_adapter, database, tenant):
        result = invoke(
            tmp_path,
            config_file,
            "execute",
            "-w",
            WORKSPACE,
            "-p",
            "P1",
            "-t",
            tenant.workspace_id,
            "--auto-create-clients",
            "--actor",
            "actor-1",
        )

        assert result.exit_code == 0, result.output
        assert "completed" in result.output

        listing = invoke(tmp_path, config_file, "runs", "list")
        assert listing.exit_code == 0, listing.output
        assert "Import Runs" in listing.output


class TestConnectionCommand:
    def test_failed_connection_exits_with_code_3(self, tmp_path, config_file, monkeypatch):
        monkeypatch.setattr(
            ImportService,
            "_default_adapter",
            lambda self, token: FakeAdapter(connection_ok=False),
        )

        result = invoke(tmp_path, config_file, "connection", "test")

        assert result.exit_code == 3

    def test_connect_warns_that_static_tokens_are_not_kept(
        self, tmp_path, config_file, fake_adapter
    ):
        result = invoke(tmp_path, config_file, "connection", "connect", "--token", "pat-new")

        assert result.exit_code == 0, result.output
        assert "Connection OK" in result.output
        assert "only until the command exits" in result.output


class TestBrowseCommands:
    def test_users_lists_workspace_members(
        self, tmp_path, config_file, fake_adapter, database, tenant
    ):
        fake_adapter.users = [ALICE]

        result = invoke(tmp_path, config_file, "users", WORKSPACE)

        assert result.exit_code == 0, result.output
        assert f"Members of {WORKSPACE}" in result.output
        assert ("list_workspace_users", None) in fake_adapter.calls
