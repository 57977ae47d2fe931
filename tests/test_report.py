"""Tests for run reports."""

import json

from tests.fakes import TENANT
from workspace_import.reporting.report import MAX_LISTED_ERRORS, RunReport, generate_run_report


def finished_run(ledger, status, summary, errors):
    run_id = ledger.create(
        tenant_id=TENANT,
        actor_user_id="actor-1",
        external_system="asana",
        external_workspace_id="W1",
        external_project_ids=["P1"],
        target_workspace_id="ws-1",
        options={},
        external_workspace_name="Acme | Asana",
    )
    ledger.complete(run_id, status, summary, errors, phase="Done")
    return ledger.get(run_id)


def task_error(index):
    return {
        "entity_type": "task",
        "external_id": f"T{index}",
        "name": f"Task | {index}",
        "message": "no matching tenant user",
    }


SUMMARY = {
    "clients": {"created": 1, "reused": 0, "skipped": 0, "failed": 0},
    "projects": {"created": 1, "reused": 0, "skipped": 1, "failed": 0},
    "tasks": {"created": 3, "reused": 2, "skipped": 0, "failed": 1},
}


class TestRunReport:
    def test_json_totals_and_recommendations(self, ledger):
        run = finished_run(ledger, "completed_with_errors", SUMMARY, [task_error(1)])

        report = json.loads(RunReport(run).generate_json())

        assert report["run"]["id"] == run.id
        assert report["totals"] == {"created": 5, "reused": 2, "skipped": 1, "failed": 1}
        assert any("1 entities could not be imported" in r for r in report["recommendations"])
        assert any("project(s) were skipped" in r for r in report["recommendations"])

    def test_markdown_escapes_pipes_and_caps_error_list(self, ledger):
        errors = [task_error(i) for i in range(MAX_LISTED_ERRORS + 5)]
        run = finished_run(ledger, "completed_with_errors", SUMMARY, errors)

        markdown = RunReport(run).generate_markdown()

        assert "# Workspace Import Report" in markdown
        assert "Task \\| 0" in markdown
        assert "| Tasks | 3 | 2 | 0 | 1 |" in markdown
        assert "... and 5 more errors" in markdown

    def test_failed_run_names_the_cause(self, ledger):
        errors = [
            {"entity_type": "system", "external_id": None, "name": None, "message": "token revoked"}
        ]
        run = finished_run(ledger, "failed", {}, errors)

        recommendations = json.loads(RunReport(run).generate_json())["recommendations"]

        assert recommendations[0].startswith("Run failed (token revoked)")

    def test_generate_writes_requested_formats(self, ledger, tmp_path):
        run = finished_run(ledger, "completed", SUMMARY, [])

        files = generate_run_report(run, output_dir=str(tmp_path / "reports"), formats=["markdown"])

        assert list(files) == ["markdown"]
        assert files["markdown"].endswith(f"import_report_{run.id}.md")
        assert (tmp_path / "reports" / f"import_report_{run.id}.md").exists()
