"""Import run report generation.

Renders a finished (or in-flight) import run as JSON or Markdown for
operators and support.
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from workspace_import.migration.ledger import ImportRunView
from workspace_import.migration.summary import SUMMARY_ENTITY_TYPES, empty_summary
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)

MAX_LISTED_ERRORS = 50


class RunReport:
    """Report of one import run."""

    def __init__(self, run: ImportRunView):
        self.run = run
        self.generated_at = datetime.now(UTC)

    @property
    def summary(self) -> dict[str, dict[str, int]]:
        return self.run.execution_summary or empty_summary()

    @property
    def errors(self) -> list[dict[str, Any]]:
        return self.run.error_log or []

    def generate_json(self, output_path: str | None = None) -> str:
        """Generate JSON report.

        Args:
            output_path: Optional path to save report

        Returns:
            JSON report as string
        """
        report = {
            "report_version": "1.0",
            "generated_at": self.generated_at.isoformat(),
            "run": self.run.to_dict(),
            "totals": self._totals(),
            "recommendations": self._generate_recommendations(),
        }

        json_str = json.dumps(report, indent=2, default=str)

        if output_path:
            Path(output_path).write_text(json_str)
            logger.info("json_report_saved", path=output_path)

        return json_str

    def generate_markdown(self, output_path: str | None = None) -> str:
        """Generate Markdown report.

        Args:
            output_path: Optional path to save report

        Returns:
            Markdown report as string
        """
        run = self.run
        lines = [
            "# Workspace Import Report",
            "",
            f"**Run ID:** `{run.id}`  ",
            f"**Generated:** {self.generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}  ",
            f"**Status:** {run.status}  ",
            f"**Phase:** {run.phase or 'N/A'}  ",
            "",
            "## Source",
            "",
            f"- **System:** {run.external_system}",
            f"- **Workspace:** {run.external_workspace_name or run.external_workspace_id}",
            f"- **Projects:** {len(run.external_project_ids)}",
            f"- **Target Workspace:** {run.target_workspace_id}",
            f"- **Started:** {_format_time(run.started_at)}",
            f"- **Completed:** {_format_time(run.completed_at)}",
            f"- **Duration:** {self._format_duration()}",
            "",
            "## Entities",
            "",
            "| Entity | Created | Reused | Skipped | Failed |",
            "|--------|--------:|-------:|--------:|-------:|",
        ]

        summary = self.summary
        for entity in SUMMARY_ENTITY_TYPES:
            counts = summary.get(entity, {})
            lines.append(
                f"| {entity.title()} | {counts.get('created', 0):,} | {counts.get('reused', 0):,} "
                f"| {counts.get('skipped', 0):,} | {counts.get('failed', 0):,} |"
            )
        lines.append("")

        errors = self.errors
        if errors:
            lines.extend(
                [
                    "## Errors",
                    "",
                    f"Total errors recorded: {len(errors)}",
                    "",
                    "| Type | External ID | Name | Message |",
                    "|------|-------------|------|---------|",
                ]
            )
            for error in errors[:MAX_LISTED_ERRORS]:
                lines.append(
                    f"| {error.get('entity_type')} | {error.get('external_id') or '-'} "
                    f"| {_escape(error.get('name'))} | {_escape(error.get('message'))} |"
                )
            if len(errors) > MAX_LISTED_ERRORS:
                lines.append(f"\n*... and {len(errors) - MAX_LISTED_ERRORS} more errors*")
            lines.append("")

        recommendations = self._generate_recommendations()
        if recommendations:
            lines.extend(["## Recommendations", ""])
            for rec in recommendations:
                lines.append(f"- {rec}")
            lines.append("")

        markdown = "\n".join(lines)

        if output_path:
            Path(output_path).write_text(markdown)
            logger.info("markdown_report_saved", path=output_path)

        return markdown

    def _totals(self) -> dict[str, int]:
        totals = dict.fromkeys(("created", "reused", "skipped", "failed"), 0)
        for counts in self.summary.values():
            for outcome in totals:
                totals[outcome] += counts.get(outcome, 0)
        return totals

    def _generate_recommendations(self) -> list[str]:
        run = self.run
        recommendations = []

        if not run.is_terminal:
            recommendations.append("Run is still in progress; this report is a snapshot.")
            return recommendations

        if run.status == "failed":
            system = [e for e in self.errors if e.get("entity_type") == "system"]
            cause = system[-1]["message"] if system else "unknown cause"
            recommendations.append(
                f"Run failed ({cause}). Fix the cause and execute again; "
                "entities imported so far are reused."
            )
        elif run.status == "completed_with_errors":
            recommendations.append(
                f"{len(self.errors)} entities could not be imported. "
                "Review the errors, adjust options or tenant data, and execute again."
            )

        skipped = self.summary.get("projects", {}).get("skipped", 0)
        if skipped:
            recommendations.append(
                f"{skipped} project(s) were skipped. Check the client mapping strategy "
                "or enable auto-create for clients."
            )

        if not recommendations:
            recommendations.append("Import completed without errors.")

        return recommendations

    def _format_duration(self) -> str:
        started, completed = self.run.started_at, self.run.completed_at
        if started is None or completed is None:
            return "N/A"

        seconds = (completed - started).total_seconds()
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        if hours > 0:
            return f"{hours}h {minutes}m {secs}s"
        elif minutes > 0:
            return f"{minutes}m {secs}s"
        else:
            return f"{secs}s"


def _format_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "N/A"


def _escape(value: Any) -> str:
    if value is None:
        return "-"
    return str(value).replace("|", "\\|").replace("\n", " ")


def generate_run_report(
    run: ImportRunView,
    output_dir: str = "./reports",
    formats: list[str] | None = None,
) -> dict[str, str]:
    """Write reports of a run in the requested formats.

    Args:
        run: Run to report on
        output_dir: Directory to save reports
        formats: Formats to generate (json, markdown). Default: both

    Returns:
        Dictionary mapping format to file path
    """
    if formats is None:
        formats = ["json", "markdown"]

    report = RunReport(run)
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    generated_files = {}
    base_filename = f"import_report_{run.id}"

    if "json" in formats:
        json_path = output_path / f"{base_filename}.json"
        report.generate_json(str(json_path))
        generated_files["json"] = str(json_path)

    if "markdown" in formats:
        md_path = output_path / f"{base_filename}.md"
        report.generate_markdown(str(md_path))
        generated_files["markdown"] = str(md_path)

    logger.info("run_reports_generated", run_id=run.id, formats=formats, files=generated_files)

    return generated_files
