"""Reporting for import runs."""

from workspace_import.reporting.report import RunReport, generate_run_report

__all__ = [
    "RunReport",
    "generate_run_report",
]
