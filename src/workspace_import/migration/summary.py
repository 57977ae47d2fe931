"""
Result structures shared by validate and execute.

``ExecutionSummary`` accumulates per-entity-type counts and the error log of
a run; ``ValidationReport`` is the dry-run output. Neither is tied to the
database.
"""

from dataclasses import dataclass, field
from typing import Any

SUMMARY_ENTITY_TYPES = ("clients", "projects", "sections", "tasks", "subtasks", "users")
OUTCOMES = ("created", "reused", "skipped", "failed")

# Entity type as written in error entries and mappings -> summary bucket
SUMMARY_BUCKETS = {
    "client": "clients",
    "project": "projects",
    "section": "sections",
    "task": "tasks",
    "subtask": "subtasks",
    "user": "users",
}


def empty_summary() -> dict[str, dict[str, int]]:
    return {entity: dict.fromkeys(OUTCOMES, 0) for entity in SUMMARY_ENTITY_TYPES}


class ExecutionSummary:
    """Counts and error entries of one run.

    The pipeline is the only writer; all mutation happens on the event loop
    thread.
    """

    def __init__(self) -> None:
        self.counts = empty_summary()
        self.errors: list[dict[str, Any]] = []

    def record(self, entity_type: str, outcome: str) -> None:
        self.counts[SUMMARY_BUCKETS[entity_type]][outcome] += 1

    def add_error(
        self, entity_type: str, external_id: str | None, name: str | None, message: str
    ) -> None:
        self.errors.append(
            {
                "entity_type": entity_type,
                "external_id": external_id,
                "name": name,
                "message": message,
            }
        )

    def fail(
        self, entity_type: str, external_id: str | None, name: str | None, message: str
    ) -> None:
        """Count an entity as failed and log why."""
        self.record(entity_type, "failed")
        self.add_error(entity_type, external_id, name, message)

    def snapshot(self) -> dict[str, dict[str, int]]:
        return {entity: dict(counts) for entity, counts in self.counts.items()}

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class PlannedAction:
    action: str  # create, reuse or skip
    entity_type: str
    external_id: str | None
    name: str | None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "entity_type": self.entity_type,
            "external_id": self.external_id,
            "name": self.name,
            "reason": self.reason,
        }


@dataclass
class ProjectPlan:
    external_id: str
    name: str | None
    actions: list[PlannedAction] = field(default_factory=list)

    def add(
        self,
        action: str,
        entity_type: str,
        external_id: str | None,
        name: str | None,
        reason: str | None = None,
    ) -> None:
        self.actions.append(PlannedAction(action, entity_type, external_id, name, reason))

    def to_dict(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "name": self.name,
            "actions": [action.to_dict() for action in self.actions],
        }


@dataclass(frozen=True)
class BlockingProblem:
    """A problem that makes execute fail outright or skip a whole project."""

    code: str  # permission_denied, project_not_found, workspace_not_found
    message: str
    external_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "external_id": self.external_id}


@dataclass
class ValidationReport:
    projects: list[ProjectPlan] = field(default_factory=list)
    blocking_problems: list[BlockingProblem] = field(default_factory=list)
    auto_create_clients: list[str] = field(default_factory=list)
    auto_create_users: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.blocking_problems

    @property
    def counts(self) -> dict[str, dict[str, int]]:
        """Planned actions aggregated per summary bucket and action."""
        totals = {
            entity: {"create": 0, "reuse": 0, "skip": 0} for entity in SUMMARY_ENTITY_TYPES
        }
        for plan in self.projects:
            for action in plan.actions:
                totals[SUMMARY_BUCKETS[action.entity_type]][action.action] += 1
        return totals

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "projects": [plan.to_dict() for plan in self.projects],
            "blocking_problems": [problem.to_dict() for problem in self.blocking_problems],
            "counts": self.counts,
            "auto_create_preview": {
                "clients": list(self.auto_create_clients),
                "users": list(self.auto_create_users),
            },
        }
