"""Asana source adapter.

Wraps the Asana REST API (``/api/1.0``) for read-only listing of workspaces,
projects, sections, tasks and users. Every list endpoint is paginated with
``limit``/``offset``; records are parsed into the provider-neutral types of
``workspace_import.client.source``.
"""

from typing import Any

from workspace_import.client.base_client import BaseAPIClient
from workspace_import.client.exceptions import (
    ImportBridgeError,
    MalformedPayloadError,
    SourceUnavailableError,
)
from workspace_import.client.source import (
    ConnectionResult,
    ExternalProject,
    ExternalSection,
    ExternalTask,
    ExternalUser,
    ExternalWorkspace,
    SourceAdapter,
    register_adapter,
)
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)

ASANA_API_BASE = "https://app.asana.com/api/1.0"

USER_FIELDS = "gid,name,email"
WORKSPACE_FIELDS = "gid,name"
PROJECT_FIELDS = (
    "gid,name,notes,archived,due_date,start_on,team,team.name,"
    "custom_fields,custom_fields.name,custom_fields.display_value,custom_fields.text_value"
)
SECTION_FIELDS = "gid,name"
TASK_FIELDS = (
    "gid,name,notes,completed,due_on,start_on,assignee,assignee.name,assignee.email,"
    "memberships.project,memberships.section,parent,num_subtasks,"
    "custom_fields,custom_fields.name,custom_fields.display_value,custom_fields.text_value"
)
SUBTASK_FIELDS = (
    "gid,name,notes,completed,due_on,start_on,assignee,assignee.name,assignee.email,"
    "parent,num_subtasks"
)


def _require_record(record: Any, kind: str) -> dict[str, Any]:
    if not isinstance(record, dict):
        raise MalformedPayloadError(f"Asana {kind} record is not an object: {record!r}")
    gid = record.get("gid")
    if not gid or not isinstance(gid, (str, int)):
        raise MalformedPayloadError(f"Asana {kind} record has no gid: {record!r}")
    return record


def _optional_ref(value: Any) -> dict[str, Any] | None:
    if isinstance(value, dict) and value.get("gid"):
        return value
    return None


def _parse_custom_fields(raw: Any) -> dict[str, str | None]:
    fields: dict[str, str | None] = {}
    if not isinstance(raw, list):
        return fields
    for item in raw:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        value = item.get("display_value")
        if value in (None, ""):
            value = item.get("text_value")
        fields[str(item["name"])] = str(value) if value is not None else None
    return fields


def parse_user(record: Any) -> ExternalUser:
    record = _require_record(record, "user")
    return ExternalUser(
        id=str(record["gid"]),
        name=record.get("name"),
        email=record.get("email") or None,
    )


def parse_workspace(record: Any) -> ExternalWorkspace:
    record = _require_record(record, "workspace")
    return ExternalWorkspace(id=str(record["gid"]), name=record.get("name") or "")


def parse_project(record: Any) -> ExternalProject:
    record = _require_record(record, "project")
    team = _optional_ref(record.get("team"))
    return ExternalProject(
        id=str(record["gid"]),
        name=record.get("name") or "",
        notes=record.get("notes") or None,
        archived=bool(record.get("archived", False)),
        team_id=str(team["gid"]) if team else None,
        team_name=team.get("name") if team else None,
        due_on=record.get("due_date") or record.get("due_on"),
        start_on=record.get("start_on"),
        custom_fields=_parse_custom_fields(record.get("custom_fields")),
    )


def parse_section(record: Any, order_index: int) -> ExternalSection:
    record = _require_record(record, "section")
    return ExternalSection(
        id=str(record["gid"]), name=record.get("name") or "", order_index=order_index
    )


def parse_task(
    record: Any, project_id: str | None = None, parent_id: str | None = None
) -> ExternalTask:
    """Parse a task record.

    ``parent_id`` overrides the record's own parent link (subtask listings
    already know their parent). The section is the membership belonging to
    ``project_id``.
    """
    record = _require_record(record, "task")

    assignee = None
    raw_assignee = record.get("assignee")
    if raw_assignee is not None:
        assignee_ref = _optional_ref(raw_assignee)
        if assignee_ref:
            assignee = parse_user(assignee_ref)
        else:
            # Broken reference: resolution fails this task only
            assignee = ExternalUser(
                id="", name=raw_assignee.get("name") if isinstance(raw_assignee, dict) else None
            )

    if parent_id is None:
        parent_ref = _optional_ref(record.get("parent"))
        parent_id = str(parent_ref["gid"]) if parent_ref else None

    section_id = None
    for membership in record.get("memberships") or []:
        if not isinstance(membership, dict):
            continue
        project = _optional_ref(membership.get("project"))
        section = _optional_ref(membership.get("section"))
        if section and (project_id is None or (project and str(project["gid"]) == project_id)):
            section_id = str(section["gid"])
            break

    num_subtasks = record.get("num_subtasks") or 0
    if not isinstance(num_subtasks, int):
        raise MalformedPayloadError(f"Asana task {record['gid']} has invalid num_subtasks")

    return ExternalTask(
        id=str(record["gid"]),
        name=record.get("name") or "",
        notes=record.get("notes") or None,
        completed=bool(record.get("completed", False)),
        due_on=record.get("due_on"),
        start_on=record.get("start_on"),
        assignee=assignee,
        parent_id=parent_id,
        section_id=section_id,
        num_subtasks=num_subtasks,
        custom_fields=_parse_custom_fields(record.get("custom_fields")),
    )


class AsanaSourceClient(BaseAPIClient, SourceAdapter):
    """Read-only Asana client authenticated with a personal access token."""

    provider = "asana"

    def __init__(self, token: str, base_url: str = ASANA_API_BASE, page_size: int = 100, **kwargs):
        super().__init__(base_url=base_url, token=token, **kwargs)
        self.page_size = page_size

    def _error_message(self, error_data: Any) -> str:
        # Asana wraps errors as {"errors": [{"message": ...}, ...]}
        if isinstance(error_data, dict) and isinstance(error_data.get("errors"), list):
            messages = [
                str(err.get("message"))
                for err in error_data["errors"]
                if isinstance(err, dict) and err.get("message")
            ]
            if messages:
                return "; ".join(messages)
        return super()._error_message(error_data)

    async def _get_data(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        response = await self.get(endpoint, params=params)
        if not isinstance(response, dict) or "data" not in response:
            raise MalformedPayloadError(f"Asana response for {endpoint} has no data envelope")
        return response["data"]

    async def paginate(self, endpoint: str, params: dict[str, Any] | None = None) -> list[Any]:
        """Fetch every page of a list endpoint.

        Args:
            endpoint: API endpoint path
            params: Query parameters (``limit`` and ``offset`` are managed here)

        Returns:
            Raw records of all pages, in server order
        """
        results: list[Any] = []
        query = dict(params or {})
        query["limit"] = self.page_size
        pages = 0

        while True:
            response = await self.get(endpoint, params=query)
            if not isinstance(response, dict) or not isinstance(response.get("data"), list):
                raise MalformedPayloadError(f"Asana list response for {endpoint} is malformed")

            results.extend(response["data"])
            pages += 1

            next_page = response.get("next_page")
            offset = next_page.get("offset") if isinstance(next_page, dict) else None
            if not offset:
                break
            query["offset"] = offset

        logger.debug("asana_paginated", endpoint=endpoint, pages=pages, records=len(results))
        return results

    async def test_connection(self) -> ConnectionResult:
        try:
            data = await self._get_data("/users/me", params={"opt_fields": USER_FIELDS})
            return ConnectionResult(ok=True, identity=parse_user(data))
        except SourceUnavailableError as e:
            logger.warning("asana_connection_test_unavailable", error=str(e))
            return ConnectionResult(ok=False, error=str(e), transient=True)
        except ImportBridgeError as e:
            logger.warning("asana_connection_test_failed", error=str(e))
            return ConnectionResult(ok=False, error=str(e))

    async def list_workspaces(self) -> list[ExternalWorkspace]:
        records = await self.paginate("/workspaces", {"opt_fields": WORKSPACE_FIELDS})
        return [parse_workspace(record) for record in records]

    async def list_projects(self, workspace_id: str) -> list[ExternalProject]:
        records = await self.paginate(
            "/projects", {"workspace": workspace_id, "opt_fields": PROJECT_FIELDS}
        )
        return [parse_project(record) for record in records]

    async def list_sections(self, project_id: str) -> list[ExternalSection]:
        records = await self.paginate(
            f"/projects/{project_id}/sections", {"opt_fields": SECTION_FIELDS}
        )
        return [parse_section(record, index) for index, record in enumerate(records)]

    async def list_subtasks(self, task_id: str) -> list[ExternalTask]:
        records = await self.paginate(f"/tasks/{task_id}/subtasks", {"opt_fields": SUBTASK_FIELDS})
        return [parse_task(record, parent_id=task_id) for record in records]

    async def list_tasks_and_subtasks(self, project_id: str) -> list[ExternalTask]:
        records = await self.paginate(f"/projects/{project_id}/tasks", {"opt_fields": TASK_FIELDS})
        tasks = [parse_task(record, project_id=project_id) for record in records]

        # Project task listings may include subtasks that are also project members
        top_level = [task for task in tasks if not task.is_subtask]

        subtasks: list[ExternalTask] = []
        for task in top_level:
            if task.num_subtasks > 0:
                subtasks.extend(await self.list_subtasks(task.id))

        logger.debug(
            "asana_tasks_listed",
            project_id=project_id,
            tasks=len(top_level),
            subtasks=len(subtasks),
        )
        return top_level + subtasks

    async def list_workspace_users(self, workspace_id: str) -> list[ExternalUser]:
        records = await self.paginate(
            f"/workspaces/{workspace_id}/users", {"opt_fields": USER_FIELDS}
        )
        return [parse_user(record) for record in records]


register_adapter(AsanaSourceClient.provider, AsanaSourceClient)
