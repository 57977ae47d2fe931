"""Domain store used by the import pipeline.

The pipeline only needs read lookups and create operations. Creates take a
caller-supplied session so the entity and its mapping row commit together.
``SqlDomainStore`` implements the interface over the reference schema in
``workspace_import.migration.models``.
"""

from dataclasses import dataclass
from datetime import date
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from workspace_import.client.source import ExternalProject, ExternalSection, ExternalTask
from workspace_import.migration.database import Database
from workspace_import.migration.models import (
    Client,
    Project,
    Section,
    Subtask,
    Task,
    TaskAssignee,
    TenantUser,
    Workspace,
)


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str


def parse_date(value: str | None) -> date | None:
    """Parse an ISO ``YYYY-MM-DD`` date; anything else becomes None."""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def task_status(completed: bool) -> str:
    return "done" if completed else "todo"


def project_status(archived: bool) -> str:
    return "completed" if archived else "active"


DEFAULT_PRIORITY = "medium"


class DomainStore(Protocol):
    def workspace_exists(self, tenant_id: str, workspace_id: str) -> bool: ...

    def list_users(self, tenant_id: str) -> list[UserRecord]: ...

    def client_exists(self, tenant_id: str, client_id: str) -> bool: ...

    def find_client_by_name(self, tenant_id: str, name: str) -> str | None: ...

    def create_client(
        self, session: Session, tenant_id: str, workspace_id: str, name: str
    ) -> str: ...

    def create_user(self, session: Session, tenant_id: str, email: str, name: str | None) -> str: ...

    def create_project(
        self,
        session: Session,
        tenant_id: str,
        workspace_id: str,
        client_id: str | None,
        project: ExternalProject,
        actor_user_id: str | None,
    ) -> str: ...

    def create_section(self, session: Session, project_id: str, section: ExternalSection) -> str: ...

    def create_task(
        self,
        session: Session,
        tenant_id: str,
        project_id: str,
        section_id: str | None,
        task: ExternalTask,
        order_index: int,
        actor_user_id: str | None,
    ) -> str: ...

    def add_task_assignee(
        self, session: Session, tenant_id: str, task_id: str, user_id: str
    ) -> None: ...

    def create_subtask(
        self,
        session: Session,
        task_id: str,
        subtask: ExternalTask,
        assignee_id: str | None,
        order_index: int,
    ) -> str: ...


class SqlDomainStore:
    """SQLAlchemy implementation of ``DomainStore``."""

    def __init__(self, database: Database):
        self.database = database

    # Reads

    def workspace_exists(self, tenant_id: str, workspace_id: str) -> bool:
        with self.database.session() as session:
            row = session.scalar(
                select(Workspace.id).where(
                    Workspace.id == workspace_id, Workspace.tenant_id == tenant_id
                )
            )
            return row is not None

    def list_users(self, tenant_id: str) -> list[UserRecord]:
        with self.database.session() as session:
            rows = session.execute(
                select(TenantUser.id, TenantUser.email)
                .where(TenantUser.tenant_id == tenant_id, TenantUser.is_active.is_(True))
                .order_by(TenantUser.email)
            ).all()
            return [UserRecord(id=row.id, email=row.email) for row in rows]

    def client_exists(self, tenant_id: str, client_id: str) -> bool:
        with self.database.session() as session:
            row = session.scalar(
                select(Client.id).where(Client.id == client_id, Client.tenant_id == tenant_id)
            )
            return row is not None

    def find_client_by_name(self, tenant_id: str, name: str) -> str | None:
        """Find a client by name, case-insensitively. Oldest match wins."""
        with self.database.session() as session:
            return session.scalar(
                select(Client.id)
                .where(
                    Client.tenant_id == tenant_id,
                    func.lower(Client.company_name) == name.strip().lower(),
                )
                .order_by(Client.id)
                .limit(1)
            )

    # Creates, inside the caller's transaction

    def create_workspace(self, session: Session, tenant_id: str, name: str) -> str:
        workspace = Workspace(tenant_id=tenant_id, name=name)
        session.add(workspace)
        session.flush()
        return workspace.id

    def create_client(self, session: Session, tenant_id: str, workspace_id: str, name: str) -> str:
        client = Client(tenant_id=tenant_id, workspace_id=workspace_id, company_name=name)
        session.add(client)
        session.flush()
        return client.id

    def create_user(self, session: Session, tenant_id: str, email: str, name: str | None) -> str:
        display_name = name or email
        parts = (name or "").split(" ")
        user = TenantUser(
            tenant_id=tenant_id,
            email=email.strip().lower(),
            name=display_name,
            first_name=parts[0] or None,
            last_name=" ".join(parts[1:]) or None,
            role="employee",
        )
        session.add(user)
        session.flush()
        return user.id

    def create_project(
        self,
        session: Session,
        tenant_id: str,
        workspace_id: str,
        client_id: str | None,
        project: ExternalProject,
        actor_user_id: str | None,
    ) -> str:
        row = Project(
            tenant_id=tenant_id,
            workspace_id=workspace_id,
            client_id=client_id,
            name=project.name,
            description=project.notes,
            status=project_status(project.archived),
            start_date=parse_date(project.start_on),
            due_date=parse_date(project.due_on),
            created_by=actor_user_id,
        )
        session.add(row)
        session.flush()
        return row.id

    def create_section(self, session: Session, project_id: str, section: ExternalSection) -> str:
        row = Section(project_id=project_id, name=section.name, order_index=section.order_index)
        session.add(row)
        session.flush()
        return row.id

    def create_task(
        self,
        session: Session,
        tenant_id: str,
        project_id: str,
        section_id: str | None,
        task: ExternalTask,
        order_index: int,
        actor_user_id: str | None,
    ) -> str:
        row = Task(
            tenant_id=tenant_id,
            project_id=project_id,
            section_id=section_id,
            title=task.name,
            description=task.notes,
            status=task_status(task.completed),
            priority=DEFAULT_PRIORITY,
            start_date=parse_date(task.start_on),
            due_date=parse_date(task.due_on),
            order_index=order_index,
            created_by=actor_user_id,
        )
        session.add(row)
        session.flush()
        return row.id

    def add_task_assignee(self, session: Session, tenant_id: str, task_id: str, user_id: str) -> None:
        if session.get(TaskAssignee, (task_id, user_id)) is None:
            session.add(TaskAssignee(task_id=task_id, user_id=user_id, tenant_id=tenant_id))
            session.flush()

    def create_subtask(
        self,
        session: Session,
        task_id: str,
        subtask: ExternalTask,
        assignee_id: str | None,
        order_index: int,
    ) -> str:
        row = Subtask(
            task_id=task_id,
            title=subtask.name,
            status=task_status(subtask.completed),
            completed=subtask.completed,
            priority=DEFAULT_PRIORITY,
            due_date=parse_date(subtask.due_on),
            assignee_id=assignee_id,
            order_index=order_index,
        )
        session.add(row)
        session.flush()
        return row.id

    # Counts used by reports and tests

    def count(self, model: type, tenant_id: str | None = None) -> int:
        with self.database.session() as session:
            stmt = select(func.count()).select_from(model)
            if tenant_id is not None and hasattr(model, "tenant_id"):
                stmt = stmt.where(model.tenant_id == tenant_id)
            return session.scalar(stmt) or 0
