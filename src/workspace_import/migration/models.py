"""
SQLAlchemy models for workspace import state and the reference domain schema.

Two groups of tables live here: the import bookkeeping (entity mappings and
import runs) and a reference implementation of the multi-tenant
project-management schema the pipeline writes into (workspaces, users,
clients, projects, sections, tasks, subtasks).
"""

import uuid
from datetime import UTC, date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

RUN_STATUSES = ("queued", "running", "completed", "completed_with_errors", "failed")
TERMINAL_RUN_STATUSES = ("completed", "completed_with_errors", "failed")
ENTITY_TYPES = ("client", "project", "section", "task", "subtask", "user")


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class EntityMapping(Base):
    """
    Maps an external entity onto the internal row created for it.

    A mapping is written in the same transaction as the entity it points to
    and is never deleted by the import pipeline. Re-runs consult it to reuse
    instead of duplicating.
    """

    __tablename__ = "integration_entity_map"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True, comment="Owning tenant"
    )
    external_system: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="Provider name (e.g., asana)"
    )
    entity_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Entity type: client, project, section, task, subtask, user",
    )
    external_gid: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="External identifier (or derived key for clients)"
    )
    internal_id: Mapped[str] = mapped_column(
        String(36), nullable=False, comment="ID of the internal row"
    )
    external_name: Mapped[str | None] = mapped_column(
        String(512), nullable=True, comment="External name at mapping time"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "external_system",
            "entity_type",
            "external_gid",
            name="uq_entity_map_external",
        ),
        CheckConstraint(
            "entity_type IN ('client', 'project', 'section', 'task', 'subtask', 'user')",
            name="ck_entity_map_entity_type",
        ),
        Index("idx_entity_map_internal", "tenant_id", "entity_type", "internal_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<EntityMapping(entity_type='{self.entity_type}', "
            f"external_gid='{self.external_gid}', internal_id='{self.internal_id}')>"
        )


class ImportRun(Base):
    """
    One import attempt.

    Created ``running`` (or ``queued``) and moved to exactly one terminal
    status; terminal rows are never updated again.
    """

    __tablename__ = "integration_import_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    actor_user_id: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="Operator who triggered the run"
    )
    external_system: Mapped[str] = mapped_column(String(32), nullable=False)
    external_workspace_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_workspace_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    external_project_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    target_workspace_id: Mapped[str] = mapped_column(String(36), nullable=False)
    options: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=dict, comment="Options snapshot for the run"
    )

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="running", index=True)
    phase: Mapped[str | None] = mapped_column(
        String(512), nullable=True, comment="Last human-readable progress marker"
    )
    execution_summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_log: Mapped[list | None] = mapped_column(JSON, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'running', 'completed', 'completed_with_errors', 'failed')",
            name="ck_import_run_status",
        ),
        Index("idx_import_run_tenant_created", "tenant_id", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def __repr__(self) -> str:
        return f"<ImportRun(id='{self.id}', tenant_id='{self.tenant_id}', status='{self.status}')>"


# Reference domain schema


class Workspace(Base):
    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class TenantUser(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, comment="Stored lowercase")
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="employee")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),)


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    workspace_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("workspaces.id"), nullable=True
    )
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")

    __table_args__ = (Index("idx_clients_tenant_name", "tenant_id", "company_name"),)


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    workspace_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workspaces.id"), nullable=False
    )
    client_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)


class Section(Base):
    __tablename__ = "sections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id"), nullable=False, index=True
    )
    section_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("sections.id"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(1024), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="todo")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)


class TaskAssignee(Base):
    __tablename__ = "task_assignees"

    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)


class Subtask(Base):
    __tablename__ = "subtasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tasks.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(1024), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="todo")
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    assignee_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
