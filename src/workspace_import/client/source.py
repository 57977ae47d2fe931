"""Provider-neutral view of an external project-management system.

The import pipeline only ever talks to a ``SourceAdapter``; concrete
providers parse their own payloads into the records defined here and register
themselves with ``register_adapter`` so they can be built from configuration.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from workspace_import.client.exceptions import ConfigurationError


@dataclass(frozen=True)
class ExternalUser:
    id: str
    name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class ExternalWorkspace:
    id: str
    name: str


@dataclass(frozen=True)
class ExternalProject:
    id: str
    name: str
    notes: str | None = None
    archived: bool = False
    team_id: str | None = None
    team_name: str | None = None
    due_on: str | None = None
    start_on: str | None = None
    custom_fields: dict[str, str | None] = field(default_factory=dict)

    def custom_field_value(self, field_name: str) -> str | None:
        """Return the trimmed value of a custom field, None when missing or blank."""
        value = self.custom_fields.get(field_name)
        if value is None:
            return None
        value = value.strip()
        return value or None


@dataclass(frozen=True)
class ExternalSection:
    id: str
    name: str
    order_index: int = 0


@dataclass(frozen=True)
class ExternalTask:
    """A task or subtask as reported by the external system.

    ``parent_id`` is set for subtasks. ``num_subtasks`` is the item count the
    provider reports below this task, used to detect unsupported nesting.
    """

    id: str
    name: str
    notes: str | None = None
    completed: bool = False
    due_on: str | None = None
    start_on: str | None = None
    assignee: ExternalUser | None = None
    parent_id: str | None = None
    section_id: str | None = None
    num_subtasks: int = 0
    custom_fields: dict[str, str | None] = field(default_factory=dict)

    @property
    def is_subtask(self) -> bool:
        return self.parent_id is not None


@dataclass(frozen=True)
class ConnectionResult:
    ok: bool
    identity: ExternalUser | None = None
    error: str | None = None
    #: The failure was the API being unreachable, not the token being rejected
    transient: bool = False


class SourceAdapter(ABC):
    """Read-only access to one tenant's account in an external system."""

    #: Value stored as ``external_system`` on mappings and runs
    provider: str = ""

    @abstractmethod
    async def test_connection(self) -> ConnectionResult:
        """Check the credential. Never raises for authentication failures."""

    @abstractmethod
    async def list_workspaces(self) -> list[ExternalWorkspace]: ...

    @abstractmethod
    async def list_projects(self, workspace_id: str) -> list[ExternalProject]:
        """List every project of a workspace, archived ones included."""

    @abstractmethod
    async def list_sections(self, project_id: str) -> list[ExternalSection]: ...

    @abstractmethod
    async def list_tasks_and_subtasks(self, project_id: str) -> list[ExternalTask]:
        """List top-level tasks followed by their subtasks.

        Subtasks carry ``parent_id``. Only two levels are fetched.
        """

    @abstractmethod
    async def list_workspace_users(self, workspace_id: str) -> list[ExternalUser]: ...

    @abstractmethod
    async def close(self) -> None: ...

    async def __aenter__(self) -> "SourceAdapter":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


AdapterFactory = Callable[..., SourceAdapter]

_ADAPTERS: dict[str, AdapterFactory] = {}


def register_adapter(provider: str, factory: AdapterFactory) -> None:
    """Register an adapter factory for a provider name."""
    _ADAPTERS[provider.lower()] = factory


def create_adapter(provider: str, token: str, **kwargs: Any) -> SourceAdapter:
    """Build an adapter for ``provider`` authenticated with ``token``.

    Raises:
        ConfigurationError: If no adapter is registered for the provider
    """
    factory = _ADAPTERS.get(provider.lower())
    if factory is None:
        known = ", ".join(sorted(_ADAPTERS)) or "none"
        raise ConfigurationError(f"Unknown source provider '{provider}' (known: {known})")
    return factory(token=token, **kwargs)


def registered_providers() -> list[str]:
    return sorted(_ADAPTERS)
