"""
Entity resolution.

Decides which internal client an external project belongs to and which
tenant user an external assignee maps onto. Resolution only reads: the
decisions say what the pipeline should create, reuse or skip, and which
mapping rows to record when it does.
"""

from dataclasses import dataclass
from enum import Enum

from workspace_import.client.source import ExternalProject, ExternalUser
from workspace_import.migration.mappings import EntityMappingStore
from workspace_import.migration.options import ClientMappingStrategy, ImportOptions
from workspace_import.migration.persistence import DomainStore, UserRecord

REASON_NO_CLIENT_MAPPING = "no client mapping for project"
REASON_CLIENT_NOT_FOUND = "client not found and auto-create disabled"
REASON_MALFORMED_ASSIGNEE = "malformed assignee reference"


class ClientAction(str, Enum):
    CREATE = "create"
    REUSE = "reuse"
    SKIP = "skip"


class AssigneeAction(str, Enum):
    ASSIGN = "assign"
    CREATE_USER = "create-user"
    SKIP_ASSIGNEE = "skip-assignee"
    FAIL_TASK = "fail-task"
    UNASSIGNED = "unassigned"


@dataclass(frozen=True)
class ClientDecision:
    """Outcome of client resolution for one external project.

    ``mapping_key`` is the external key recorded in the mapping table for the
    client (``team:<id>``, ``name:<lower name>`` or ``project:<id>``); it is
    None when the client is referenced by internal id only.
    ``mapped`` tells whether the mapping row already exists.
    """

    action: ClientAction
    client_id: str | None = None
    client_name: str | None = None
    mapping_key: str | None = None
    mapped: bool = False
    reason: str | None = None


@dataclass(frozen=True)
class AssigneeDecision:
    action: AssigneeAction
    user_id: str | None = None
    external_user: ExternalUser | None = None
    mapped: bool = False
    reason: str | None = None


class UserDirectory:
    """Tenant users indexed by lowercase email."""

    def __init__(self, users: list[UserRecord] | None = None):
        self._by_email: dict[str, str] = {}
        for user in users or []:
            self.add(user.email, user.id)

    def add(self, email: str, user_id: str) -> None:
        self._by_email.setdefault(email.strip().lower(), user_id)

    def find(self, email: str | None) -> str | None:
        if not email:
            return None
        return self._by_email.get(email.strip().lower())

    def __len__(self) -> int:
        return len(self._by_email)


class EntityResolver:
    """Applies the options of one import to external projects and assignees.

    ``planned_clients`` and ``planned_users`` let a dry run treat entities it
    already decided to create as existing, so later projects and tasks plan a
    reuse exactly as a real run would.
    """

    def __init__(
        self,
        tenant_id: str,
        external_system: str,
        options: ImportOptions,
        mappings: EntityMappingStore,
        store: DomainStore,
        directory: UserDirectory,
    ):
        self.tenant_id = tenant_id
        self.external_system = external_system
        self.options = options
        self.mappings = mappings
        self.store = store
        self.directory = directory
        self.planned_clients: dict[str, str] = {}
        self.planned_users: dict[str, str] = {}

    def _mapped(self, entity_type: str, external_gid: str) -> str | None:
        return self.mappings.lookup(
            self.tenant_id, self.external_system, entity_type, external_gid
        )

    # Clients

    def client_key(self, project: ExternalProject) -> tuple[str | None, str | None]:
        """Return (mapping key, client name) for a project, or (None, None) if absent."""
        options = self.options
        strategy = options.client_mapping_strategy

        if strategy == ClientMappingStrategy.SINGLE:
            name = (options.single_client_name or "").strip()
            return (f"name:{name.lower()}", name) if name else (None, None)

        if strategy == ClientMappingStrategy.TEAM:
            if not project.team_id:
                return None, None
            return f"team:{project.team_id}", (project.team_name or project.team_id)

        if strategy == ClientMappingStrategy.CUSTOM_FIELD:
            value = project.custom_field_value(options.client_custom_field_name or "")
            return (f"name:{value.lower()}", value) if value else (None, None)

        ref = options.project_client_map.get(project.id)
        if ref is not None and ref.client_name and ref.client_name.strip():
            name = ref.client_name.strip()
            return f"name:{name.lower()}", name
        return None, None

    def resolve_client(self, project: ExternalProject) -> ClientDecision:
        options = self.options
        strategy = options.client_mapping_strategy

        if strategy == ClientMappingStrategy.SINGLE and options.single_client_id:
            return self._resolve_client_id(options.single_client_id)

        if strategy == ClientMappingStrategy.PER_PROJECT:
            ref = options.project_client_map.get(project.id)
            if ref is not None and ref.client_id:
                return self._resolve_client_id(ref.client_id)

        key, name = self.client_key(project)
        if key is None:
            if not options.auto_create_clients:
                return ClientDecision(action=ClientAction.SKIP, reason=REASON_NO_CLIENT_MAPPING)
            # Absent mapping with auto-create: one client named after the project
            key, name = f"project:{project.id}", project.name

        return self._resolve_by_name(key, name)

    def _resolve_client_id(self, client_id: str) -> ClientDecision:
        if self.store.client_exists(self.tenant_id, client_id):
            return ClientDecision(action=ClientAction.REUSE, client_id=client_id)
        return ClientDecision(
            action=ClientAction.SKIP,
            client_id=client_id,
            reason=f"client {client_id} does not exist in this tenant",
        )

    def _resolve_by_name(self, key: str, name: str) -> ClientDecision:
        mapped = self._mapped("client", key)
        if mapped is not None:
            return ClientDecision(
                action=ClientAction.REUSE,
                client_id=mapped,
                client_name=name,
                mapping_key=key,
                mapped=True,
            )

        if key in self.planned_clients:
            return ClientDecision(
                action=ClientAction.REUSE,
                client_id=self.planned_clients[key],
                client_name=name,
                mapping_key=key,
                mapped=True,
            )

        existing = self.store.find_client_by_name(self.tenant_id, name)
        if existing is not None:
            return ClientDecision(
                action=ClientAction.REUSE, client_id=existing, client_name=name, mapping_key=key
            )

        if self.options.auto_create_clients:
            return ClientDecision(action=ClientAction.CREATE, client_name=name, mapping_key=key)

        return ClientDecision(
            action=ClientAction.SKIP,
            client_name=name,
            mapping_key=key,
            reason=REASON_CLIENT_NOT_FOUND,
        )

    # Assignees

    def resolve_assignee(self, external_user: ExternalUser | None) -> AssigneeDecision:
        if external_user is None:
            return AssigneeDecision(action=AssigneeAction.UNASSIGNED)

        if not external_user.id:
            return AssigneeDecision(
                action=AssigneeAction.FAIL_TASK,
                external_user=external_user,
                reason=REASON_MALFORMED_ASSIGNEE,
            )

        mapped = self._mapped("user", external_user.id) or self.planned_users.get(external_user.id)
        if mapped is not None:
            return AssigneeDecision(
                action=AssigneeAction.ASSIGN,
                user_id=mapped,
                external_user=external_user,
                mapped=True,
            )

        by_email = self.directory.find(external_user.email)
        if by_email is not None:
            return AssigneeDecision(
                action=AssigneeAction.ASSIGN, user_id=by_email, external_user=external_user
            )

        if self.options.auto_create_users and external_user.email:
            return AssigneeDecision(action=AssigneeAction.CREATE_USER, external_user=external_user)

        reason = f"no matching tenant user (email: {external_user.email or 'none'})"
        if self.options.fallback_unassigned:
            return AssigneeDecision(
                action=AssigneeAction.SKIP_ASSIGNEE, external_user=external_user, reason=reason
            )
        return AssigneeDecision(
            action=AssigneeAction.FAIL_TASK, external_user=external_user, reason=reason
        )
