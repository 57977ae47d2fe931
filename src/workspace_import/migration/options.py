"""Operator options for one import.

Accepts snake_case field names and the camelCase keys used by the web
client (``autoCreateClients``, ``clientMappingStrategy`` and so on).
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ClientMappingStrategy(str, Enum):
    SINGLE = "single"
    TEAM = "team"
    PER_PROJECT = "per_project"
    CUSTOM_FIELD = "custom_field"


class _OptionsModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class ProjectClientRef(_OptionsModel):
    """Target client for one external project: an existing id or a name."""

    client_id: str | None = None
    client_name: str | None = None

    @model_validator(mode="after")
    def require_one(self) -> "ProjectClientRef":
        if not self.client_id and not (self.client_name and self.client_name.strip()):
            raise ValueError("each project client mapping needs client_id or client_name")
        return self


class ImportOptions(_OptionsModel):
    """Immutable configuration of one validate/execute call."""

    auto_create_clients: bool = Field(
        default=False, description="Create missing clients instead of skipping the project"
    )
    auto_create_projects: bool = Field(
        default=True, description="Create unmapped external projects"
    )
    auto_create_tasks: bool = Field(
        default=True, description="Create unmapped external tasks and subtasks"
    )
    auto_create_users: bool = Field(
        default=False, description="Create tenant users for unmatched assignees with an email"
    )
    fallback_unassigned: bool = Field(
        default=True, description="Create tasks without assignee when the assignee is unresolvable"
    )
    client_mapping_strategy: ClientMappingStrategy = Field(
        default=ClientMappingStrategy.PER_PROJECT, description="How projects map onto clients"
    )
    single_client_id: str | None = None
    single_client_name: str | None = None
    client_custom_field_name: str | None = None
    project_client_map: dict[str, ProjectClientRef] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_strategy_inputs(self) -> "ImportOptions":
        strategy = self.client_mapping_strategy
        if strategy == ClientMappingStrategy.SINGLE and not (
            self.single_client_id or (self.single_client_name and self.single_client_name.strip())
        ):
            raise ValueError("single strategy requires single_client_id or single_client_name")
        if strategy == ClientMappingStrategy.CUSTOM_FIELD and not (
            self.client_custom_field_name and self.client_custom_field_name.strip()
        ):
            raise ValueError("custom_field strategy requires client_custom_field_name")
        return self

    def snapshot(self) -> dict:
        """JSON-safe copy stored on the run row."""
        return self.model_dump(mode="json")
