"""
Import module for the workspace import bridge.

This module provides the entity mapping store, the run ledger, entity
resolution and the import pipeline and service built on them.
"""

from workspace_import.migration.database import Database, create_database_engine
from workspace_import.migration.ledger import ImportRunView, RunLedger
from workspace_import.migration.mappings import EntityMappingStore
from workspace_import.migration.models import Base, EntityMapping, ImportRun
from workspace_import.migration.options import ClientMappingStrategy, ImportOptions
from workspace_import.migration.pipeline import ImportPipeline, RunOutcome
from workspace_import.migration.service import ExecuteResult, ImportService
from workspace_import.migration.summary import ExecutionSummary, ValidationReport

__all__ = [
    # Models
    "Base",
    "EntityMapping",
    "ImportRun",
    # Database utilities
    "Database",
    "create_database_engine",
    # State
    "EntityMappingStore",
    "RunLedger",
    "ImportRunView",
    # Import
    "ClientMappingStrategy",
    "ImportOptions",
    "ImportPipeline",
    "RunOutcome",
    "ExecutionSummary",
    "ValidationReport",
    "ImportService",
    "ExecuteResult",
]
