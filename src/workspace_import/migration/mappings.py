"""
Entity mapping store.

Maps ``(tenant, external system, entity type, external id)`` onto the
internal id created for it. Rows are insert-if-absent: the unique constraint
on the key decides races, and the loser reuses the winner's id.
"""

import threading
from collections.abc import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workspace_import.client.exceptions import PersistenceError
from workspace_import.migration.database import Database
from workspace_import.migration.models import EntityMapping
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)


class EntityMappingStore:
    """
    Thread-safe access to the entity mapping table.

    Usage:
        internal_id, created = mappings.materialize(
            tenant_id, "asana", "project", project.id,
            lambda session: store.create_project(session, ...),
            external_name=project.name,
        )
    """

    def __init__(self, database: Database):
        self.database = database
        self._lock = threading.RLock()

    def lookup(
        self, tenant_id: str, external_system: str, entity_type: str, external_gid: str
    ) -> str | None:
        """
        Get the internal id mapped to an external entity.

        Returns:
            Internal id if a mapping exists, None otherwise
        """
        with self._lock:
            with self.database.session() as session:
                return self._lookup(session, tenant_id, external_system, entity_type, external_gid)

    @staticmethod
    def _lookup(
        session: Session,
        tenant_id: str,
        external_system: str,
        entity_type: str,
        external_gid: str,
    ) -> str | None:
        return session.scalar(
            select(EntityMapping.internal_id).where(
                EntityMapping.tenant_id == tenant_id,
                EntityMapping.external_system == external_system,
                EntityMapping.entity_type == entity_type,
                EntityMapping.external_gid == external_gid,
            )
        )

    def insert_if_absent(
        self,
        tenant_id: str,
        external_system: str,
        entity_type: str,
        external_gid: str,
        internal_id: str,
        external_name: str | None = None,
    ) -> str:
        """
        Record a mapping for an entity that already exists internally.

        Returns:
            The internal id now mapped to the key (an earlier mapping wins)

        Raises:
            PersistenceError: If the write fails for another reason
        """
        with self._lock:
            try:
                with self.database.session() as session:
                    existing = self._lookup(
                        session, tenant_id, external_system, entity_type, external_gid
                    )
                    if existing is not None:
                        return existing
                    session.add(
                        EntityMapping(
                            tenant_id=tenant_id,
                            external_system=external_system,
                            entity_type=entity_type,
                            external_gid=external_gid,
                            internal_id=internal_id,
                            external_name=external_name,
                        )
                    )
                    session.flush()
            except PersistenceError as e:
                winner = self._winner_after_conflict(
                    e, tenant_id, external_system, entity_type, external_gid
                )
                if winner is None:
                    raise
                return winner

        logger.debug(
            "entity_mapping_recorded",
            entity_type=entity_type,
            external_gid=external_gid,
            internal_id=internal_id,
        )
        return internal_id

    def materialize(
        self,
        tenant_id: str,
        external_system: str,
        entity_type: str,
        external_gid: str,
        create_fn: Callable[[Session], str],
        external_name: str | None = None,
    ) -> tuple[str, bool]:
        """
        Reuse the mapped entity or create it together with its mapping.

        ``create_fn`` runs inside the same transaction as the mapping insert,
        so a failed creation leaves no mapping row and a lost race rolls the
        created entity back.

        Returns:
            Tuple of (internal id, created)

        Raises:
            PersistenceError: If creation fails
        """
        with self._lock:
            try:
                with self.database.session() as session:
                    existing = self._lookup(
                        session, tenant_id, external_system, entity_type, external_gid
                    )
                    if existing is not None:
                        return existing, False

                    internal_id = create_fn(session)
                    session.add(
                        EntityMapping(
                            tenant_id=tenant_id,
                            external_system=external_system,
                            entity_type=entity_type,
                            external_gid=external_gid,
                            internal_id=internal_id,
                            external_name=external_name,
                        )
                    )
                    session.flush()
            except PersistenceError as e:
                winner = self._winner_after_conflict(
                    e, tenant_id, external_system, entity_type, external_gid
                )
                if winner is None:
                    raise
                logger.info(
                    "entity_mapping_race_lost",
                    entity_type=entity_type,
                    external_gid=external_gid,
                    internal_id=winner,
                )
                return winner, False

        logger.debug(
            "entity_materialized",
            entity_type=entity_type,
            external_gid=external_gid,
            internal_id=internal_id,
        )
        return internal_id, True

    def _winner_after_conflict(
        self,
        error: PersistenceError,
        tenant_id: str,
        external_system: str,
        entity_type: str,
        external_gid: str,
    ) -> str | None:
        if not isinstance(error.__cause__, IntegrityError):
            return None
        return self.lookup(tenant_id, external_system, entity_type, external_gid)

    def count(
        self,
        tenant_id: str,
        external_system: str | None = None,
        entity_type: str | None = None,
    ) -> int:
        with self._lock:
            with self.database.session() as session:
                stmt = select(func.count(EntityMapping.id)).where(
                    EntityMapping.tenant_id == tenant_id
                )
                if external_system is not None:
                    stmt = stmt.where(EntityMapping.external_system == external_system)
                if entity_type is not None:
                    stmt = stmt.where(EntityMapping.entity_type == entity_type)
                return session.scalar(stmt) or 0

    def list(
        self,
        tenant_id: str,
        external_system: str | None = None,
        entity_type: str | None = None,
    ) -> list[EntityMapping]:
        with self._lock:
            with self.database.session() as session:
                stmt = select(EntityMapping).where(EntityMapping.tenant_id == tenant_id)
                if external_system is not None:
                    stmt = stmt.where(EntityMapping.external_system == external_system)
                if entity_type is not None:
                    stmt = stmt.where(EntityMapping.entity_type == entity_type)
                stmt = stmt.order_by(EntityMapping.entity_type, EntityMapping.id)
                return list(session.scalars(stmt))
