"""Tests for the entity mapping store."""

import pytest

from tests.fakes import OTHER_TENANT, TENANT
from workspace_import.client.exceptions import PersistenceError
from workspace_import.migration.mappings import EntityMappingStore
from workspace_import.migration.models import Client


def create_client_fn(store, tenant, name):
    return lambda session: store.create_client(session, tenant.tenant_id, tenant.workspace_id, name)


class TestMaterialize:
    def test_creates_once_then_reuses(self, tenant, mappings, store):
        first = mappings.materialize(
            TENANT, "asana", "client", "team:1", create_client_fn(store, tenant, "Design")
        )
        second = mappings.materialize(
            TENANT, "asana", "client", "team:1", create_client_fn(store, tenant, "Design")
        )

        assert first[1] is True
        assert second == (first[0], False)
        assert store.count(Client, TENANT) == 1
        assert mappings.lookup(TENANT, "asana", "client", "team:1") == first[0]

    def test_failed_create_leaves_no_mapping(self, tenant, mappings, store):
        def broken(session):
            store.create_client(session, tenant.tenant_id, tenant.workspace_id, "Half")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            mappings.materialize(TENANT, "asana", "client", "team:1", broken)

        assert mappings.lookup(TENANT, "asana", "client", "team:1") is None
        assert store.count(Client, TENANT) == 0

    def test_database_error_surfaces_as_persistence_error(self, tenant, mappings, store):
        def violates_foreign_key(session):
            return store.create_client(session, tenant.tenant_id, "missing-workspace", "Orphan")

        with pytest.raises(PersistenceError):
            mappings.materialize(TENANT, "asana", "client", "team:1", violates_foreign_key)

        assert mappings.count(TENANT) == 0

    def test_losing_a_race_reuses_the_winner_and_rolls_back(
        self, database, tenant, mappings, store
    ):
        rival = EntityMappingStore(database)

        def create_after_rival(session):
            rival.insert_if_absent(TENANT, "asana", "client", "team:1", "winner-id")
            return store.create_client(session, tenant.tenant_id, tenant.workspace_id, "Design")

        result = mappings.materialize(TENANT, "asana", "client", "team:1", create_after_rival)

        assert result == ("winner-id", False)
        assert store.count(Client, TENANT) == 0
        assert mappings.count(TENANT) == 1


class TestInsertIfAbsent:
    def test_earlier_mapping_wins(self, mappings):
        first = mappings.insert_if_absent(TENANT, "asana", "user", "u1", "internal-1")
        second = mappings.insert_if_absent(TENANT, "asana", "user", "u1", "internal-2")

        assert first == second == "internal-1"
        assert mappings.count(TENANT, entity_type="user") == 1

    def test_keys_are_scoped_by_tenant_and_system(self, mappings):
        mappings.insert_if_absent(TENANT, "asana", "project", "P1", "a")
        mappings.insert_if_absent(OTHER_TENANT, "asana", "project", "P1", "b")
        mappings.insert_if_absent(TENANT, "trello", "project", "P1", "c")

        assert mappings.lookup(TENANT, "asana", "project", "P1") == "a"
        assert mappings.lookup(OTHER_TENANT, "asana", "project", "P1") == "b"
        assert mappings.count(TENANT) == 2
        assert mappings.count(TENANT, external_system="asana") == 1

    def test_list_filters_by_type(self, mappings):
        mappings.insert_if_absent(TENANT, "asana", "task", "T1", "t")
        mappings.insert_if_absent(TENANT, "asana", "project", "P1", "p", external_name="Website")

        projects = mappings.list(TENANT, entity_type="project")

        assert [(m.external_gid, m.external_name) for m in projects] == [("P1", "Website")]
