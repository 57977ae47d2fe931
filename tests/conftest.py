"""Shared fixtures: a temporary SQLite tenant and configuration."""

from dataclasses import dataclass, field

import pytest

from tests.fakes import OTHER_TENANT, TENANT
from workspace_import.config import ImportBridgeConfig
from workspace_import.migration.database import Database
from workspace_import.migration.ledger import RunLedger
from workspace_import.migration.mappings import EntityMappingStore
from workspace_import.migration.persistence import SqlDomainStore


@dataclass
class Tenant:
    tenant_id: str
    workspace_id: str
    users: dict[str, str] = field(default_factory=dict)


@pytest.fixture
def database(tmp_path):
    db = Database.from_url(f"sqlite:///{tmp_path / 'import.db'}")
    yield db
    db.dispose()


@pytest.fixture
def store(database):
    return SqlDomainStore(database)


@pytest.fixture
def mappings(database):
    return EntityMappingStore(database)


@pytest.fixture
def ledger(database):
    return RunLedger(database)


def seed_tenant(
    database: Database, store: SqlDomainStore, tenant_id: str, emails: list[str]
) -> Tenant:
    with database.session() as session:
        workspace_id = store.create_workspace(session, tenant_id, "Main")
        users = {email: store.create_user(session, tenant_id, email, None) for email in emails}
    return Tenant(tenant_id=tenant_id, workspace_id=workspace_id, users=users)


@pytest.fixture
def tenant(database, store):
    """Tenant with a workspace and one user matching Alice's email."""
    return seed_tenant(database, store, TENANT, ["alice@example.com"])


@pytest.fixture
def config(tmp_path):
    return ImportBridgeConfig(
        state={"db_path": str(tmp_path / "import.db")},
        credentials={"backend": "static", "tokens": {TENANT: "pat-a"}},
        logging={"file": None},
    )


@pytest.fixture
def other_tenant(database, store):
    return seed_tenant(database, store, OTHER_TENANT, ["alice@example.com"])
