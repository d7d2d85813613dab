"""Shared test fixtures — file-backed aiosqlite databases under tmp_path, provisioners, API client."""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import Table
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

# Import all models so metadata is populated
import tenantkit.models  # noqa: F401
from tenantkit.core.config import Settings, get_settings
from tenantkit.core.connections import ConnectionManager
from tenantkit.core.database import make_engine
from tenantkit.main import app
from tenantkit.provisioning import (
    ConfigProvisioner,
    DatabaseProvisioner,
    StorageProvisioner,
    TenantProvisioner,
    build_provisioner,
)
from tenantkit.services.state_store import InMemoryStateStore

ADMIN_TOKEN = "test-admin-token"


# ── Fake PostgreSQL connection ────────────────────────────────

class RecordingConnection:
    """Stands in for a PostgreSQL TenantConnection: tracks DDL in memory.

    Names listed in ``fail_on`` make the matching method raise.
    """

    def __init__(self, name: str = "default", dialect: str = "postgresql") -> None:
        self.name = name
        self.dialect = dialect
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self.databases: set[str] = set()
        self.schemas: set[str] = set()
        self.users: set[str] = set()
        self.tables: dict[str | None, set[str]] = {}
        self.rows: dict[tuple[str | None, str], list[dict]] = {}
        self.children: dict[str, "RecordingConnection"] = {}

    supports_schemas = True
    supports_users = True

    def _call(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        if method in self.fail_on:
            raise RuntimeError(f"{method} failed")

    async def database_exists(self, database: str) -> bool:
        return database in self.databases

    async def create_database(self, database: str) -> None:
        self._call("create_database", database)
        self.databases.add(database)

    async def drop_database(self, database: str) -> None:
        self._call("drop_database", database)
        self.databases.discard(database)
        self.children.pop(database, None)

    def for_database(self, database: str) -> "RecordingConnection":
        if database not in self.children:
            child = RecordingConnection(f"{self.name}:{database}", self.dialect)
            child.fail_on = self.fail_on
            self.children[database] = child
        return self.children[database]

    async def schema_exists(self, schema: str) -> bool:
        return schema in self.schemas

    async def create_schema(self, schema: str) -> None:
        self._call("create_schema", schema)
        self.schemas.add(schema)

    async def drop_schema(self, schema: str) -> None:
        self._call("drop_schema", schema)
        self.schemas.discard(schema)
        self.tables.pop(schema, None)

    async def create_user(self, username: str, password: str, database: str) -> None:
        self._call("create_user", username, database)
        self.users.add(username)

    async def drop_user(self, username: str) -> None:
        self._call("drop_user", username)
        self.users.discard(username)

    async def create_tables(self, tables: list[Table]) -> None:
        self._call("create_tables", *[t.fullname for t in tables])
        for table in tables:
            self.tables.setdefault(table.schema, set()).add(table.name)

    async def table_names(self, schema: str | None = None) -> list[str]:
        return sorted(self.tables.get(schema, set()))

    async def drop_table(self, table: str, schema: str | None = None) -> None:
        self._call("drop_table", table)
        self.tables.get(schema, set()).discard(table)

    async def insert_rows(self, table: Table, rows: list[dict]) -> None:
        self._call("insert_rows", table.fullname)
        self.rows.setdefault((table.schema, table.name), []).extend(rows)

    async def fetch_rows(self, table: str, schema: str | None = None) -> list[dict]:
        return list(self.rows.get((schema, table), []))

    async def dispose(self) -> None:
        return None


class RecordingConnectionManager:
    def __init__(self) -> None:
        self.connection = RecordingConnection()

    def get_connection(self, name: str | None = None) -> RecordingConnection:
        return self.connection

    async def dispose(self) -> None:
        return None


# ── Settings / database ───────────────────────────────────────

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'main.db'}",
        storage_base_path=str(tmp_path / "storage"),
        config_path=str(tmp_path / "config" / "tenants"),
        database_backup_path=str(tmp_path / "db_backups"),
        admin_token=ADMIN_TOKEN,
    )


@pytest.fixture
async def engine(settings) -> AsyncGenerator[AsyncEngine, None]:
    eng = make_engine(settings.database_url)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def connections(engine) -> AsyncGenerator[ConnectionManager, None]:
    manager = ConnectionManager(engine)
    yield manager
    await manager.dispose()


@pytest.fixture
def fake_connections() -> RecordingConnectionManager:
    return RecordingConnectionManager()


# ── Provisioners ──────────────────────────────────────────────

@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def database_provisioner(connections, store, settings) -> DatabaseProvisioner:
    return DatabaseProvisioner(connections, store, backup_path=settings.database_backup_path)


@pytest.fixture
def storage_provisioner(store, settings) -> StorageProvisioner:
    return StorageProvisioner(store, base_path=settings.storage_base_path)


@pytest.fixture
def config_provisioner(store, settings) -> ConfigProvisioner:
    return ConfigProvisioner(store, config_path=settings.config_path)


@pytest.fixture
async def provisioner(settings, engine) -> AsyncGenerator[TenantProvisioner, None]:
    prov = build_provisioner(settings, engine)
    yield prov
    await prov.database.connections.dispose()


# ── API client ────────────────────────────────────────────────

@pytest.fixture
async def client(provisioner, settings) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client wired to the test provisioner and settings."""
    app.state.provisioner = provisioner
    app.dependency_overrides[get_settings] = lambda: settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
