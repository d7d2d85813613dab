"""Tenant-facing database connections — quoted DDL over an async engine.

Every identifier that reaches a statement passes ``validate_identifier`` and is
then quoted by the dialect's identifier preparer; values go through bound
parameters. Dialect differences (PostgreSQL, MySQL/MariaDB, SQLite) are kept
here so provisioners only speak in terms of databases, schemas, users and
tables.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Sequence
from typing import Any

from sqlalchemy import Table, inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantkit.core.database import make_engine
from tenantkit.core.errors import InvalidIdentifierError

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_\-]+$")
MAX_IDENTIFIER_LENGTH = 63  # PostgreSQL limit; MySQL allows 64

_MYSQL = ("mysql", "mariadb")


def validate_identifier(name: str) -> str:
    """Reject anything that is not a plain identifier before it reaches SQL."""
    if not name or not IDENTIFIER_RE.match(name):
        raise InvalidIdentifierError(f"Invalid database identifier: {name!r}")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifierError(
            f"Database identifier too long ({len(name)} > {MAX_IDENTIFIER_LENGTH}): {name!r}"
        )
    return name


class TenantConnection:
    """DDL surface over one logical connection."""

    def __init__(self, engine: AsyncEngine, name: str = "default", owns_engine: bool = True) -> None:
        self.engine = engine
        self.name = name
        self._owns_engine = owns_engine
        self._databases: dict[str, TenantConnection] = {}

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @property
    def supports_schemas(self) -> bool:
        return self.dialect != "sqlite"

    @property
    def supports_users(self) -> bool:
        return self.dialect == "postgresql" or self.dialect in _MYSQL

    def quote(self, identifier: str) -> str:
        validate_identifier(identifier)
        return self.engine.dialect.identifier_preparer.quote_identifier(identifier)

    def _qualified(self, table: str, schema: str | None = None) -> str:
        if schema:
            return f"{self.quote(schema)}.{self.quote(table)}"
        return self.quote(table)

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        """Run one statement outside a transaction (CREATE DATABASE needs this)."""
        autocommit = self.engine.execution_options(isolation_level="AUTOCOMMIT")
        async with autocommit.connect() as conn:
            await conn.execute(text(sql), params or {})

    # ── Databases ─────────────────────────────────────────────

    def _sqlite_path(self, database: str) -> str:
        main = self.engine.url.database
        if not main or main == ":memory:":
            raise RuntimeError("Separate SQLite databases need a file-backed main database")
        return os.path.join(os.path.dirname(os.path.abspath(main)), f"{database}.db")

    async def database_exists(self, database: str) -> bool:
        validate_identifier(database)
        if self.dialect == "sqlite":
            return os.path.exists(self._sqlite_path(database))
        if self.dialect == "postgresql":
            sql = "SELECT 1 FROM pg_database WHERE datname = :name"
        else:
            sql = "SELECT 1 FROM information_schema.schemata WHERE schema_name = :name"
        async with self.engine.connect() as conn:
            result = await conn.execute(text(sql), {"name": database})
            return result.scalar_one_or_none() is not None

    async def create_database(self, database: str) -> None:
        if self.dialect == "sqlite":
            # The file appears on first connect of the per-database engine
            self._sqlite_path(validate_identifier(database))
            return
        if self.dialect in _MYSQL:
            await self.execute(
                f"CREATE DATABASE IF NOT EXISTS {self.quote(database)} "
                "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
            return
        if not await self.database_exists(database):
            await self.execute(f"CREATE DATABASE {self.quote(database)}")

    async def drop_database(self, database: str) -> None:
        child = self._databases.pop(database, None)
        if child is not None:
            await child.dispose()
        if self.dialect == "sqlite":
            path = self._sqlite_path(validate_identifier(database))
            if os.path.exists(path):
                os.remove(path)
            return
        await self.execute(f"DROP DATABASE IF EXISTS {self.quote(database)}")

    def for_database(self, database: str) -> TenantConnection:
        """Connection bound to another database on the same server."""
        validate_identifier(database)
        if database not in self._databases:
            if self.dialect == "sqlite":
                url = self.engine.url.set(database=self._sqlite_path(database))
            else:
                url = self.engine.url.set(database=database)
            child_engine = make_engine(url.render_as_string(hide_password=False))
            self._databases[database] = TenantConnection(child_engine, name=f"{self.name}:{database}")
        return self._databases[database]

    # ── Schemas ───────────────────────────────────────────────

    async def schema_exists(self, schema: str) -> bool:
        validate_identifier(schema)
        if not self.supports_schemas:
            return False
        async with self.engine.connect() as conn:
            names = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_schema_names())
        return schema in names

    async def create_schema(self, schema: str) -> None:
        if not self.supports_schemas:
            raise NotImplementedError(f"Schemas are not supported on {self.dialect}")
        await self.execute(f"CREATE SCHEMA IF NOT EXISTS {self.quote(schema)}")

    async def drop_schema(self, schema: str) -> None:
        if not self.supports_schemas:
            raise NotImplementedError(f"Schemas are not supported on {self.dialect}")
        cascade = " CASCADE" if self.dialect == "postgresql" else ""
        await self.execute(f"DROP SCHEMA IF EXISTS {self.quote(schema)}{cascade}")

    # ── Users ─────────────────────────────────────────────────

    async def create_user(self, username: str, password: str, database: str) -> None:
        """Create a login scoped to ``database`` with all privileges on it only."""
        if not self.supports_users:
            raise NotImplementedError(f"Database users are not supported on {self.dialect}")
        validate_identifier(username)
        if not password.isalnum():
            raise InvalidIdentifierError("Generated passwords must be alphanumeric")
        if self.dialect in _MYSQL:
            await self.execute(f"CREATE USER IF NOT EXISTS '{username}'@'%' IDENTIFIED BY '{password}'")
            await self.execute(f"GRANT ALL PRIVILEGES ON {self.quote(database)}.* TO '{username}'@'%'")
            await self.execute("FLUSH PRIVILEGES")
        else:
            await self.execute(f"CREATE USER {self.quote(username)} WITH PASSWORD '{password}'")
            await self.execute(
                f"GRANT ALL PRIVILEGES ON DATABASE {self.quote(database)} TO {self.quote(username)}"
            )

    async def drop_user(self, username: str) -> None:
        if not self.supports_users:
            return
        validate_identifier(username)
        if self.dialect in _MYSQL:
            await self.execute(f"DROP USER IF EXISTS '{username}'@'%'")
        else:
            await self.execute(f"DROP USER IF EXISTS {self.quote(username)}")

    # ── Tables ────────────────────────────────────────────────

    async def create_tables(self, tables: Sequence[Table]) -> None:
        if not tables:
            return
        for table in tables:
            validate_identifier(table.name)
        metadata = tables[0].metadata
        async with self.engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: metadata.create_all(sync_conn, tables=list(tables)))

    async def table_names(self, schema: str | None = None) -> list[str]:
        if schema:
            validate_identifier(schema)
        async with self.engine.connect() as conn:
            return await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names(schema=schema)
            )

    async def drop_table(self, table: str, schema: str | None = None) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(text(f"DROP TABLE IF EXISTS {self._qualified(table, schema)}"))

    async def insert_rows(self, table: Table, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        async with self.engine.begin() as conn:
            await conn.execute(table.insert(), rows)

    async def fetch_rows(self, table: str, schema: str | None = None) -> list[dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(f"SELECT * FROM {self._qualified(table, schema)}"))
            return [dict(row._mapping) for row in result]

    async def dispose(self) -> None:
        for child in self._databases.values():
            await child.dispose()
        self._databases.clear()
        if self._owns_engine:
            await self.engine.dispose()


class ConnectionManager:
    """Logical connection name -> TenantConnection, engines created lazily."""

    def __init__(
        self,
        default_engine: AsyncEngine,
        urls: dict[str, str] | None = None,
    ) -> None:
        self._urls = dict(urls or {})
        self._connections: dict[str, TenantConnection] = {
            # The default engine belongs to the caller (usually the app engine)
            "default": TenantConnection(default_engine, "default", owns_engine=False),
        }

    def get_connection(self, name: str | None = None) -> TenantConnection:
        name = name or "default"
        if name not in self._connections:
            if name not in self._urls:
                raise KeyError(f"Unknown database connection '{name}'")
            logger.info("Opening database connection '%s'", name)
            self._connections[name] = TenantConnection(make_engine(self._urls[name]), name)
        return self._connections[name]

    async def dispose(self) -> None:
        for conn in self._connections.values():
            await conn.dispose()
