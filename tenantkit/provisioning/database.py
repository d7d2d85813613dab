"""Database provisioner — per-tenant isolation as a database, a schema or a table prefix."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
)

from tenantkit.core.connections import ConnectionManager, TenantConnection, validate_identifier
from tenantkit.core.errors import InvalidIdentifierError, ProvisioningError, UnknownStrategyError
from tenantkit.core.security import encrypt_value, generate_db_password
from tenantkit.models.base import format_datetime, utcnow
from tenantkit.models.provisioning import Component
from tenantkit.models.tenant import DatabaseStrategy, TenantDescriptor
from tenantkit.provisioning.base import BaseProvisioner
from tenantkit.provisioning.fs import backup_folder, write_json
from tenantkit.services.state_store import ProvisioningStateStore

logger = logging.getLogger(__name__)

_ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


def baseline_tables(prefix: str = "", schema: str | None = None) -> list[Table]:
    """Minimal tenant schema: ``{prefix}users`` and ``{prefix}settings``."""
    metadata = MetaData(schema=schema)
    users = Table(
        f"{prefix}users",
        metadata,
        Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
        Column("name", String(255), nullable=False),
        Column("email", String(255), nullable=False, unique=True),
        Column("created_at", DateTime, nullable=False, server_default=func.now()),
        Column("updated_at", DateTime, nullable=False, server_default=func.now(), onupdate=func.now()),
    )
    settings = Table(
        f"{prefix}settings",
        metadata,
        Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
        Column("key_name", String(255), nullable=False, unique=True),
        Column("value", Text),
        Column("created_at", DateTime, nullable=False, server_default=func.now()),
        Column("updated_at", DateTime, nullable=False, server_default=func.now(), onupdate=func.now()),
    )
    return [users, settings]


class DatabaseProvisioner(BaseProvisioner):
    """Creates and destroys the database side of a tenant.

    The tenant's ``database_config.strategy`` (or ``default_strategy``) picks
    exactly one code path:

    * ``separate`` — a dedicated database (``{id}_db`` unless named), with an
      optional scoped user.
    * ``schema`` — a schema (``{id}`` unless named) in the shared database.
    * ``prefix`` — ``{prefix}users`` / ``{prefix}settings`` in the shared
      database. Prefixes may not overlap, since teardown drops every table
      whose name starts with the prefix.

    Provisioning is serialized per connection, so the availability checks,
    the table creation and the recorded state form one step.
    """

    component = Component.DATABASE

    def __init__(
        self,
        connections: ConnectionManager,
        store: ProvisioningStateStore | None = None,
        *,
        default_strategy: str = DatabaseStrategy.PREFIX,
        create_user: bool = False,
        run_migrations: bool = True,
        seed_data: bool = False,
        backup_path: str = "storage/backups",
        backup_on_deprovision: bool = False,
    ) -> None:
        super().__init__(store)
        self.connections = connections
        self.backup_on_deprovision = backup_on_deprovision
        self.default_strategy = default_strategy
        self.create_user = create_user
        self.run_migrations = run_migrations
        self.seed_data = seed_data
        self.backup_path = backup_path
        self._connection_locks: dict[str, asyncio.Lock] = {}

    def resolve_strategy(self, tenant: TenantDescriptor) -> DatabaseStrategy:
        raw = tenant.database_config.strategy or self.default_strategy
        try:
            return DatabaseStrategy(raw)
        except ValueError:
            raise UnknownStrategyError(
                f"Unknown database strategy '{raw}' for tenant {tenant.id}"
            ) from None

    def resource_name(self, tenant: TenantDescriptor) -> str:
        """Database, schema or table prefix the tenant will own."""
        strategy = self.resolve_strategy(tenant)
        if strategy == DatabaseStrategy.SEPARATE:
            name = tenant.database_config.database or f"{tenant.id}_db"
        elif strategy == DatabaseStrategy.SCHEMA:
            name = tenant.database_config.schema_name or tenant.id
        else:
            name = tenant.table_prefix
        try:
            return validate_identifier(name)
        except InvalidIdentifierError as exc:
            raise InvalidIdentifierError(f"{exc} for tenant {tenant.id}") from None

    def validate_tenant(self, tenant: TenantDescriptor) -> None:
        """Reject an unknown strategy or unusable identifier before anything is created."""
        self.resource_name(tenant)

    # ── Provision ─────────────────────────────────────────────

    async def provision(self, tenant: TenantDescriptor, options: dict[str, Any] | None = None) -> bool:
        name = tenant.database_config.connection or "default"
        lock = self._connection_locks.setdefault(name, asyncio.Lock())
        async with lock:
            return await super().provision(tenant, options)

    async def _provision(self, tenant: TenantDescriptor, options: dict[str, Any]) -> dict[str, Any]:
        strategy = self.resolve_strategy(tenant)
        conn = self.connections.get_connection(tenant.database_config.connection)
        flags = {
            "run_migrations": options.get("run_migrations", self.run_migrations),
            "seed_data": options.get("seed_data", self.seed_data),
            "create_user": options.get("create_user", self.create_user),
        }

        if strategy == DatabaseStrategy.SEPARATE:
            return await self._provision_separate(tenant, conn, flags)
        if strategy == DatabaseStrategy.SCHEMA:
            return await self._provision_schema(tenant, conn, flags)
        return await self._provision_prefix(tenant, conn, flags)

    async def _provision_separate(
        self, tenant: TenantDescriptor, conn: TenantConnection, flags: dict[str, bool]
    ) -> dict[str, Any]:
        name = self.resource_name(tenant)
        if await conn.database_exists(name):
            raise self._error(tenant, f"database '{name}' already exists")

        record: dict[str, Any] = {"strategy": DatabaseStrategy.SEPARATE.value, "database": name, "connection": conn.name}
        await conn.create_database(name)
        try:
            if flags["create_user"]:
                await self._create_user(tenant, conn, name, record)
            target = conn.for_database(name)
            await self._migrate_and_seed(tenant, target, flags)
        except Exception:
            await self._discard(tenant.id, record)
            raise
        return record

    async def _provision_schema(
        self, tenant: TenantDescriptor, conn: TenantConnection, flags: dict[str, bool]
    ) -> dict[str, Any]:
        if not conn.supports_schemas:
            raise self._error(tenant, f"schema strategy is not supported on {conn.dialect}")
        name = self.resource_name(tenant)
        if await conn.schema_exists(name):
            raise self._error(tenant, f"schema '{name}' already exists")

        record: dict[str, Any] = {"strategy": DatabaseStrategy.SCHEMA.value, "schema": name, "connection": conn.name}
        await conn.create_schema(name)
        try:
            await self._migrate_and_seed(tenant, conn, flags, schema=name)
        except Exception:
            await self._discard(tenant.id, record)
            raise
        return record

    async def _provision_prefix(
        self, tenant: TenantDescriptor, conn: TenantConnection, flags: dict[str, bool]
    ) -> dict[str, Any]:
        prefix = self.resource_name(tenant)
        await self._check_prefix_available(tenant, conn, prefix)

        record: dict[str, Any] = {"strategy": DatabaseStrategy.PREFIX.value, "prefix": prefix, "connection": conn.name}
        try:
            await self._migrate_and_seed(tenant, conn, flags, prefix=prefix)
        except Exception:
            await self._discard(tenant.id, record)
            raise
        return record

    async def _check_prefix_available(
        self, tenant: TenantDescriptor, conn: TenantConnection, prefix: str
    ) -> None:
        """Prefixes on one connection must be disjoint: neither may start the other."""
        for other_id, other in (await self.store.list(self.component)).items():
            if other_id == tenant.id or other.get("strategy") != DatabaseStrategy.PREFIX:
                continue
            if other.get("connection", "default") != conn.name:
                continue
            other_prefix = other.get("prefix", "")
            if prefix.startswith(other_prefix) or other_prefix.startswith(prefix):
                raise self._error(
                    tenant, f"table prefix '{prefix}' overlaps prefix '{other_prefix}' of tenant {other_id}"
                )

        existing = [name for name in await conn.table_names() if name.startswith(prefix)]
        if existing:
            raise self._error(
                tenant, f"tables with prefix '{prefix}' already exist: {', '.join(sorted(existing))}"
            )

    async def _create_user(
        self, tenant: TenantDescriptor, conn: TenantConnection, database: str, record: dict[str, Any]
    ) -> None:
        if not conn.supports_users:
            logger.warning(
                "Skipping database user for tenant %s: not supported on %s", tenant.id, conn.dialect
            )
            return
        username = validate_identifier(f"{tenant.id}_user")
        password = generate_db_password()
        await conn.create_user(username, password, database)
        record["user"] = username
        record["password"] = encrypt_value(password)

    async def _migrate_and_seed(
        self,
        tenant: TenantDescriptor,
        conn: TenantConnection,
        flags: dict[str, bool],
        prefix: str = "",
        schema: str | None = None,
    ) -> None:
        if not flags["run_migrations"]:
            return
        users, settings = baseline_tables(prefix, schema)
        await conn.create_tables([users, settings])
        if flags["seed_data"]:
            await conn.insert_rows(settings, [
                {"key_name": "tenant_id", "value": tenant.id},
                {"key_name": "tenant_name", "value": tenant.display_name},
                {"key_name": "tenant_status", "value": tenant.status.value},
            ])

    # ── Teardown ──────────────────────────────────────────────

    async def _remove(self, tenant_id: str, record: dict[str, Any]) -> None:
        conn = self.connections.get_connection(record.get("connection"))
        strategy = record.get("strategy")

        if strategy == DatabaseStrategy.SEPARATE:
            await conn.drop_database(record["database"])
            if record.get("user"):
                await conn.drop_user(record["user"])
        elif strategy == DatabaseStrategy.SCHEMA:
            await conn.drop_schema(record["schema"])
        elif strategy == DatabaseStrategy.PREFIX:
            prefix = record["prefix"]
            # Literal startswith, not LIKE: "_" must not act as a wildcard
            for table in await conn.table_names():
                if table.startswith(prefix):
                    await conn.drop_table(table)
        else:
            raise UnknownStrategyError(f"Unknown database strategy '{strategy}' for tenant {tenant_id}")

    async def _backup(self, tenant_id: str, record: dict[str, Any]) -> None:
        """Export every row of the tenant's tables as JSON, one file per table."""
        conn = self.connections.get_connection(record.get("connection"))
        strategy = record.get("strategy")
        schema = None
        if strategy == DatabaseStrategy.SEPARATE:
            conn = conn.for_database(record["database"])
            tables = await conn.table_names()
        elif strategy == DatabaseStrategy.SCHEMA:
            schema = record["schema"]
            tables = await conn.table_names(schema=schema)
        else:
            tables = [t for t in await conn.table_names() if t.startswith(record["prefix"])]

        folder = os.path.join(backup_folder(self.backup_path, tenant_id), "database")
        os.makedirs(folder, exist_ok=True)
        for table in tables:
            rows = await conn.fetch_rows(table, schema=schema)
            write_json(os.path.join(folder, f"{table}.json"), rows)
        write_json(os.path.join(folder, "backup_info.json"), {
            "tenant_id": tenant_id,
            "strategy": strategy,
            "tables": tables,
            "backup_created": format_datetime(utcnow()),
        })
        logger.info("Database backup for tenant %s written to %s", tenant_id, folder)

    # ── Status ────────────────────────────────────────────────

    def _describe(self, record: dict[str, Any]) -> dict[str, Any]:
        described = {
            "strategy": record.get("strategy"),
            "connection": record.get("connection", "default"),
        }
        for key in ("database", "schema", "prefix", "user"):
            if key in record:
                described[key] = record[key]
        return described

    def _empty_status(self) -> dict[str, Any]:
        return {"strategy": None}

    def _error(self, tenant: TenantDescriptor, message: str) -> ProvisioningError:
        return ProvisioningError(tenant.id, message, component=self.component)
