"""Config provisioner — per-tenant JSON configuration files and ``.env``."""

from __future__ import annotations

import logging
import os
import re
from typing import Any

from tenantkit.models.base import format_datetime
from tenantkit.models.provisioning import Component
from tenantkit.models.tenant import DatabaseStrategy, TenantDescriptor
from tenantkit.provisioning.base import BaseProvisioner
from tenantkit.provisioning.fs import backup_folder, copy_tree, list_files, remove_tree, write_json
from tenantkit.services.state_store import ProvisioningStateStore

logger = logging.getLogger(__name__)

_ENV_NEEDS_QUOTES = re.compile(r"[\s\"'#=]")


def format_env_value(value: Any) -> str:
    """Double-quote values a dotenv parser would otherwise split or truncate."""
    text = "" if value is None else str(value)
    if not _ENV_NEEDS_QUOTES.search(text):
        return text
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class ConfigProvisioner(BaseProvisioner):
    component = Component.CONFIG

    def __init__(
        self,
        store: ProvisioningStateStore | None = None,
        *,
        config_path: str = "config/tenants",
        create_env_file: bool = True,
        setup_cache_config: bool = True,
        setup_logging: bool = True,
        apply_feature_flags: bool = True,
        backup_on_deprovision: bool = True,
    ) -> None:
        super().__init__(store)
        self.config_path = config_path
        self.create_env_file = create_env_file
        self.setup_cache_config = setup_cache_config
        self.setup_logging = setup_logging
        self.apply_feature_flags = apply_feature_flags
        self.backup_on_deprovision = backup_on_deprovision

    def tenant_path(self, tenant_id: str) -> str:
        return os.path.join(self.config_path, tenant_id)

    async def _provision(self, tenant: TenantDescriptor, options: dict[str, Any]) -> dict[str, Any]:
        path = self.tenant_path(tenant.id)
        created = not os.path.exists(path)
        try:
            os.makedirs(path, mode=0o755, exist_ok=True)
            documents = {
                "tenant": self._tenant_config(tenant),
                "database": self._database_config(tenant),
                "mail": self._mail_config(tenant),
                "queue": self._queue_config(tenant),
                "storage": self._storage_config(tenant),
            }
            if self.setup_cache_config:
                documents["cache"] = self._cache_config(tenant)
            if self.setup_logging:
                documents["logging"] = self._logging_config(tenant)
            if self.apply_feature_flags:
                features = tenant.features()
                documents["features"] = {
                    "features": features,
                    "feature_flags": {name: True for name in features},
                }

            for name, document in documents.items():
                write_json(os.path.join(path, f"{name}.json"), document)
            if self.create_env_file:
                self._write_env(tenant, path)
        except Exception:
            if created:
                remove_tree(path)
            raise

        return {"path": path, "files": list_files(path)}

    # ── Documents ─────────────────────────────────────────────

    @staticmethod
    def _tenant_config(tenant: TenantDescriptor) -> dict[str, Any]:
        return {
            "tenant": {
                "id": tenant.id,
                "name": tenant.display_name,
                "status": tenant.status.value,
                "domain": tenant.domain.primary,
                "created_at": format_datetime(tenant.created_at),
            },
            "features": tenant.features(),
            "resources": tenant.resource_quotas.model_dump(),
            "metadata": tenant.metadata,
        }

    @staticmethod
    def _database_config(tenant: TenantDescriptor) -> dict[str, Any]:
        db = tenant.database_config
        return {
            "database": {
                "strategy": db.strategy or DatabaseStrategy.PREFIX.value,
                "connection": db.connection,
                "prefix": tenant.table_prefix,
                "schema": db.schema_name,
                "database": db.database,
            },
            "migrations": {
                "table": f"{tenant.table_prefix}migrations",
                "auto_run": True,
            },
        }

    @staticmethod
    def _mail_config(tenant: TenantDescriptor) -> dict[str, Any]:
        return {
            "mail": {
                "from": {
                    "address": f"noreply@{tenant.id}.app.com",
                    "name": tenant.display_name,
                },
                "subject_prefix": f"[{tenant.display_name}] ",
            },
        }

    @staticmethod
    def _queue_config(tenant: TenantDescriptor) -> dict[str, Any]:
        return {"queue": {"prefix": f"tenant.{tenant.id}", "connection": "default", "retry_after": 90}}

    @staticmethod
    def _storage_config(tenant: TenantDescriptor) -> dict[str, Any]:
        return {
            "storage": {
                "disk": "tenant",
                "path": f"tenants/{tenant.id}",
                "url": f"/storage/tenants/{tenant.id}",
            },
        }

    @staticmethod
    def _cache_config(tenant: TenantDescriptor) -> dict[str, Any]:
        cache = tenant.cache_config
        return {
            "cache": {
                "prefix": tenant.cache_prefix,
                "ttl_multiplier": cache.ttl_multiplier,
                "driver": cache.driver,
                "tags": [f"tenant:{tenant.id}"],
            },
        }

    @staticmethod
    def _logging_config(tenant: TenantDescriptor) -> dict[str, Any]:
        return {
            "logging": {
                "channel": f"tenant.{tenant.id}",
                "path": f"logs/tenants/{tenant.id}.log",
                "level": "info",
                "context": {"tenant_id": tenant.id, "tenant_name": tenant.display_name},
            },
        }

    @staticmethod
    def _write_env(tenant: TenantDescriptor, path: str) -> None:
        variables = {
            "TENANT_ID": tenant.id,
            "TENANT_NAME": tenant.display_name,
            "TENANT_STATUS": tenant.status.value,
            "DB_PREFIX": tenant.table_prefix,
            "CACHE_PREFIX": tenant.cache_prefix,
        }
        with open(os.path.join(path, ".env"), "w", encoding="utf-8") as f:
            for key, value in variables.items():
                f.write(f"{key}={format_env_value(value)}\n")

    # ── Teardown / status ─────────────────────────────────────

    async def _backup(self, tenant_id: str, record: dict[str, Any]) -> None:
        source = record["path"]
        if not os.path.isdir(source):
            return
        target = backup_folder(os.path.join(self.config_path, "backups"), tenant_id)
        copied = copy_tree(source, target)
        logger.info("Config backup for tenant %s written to %s (%d files)", tenant_id, target, copied)

    async def _remove(self, tenant_id: str, record: dict[str, Any]) -> None:
        remove_tree(record["path"])

    def _describe(self, record: dict[str, Any]) -> dict[str, Any]:
        return {"path": record["path"], "files": record.get("files", [])}

    def _empty_status(self) -> dict[str, Any]:
        return {"path": None}
