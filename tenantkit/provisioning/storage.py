"""Storage provisioner — per-tenant directory tree with quota metadata."""

from __future__ import annotations

import logging
import os
from typing import Any

from tenantkit.models.base import format_datetime, utcnow
from tenantkit.models.provisioning import Component
from tenantkit.models.tenant import TenantDescriptor
from tenantkit.provisioning.base import BaseProvisioner
from tenantkit.provisioning.fs import (
    backup_folder,
    copy_tree,
    directory_usage,
    remove_tree,
    write_json,
)
from tenantkit.services.quota import format_bytes, parse_quota_to_bytes
from tenantkit.services.state_store import ProvisioningStateStore

logger = logging.getLogger(__name__)

SKELETON_DIRECTORIES = ("uploads", "cache", "temp", "logs", "backups", "exports", "imports")

# Everything else in the skeleton gets 0o755
PRIVATE_DIRECTORIES = {"temp": 0o700, "backups": 0o700}


class StorageProvisioner(BaseProvisioner):
    component = Component.STORAGE

    def __init__(
        self,
        store: ProvisioningStateStore | None = None,
        *,
        base_path: str = "storage",
        tenant_dir: str = "tenants",
        default_quota: str = "1GB",
        create_subdirs: bool = True,
        set_permissions: bool = True,
        backup_on_deprovision: bool = True,
    ) -> None:
        super().__init__(store)
        self.base_path = base_path
        self.tenant_dir = tenant_dir
        self.default_quota = default_quota
        self.create_subdirs = create_subdirs
        self.set_permissions = set_permissions
        self.backup_on_deprovision = backup_on_deprovision

    def tenant_path(self, tenant_id: str) -> str:
        return os.path.join(self.base_path, self.tenant_dir, tenant_id)

    def tenant_quota(self, tenant: TenantDescriptor) -> str:
        return tenant.resource_quotas.quotas.get("storage") or self.default_quota

    # ── Provision ─────────────────────────────────────────────

    async def _provision(self, tenant: TenantDescriptor, options: dict[str, Any]) -> dict[str, Any]:
        root = self.tenant_path(tenant.id)
        created_root = not os.path.exists(root)
        try:
            directories = self._create_directories(tenant, root)
            if self.set_permissions:
                self._apply_permissions(root)

            quota = self.tenant_quota(tenant)
            now = format_datetime(utcnow())
            write_json(os.path.join(root, ".storage_config.json"), {
                "tenant_id": tenant.id,
                "tenant_name": tenant.display_name,
                "quota": quota,
                "created_at": now,
                "directories": directories,
            })
            write_json(os.path.join(root, ".quota"), {
                "quota": quota,
                "quota_bytes": parse_quota_to_bytes(quota),
                "monitoring_enabled": True,
                "last_check": now,
            })
        except Exception:
            if created_root:
                remove_tree(root)
            raise

        return {
            "path": root,
            "quota": quota,
            "quota_bytes": parse_quota_to_bytes(quota),
            "directories": directories,
        }

    def _create_directories(self, tenant: TenantDescriptor, root: str) -> list[str]:
        names = list(SKELETON_DIRECTORIES)
        if self.create_subdirs:
            for custom in tenant.get_config("storage.directories", []) or []:
                names.append(self._check_custom_directory(root, str(custom)))

        os.makedirs(root, mode=0o755, exist_ok=True)
        for name in names:
            os.makedirs(os.path.join(root, name), mode=0o755, exist_ok=True)
        return list(dict.fromkeys(names))

    @staticmethod
    def _check_custom_directory(root: str, name: str) -> str:
        if not name or os.path.isabs(name):
            raise ValueError(f"Storage directory must be a relative path: {name!r}")
        root_abs = os.path.abspath(root)
        target = os.path.abspath(os.path.join(root_abs, name))
        if os.path.commonpath([root_abs, target]) != root_abs or target == root_abs:
            raise ValueError(f"Storage directory escapes the tenant root: {name!r}")
        return os.path.relpath(target, root_abs)

    @staticmethod
    def _apply_permissions(root: str) -> None:
        os.chmod(root, 0o755)
        for name in SKELETON_DIRECTORIES:
            path = os.path.join(root, name)
            if os.path.isdir(path):
                os.chmod(path, PRIVATE_DIRECTORIES.get(name, 0o755))

    # ── Teardown ──────────────────────────────────────────────

    async def _remove(self, tenant_id: str, record: dict[str, Any]) -> None:
        remove_tree(record["path"])

    async def _backup(self, tenant_id: str, record: dict[str, Any]) -> None:
        source = record["path"]
        if not os.path.isdir(source):
            return
        target = backup_folder(os.path.join(self.base_path, "backups"), tenant_id)
        copied = copy_tree(source, os.path.join(target, "files"))
        write_json(os.path.join(target, "backup_info.json"), {
            "tenant_id": tenant_id,
            "original_path": source,
            "files": copied,
            "backup_created": format_datetime(utcnow()),
        })
        logger.info("Storage backup for tenant %s written to %s (%d files)", tenant_id, target, copied)

    # ── Status ────────────────────────────────────────────────

    def _describe(self, record: dict[str, Any]) -> dict[str, Any]:
        usage = directory_usage(record["path"])
        return {
            "path": record["path"],
            "quota": record.get("quota"),
            "quota_bytes": record.get("quota_bytes"),
            "usage": {**usage, "used_formatted": format_bytes(usage["used"])},
            "directories": record.get("directories", []),
        }

    def _empty_status(self) -> dict[str, Any]:
        return {"path": None}

    parse_quota_to_bytes = staticmethod(parse_quota_to_bytes)
