"""Shared lifecycle for the database, storage and config provisioners.

Subclasses implement four hooks:

* ``_provision(tenant, options)`` creates resources and returns the record to
  track. It cleans up after itself when it fails part-way.
* ``_remove(tenant_id, record)`` destroys what the record describes.
* ``_backup(tenant_id, record)`` copies data aside before removal.
* ``_describe(record)`` adds component details to a ``ready`` status.

Provisioning failures raise ``ProvisioningError`` naming the tenant;
teardown failures are logged and reported as a ``StepResult``.
"""

from __future__ import annotations

import logging
from typing import Any

from tenantkit.core.errors import InvalidIdentifierError, ProvisioningError, UnknownStrategyError
from tenantkit.models.base import format_datetime, utcnow
from tenantkit.models.provisioning import Component, ComponentState, StepResult
from tenantkit.models.tenant import TenantDescriptor
from tenantkit.services.state_store import InMemoryStateStore, ProvisioningStateStore

logger = logging.getLogger(__name__)


class BaseProvisioner:
    component: Component
    backup_on_deprovision: bool = False

    def __init__(self, store: ProvisioningStateStore | None = None) -> None:
        self.store: ProvisioningStateStore = store or InMemoryStateStore()

    # ── Public API ────────────────────────────────────────────

    async def provision(self, tenant: TenantDescriptor, options: dict[str, Any] | None = None) -> bool:
        """Create this component's resources for ``tenant`` and track them."""
        try:
            record = await self._provision(tenant, options or {})
        except (ProvisioningError, UnknownStrategyError, InvalidIdentifierError):
            raise
        except Exception as exc:
            logger.exception(
                "%s provisioning failed for tenant %s", self.component, tenant.id,
                extra={"tenant_id": tenant.id, "component": str(self.component)},
            )
            raise ProvisioningError(tenant.id, str(exc), component=self.component) from exc

        record.setdefault("provisioned_at", format_datetime(utcnow()))
        try:
            await self.store.put(self.component, tenant.id, record)
        except Exception as exc:
            logger.exception("Could not record %s for tenant %s", self.component, tenant.id)
            await self._discard(tenant.id, record)
            raise ProvisioningError(
                tenant.id, f"could not record state: {exc}", component=self.component
            ) from exc

        logger.info(
            "Provisioned %s for tenant %s", self.component, tenant.id,
            extra={"tenant_id": tenant.id, "component": str(self.component)},
        )
        return True

    async def teardown(self, tenant_id: str, *, backup: bool | None = None) -> StepResult:
        """Remove tracked resources. Never raises for operational failures."""
        if backup is None:
            backup = self.backup_on_deprovision
        try:
            record = await self.store.get(self.component, tenant_id)
            if record is None:
                return StepResult(self.component, True)
            if backup:
                await self._backup(tenant_id, record)
            await self._remove(tenant_id, record)
            await self.store.delete(self.component, tenant_id)
        except Exception as exc:
            logger.exception(
                "%s deprovisioning failed for tenant %s", self.component, tenant_id,
                extra={"tenant_id": tenant_id, "component": str(self.component)},
            )
            return StepResult(self.component, False, str(exc) or exc.__class__.__name__)

        logger.info("Deprovisioned %s for tenant %s", self.component, tenant_id)
        return StepResult(self.component, True)

    async def deprovision(self, tenant_id: str, backup: bool | None = None) -> bool:
        return (await self.teardown(tenant_id, backup=backup)).success

    async def rollback(self, tenant_id: str) -> bool:
        """Undo a provisioning attempt. Same removal path as deprovision, no backup."""
        return await self.deprovision(tenant_id, backup=False)

    async def get_status(self, tenant_id: str) -> dict[str, Any]:
        record = await self.store.get(self.component, tenant_id)
        label = self.component.capitalize()
        if record is None:
            return {
                "status": ComponentState.NOT_PROVISIONED.value,
                "message": f"{label} not provisioned",
                **self._empty_status(),
            }
        return {
            "status": ComponentState.READY.value,
            "message": f"{label} provisioned successfully",
            **self._describe(record),
            "provisioned_at": record.get("provisioned_at"),
        }

    async def is_provisioned(self, tenant_id: str) -> bool:
        return await self.store.get(self.component, tenant_id) is not None

    # ── Hooks ─────────────────────────────────────────────────

    async def _provision(self, tenant: TenantDescriptor, options: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    async def _remove(self, tenant_id: str, record: dict[str, Any]) -> None:
        raise NotImplementedError

    async def _backup(self, tenant_id: str, record: dict[str, Any]) -> None:
        return None

    def _describe(self, record: dict[str, Any]) -> dict[str, Any]:
        return {}

    def _empty_status(self) -> dict[str, Any]:
        return {}

    async def _discard(self, tenant_id: str, record: dict[str, Any]) -> None:
        """Best-effort removal of resources that were created but not recorded."""
        try:
            await self._remove(tenant_id, record)
        except Exception:
            logger.exception("Cleanup of untracked %s for tenant %s failed", self.component, tenant_id)
