"""Tenant provisioner — drives database, storage and config provisioning.

Flow of ``provision``:
  1. Build and validate the tenant descriptor (no resource touched yet)
  2. Database -> storage -> config, strictly in order, stopping at the first failure
  3. Check every component reports ``ready``
  4. On failure: roll back config, storage, database and re-raise the original error

``deprovision`` always visits all three components and reports per-component
results instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from pydantic import ValidationError

from tenantkit.core.errors import (
    ProvisioningError,
    TenantAlreadyProvisionedError,
    TenantkitError,
    TenantValidationError,
)
from tenantkit.models.base import format_datetime, utcnow
from tenantkit.models.provisioning import (
    Component,
    ComponentState,
    DeprovisioningPhase,
    DeprovisionResult,
    ProvisioningLogEntry,
    ProvisioningPhase,
)
from tenantkit.models.tenant import TenantDescriptor
from tenantkit.provisioning.base import BaseProvisioner
from tenantkit.provisioning.config import ConfigProvisioner
from tenantkit.provisioning.database import DatabaseProvisioner
from tenantkit.provisioning.storage import StorageProvisioner

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "name")


class TenantProvisioner:
    def __init__(
        self,
        database: DatabaseProvisioner,
        storage: StorageProvisioner,
        config: ConfigProvisioner,
        *,
        auto_rollback: bool = True,
        validation_enabled: bool = True,
    ) -> None:
        self.database = database
        self.storage = storage
        self.config = config
        self.auto_rollback = auto_rollback
        self.validation_enabled = validation_enabled

        self._log: list[ProvisioningLogEntry] = []
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._phases: dict[str, str] = {}

    @property
    def components(self) -> dict[Component, BaseProvisioner]:
        """Sub-provisioners in provisioning order."""
        return {
            Component.DATABASE: self.database,
            Component.STORAGE: self.storage,
            Component.CONFIG: self.config,
        }

    # ── Provision ─────────────────────────────────────────────

    async def provision(
        self,
        tenant_data: TenantDescriptor | dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> TenantDescriptor:
        """Provision every resource a tenant needs, or none of them."""
        tenant = self._build_tenant(tenant_data)
        self.database.validate_tenant(tenant)
        options = options or {}

        async with self._tenant_lock(tenant.id):
            if self.validation_enabled:
                await self._check_not_provisioned(tenant.id)

            self._set_phase(tenant.id, ProvisioningPhase.PENDING)
            self._record(tenant.id, "Starting tenant provisioning")

            steps: list[tuple[Component, ProvisioningPhase, Callable[[], Awaitable[bool]]]] = [
                (Component.DATABASE, ProvisioningPhase.DATABASE_DONE,
                 lambda: self.database.provision(tenant, options)),
                (Component.STORAGE, ProvisioningPhase.STORAGE_DONE,
                 lambda: self.storage.provision(tenant, options)),
                (Component.CONFIG, ProvisioningPhase.CONFIG_DONE,
                 lambda: self.config.provision(tenant, options)),
            ]

            try:
                for component, phase, step in steps:
                    self._record(tenant.id, f"Provisioning {component}")
                    await step()
                    self._set_phase(tenant.id, phase)
                    self._record(tenant.id, f"{component.capitalize()} provisioned")

                if self.validation_enabled:
                    await self._check_ready(tenant.id)
            except Exception as exc:
                self._record(tenant.id, f"Provisioning failed: {exc}")
                if self.auto_rollback:
                    await self._rollback(tenant.id)
                if isinstance(exc, TenantkitError):
                    raise
                raise ProvisioningError(tenant.id, str(exc)) from exc

            self._set_phase(tenant.id, ProvisioningPhase.READY)
            self._record(tenant.id, "Tenant provisioning completed")
            return tenant

    def _build_tenant(self, tenant_data: TenantDescriptor | dict[str, Any]) -> TenantDescriptor:
        if isinstance(tenant_data, TenantDescriptor):
            data = tenant_data.to_dict()
        else:
            data = dict(tenant_data)

        if self.validation_enabled:
            missing = [f for f in REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
            if missing:
                raise TenantValidationError(f"Required field '{missing[0]}' is missing")

        if isinstance(tenant_data, TenantDescriptor):
            return tenant_data
        try:
            return TenantDescriptor.model_validate(data)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'tenant'}: {err['msg']}"
                for err in exc.errors()
            )
            raise TenantValidationError(f"Invalid tenant data: {details}") from exc

    async def _check_not_provisioned(self, tenant_id: str) -> None:
        tracked = [str(c) for c, p in self.components.items() if await p.is_provisioned(tenant_id)]
        if tracked:
            raise TenantAlreadyProvisionedError(tenant_id, tracked)

    async def _check_ready(self, tenant_id: str) -> None:
        for component, provisioner in self.components.items():
            status = await provisioner.get_status(tenant_id)
            if status["status"] != ComponentState.READY:
                raise ProvisioningError(
                    tenant_id, f"Component '{component}' is not ready: {status.get('message', '')}"
                )

    async def _rollback(self, tenant_id: str) -> None:
        """Undo in reverse order. Failures here are logged and never replace the original error."""
        self._record(tenant_id, "Rolling back tenant provisioning")
        for component, provisioner in reversed(list(self.components.items())):
            try:
                if not await provisioner.rollback(tenant_id):
                    self._record(tenant_id, f"Rollback of {component} failed")
            except Exception:
                logger.exception("Rollback of %s failed for tenant %s", component, tenant_id)
                self._record(tenant_id, f"Rollback of {component} failed")
        self._set_phase(tenant_id, ProvisioningPhase.PENDING)
        self._record(tenant_id, "Rollback completed")

    # ── Deprovision ───────────────────────────────────────────

    async def deprovision(self, tenant_id: str, backup: bool | None = None) -> DeprovisionResult:
        """Remove a tenant's resources. Reports failures instead of raising.

        ``backup=None`` leaves the choice to each component's
        ``backup_on_deprovision`` setting.
        """
        phases = {
            Component.DATABASE: DeprovisioningPhase.DATABASE_REMOVED,
            Component.STORAGE: DeprovisioningPhase.STORAGE_REMOVED,
            Component.CONFIG: DeprovisioningPhase.CONFIG_REMOVED,
        }
        result = DeprovisionResult(tenant_id=tenant_id, success=True, backup=backup)

        async with self._tenant_lock(tenant_id):
            self._set_phase(tenant_id, DeprovisioningPhase.READY)
            self._record(tenant_id, "Starting tenant deprovisioning")

            for component, provisioner in self.components.items():
                step = await provisioner.teardown(tenant_id, backup=backup)
                result.components[str(component)] = step.success
                if step.success:
                    self._set_phase(tenant_id, phases[component])
                else:
                    result.success = False
                    result.errors[str(component)] = step.error or "unknown error"
                    self._record(tenant_id, f"Failed to deprovision {component}: {step.error}")

            if result.success:
                self._set_phase(tenant_id, DeprovisioningPhase.GONE)
                self._record(tenant_id, "Tenant deprovisioning completed")
            else:
                self._record(tenant_id, "Tenant deprovisioning finished with errors")
        return result

    # ── Status / log ──────────────────────────────────────────

    async def get_provisioning_status(self, tenant_id: str) -> dict[str, Any]:
        status: dict[str, Any] = {}
        for component, provisioner in self.components.items():
            status[str(component)] = await provisioner.get_status(tenant_id)

        component_states = {name: s["status"] for name, s in status.items()}
        all_ready = all(s == ComponentState.READY for s in component_states.values())
        status["overall"] = {
            "status": (ComponentState.READY if all_ready else ComponentState.PROVISIONING).value,
            "components": component_states,
        }
        return status

    def get_phase(self, tenant_id: str) -> str | None:
        return self._phases.get(tenant_id)

    def get_provisioning_log(self, tenant_id: str | None = None) -> list[ProvisioningLogEntry]:
        if tenant_id is None:
            return list(self._log)
        return [entry for entry in self._log if entry.tenant_id == tenant_id]

    def clear_log(self) -> TenantProvisioner:
        self._log.clear()
        return self

    # ── Internals ─────────────────────────────────────────────

    @asynccontextmanager
    async def _tenant_lock(self, tenant_id: str) -> AsyncIterator[None]:
        """Serialize work on one tenant; state for a removed tenant is dropped by the last holder."""
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        self._lock_users[tenant_id] = self._lock_users.get(tenant_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[tenant_id] -= 1
            if not self._lock_users[tenant_id]:
                del self._lock_users[tenant_id]
                if self._phases.get(tenant_id) in (None, DeprovisioningPhase.GONE):
                    self._locks.pop(tenant_id, None)
                    self._phases.pop(tenant_id, None)

    def _set_phase(self, tenant_id: str, phase: str) -> None:
        self._phases[tenant_id] = str(phase)

    def _record(self, tenant_id: str, message: str) -> None:
        phase = self._phases.get(tenant_id)
        entry = ProvisioningLogEntry(
            timestamp=time.time(),
            tenant_id=tenant_id,
            message=message,
            datetime=format_datetime(utcnow()),
            phase=phase,
        )
        self._log.append(entry)
        logger.info(
            "[tenant %s] %s", tenant_id, message,
            extra={"tenant_id": tenant_id, "phase": phase},
        )
