"""Operator endpoints: provision, inspect and remove tenants."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tenantkit.api.deps import Provisioner, require_admin
from tenantkit.core.errors import (
    InvalidIdentifierError,
    ProvisioningError,
    TenantAlreadyProvisionedError,
    TenantValidationError,
    UnknownStrategyError,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/provisioning",
    tags=["provisioning"],
    dependencies=[Depends(require_admin)],
)


# ── Schemas ───────────────────────────────────────────────────

class ProvisionRequest(BaseModel):
    """Raw tenant data plus per-call overrides (``run_migrations``, ``seed_data``, ``create_user``)."""
    tenant: dict[str, Any]
    options: dict[str, Any] = Field(default_factory=dict)


class ProvisionResponse(BaseModel):
    tenant: dict[str, Any]
    status: dict[str, Any]


class LogEntryRead(BaseModel):
    timestamp: float
    tenant_id: str
    message: str
    datetime: str
    phase: str | None = None


class DeprovisionRead(BaseModel):
    tenant_id: str
    success: bool
    components: dict[str, bool]
    errors: dict[str, str]
    backup: bool | None


# ── Routes ────────────────────────────────────────────────────

@router.post(
    "/tenants",
    response_model=ProvisionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Provision a tenant",
)
async def provision_tenant(body: ProvisionRequest, provisioner: Provisioner) -> ProvisionResponse:
    """Create database, storage and config resources for a tenant.

    Either every component ends up ``ready`` or, with auto-rollback, none of
    them keeps any resource.
    """
    try:
        tenant = await provisioner.provision(body.tenant, body.options)
    except TenantAlreadyProvisionedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (TenantValidationError, UnknownStrategyError, InvalidIdentifierError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ProvisioningError as exc:
        logger.error("Provisioning request for tenant %s failed: %s", exc.tenant_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc

    return ProvisionResponse(
        tenant=tenant.to_dict(),
        status=await provisioner.get_provisioning_status(tenant.id),
    )


@router.get(
    "/tenants/{tenant_id}/status",
    summary="Per-component provisioning status",
)
async def get_tenant_status(tenant_id: str, provisioner: Provisioner) -> dict[str, Any]:
    return await provisioner.get_provisioning_status(tenant_id)


@router.delete(
    "/tenants/{tenant_id}",
    response_model=DeprovisionRead,
    summary="Deprovision a tenant",
)
async def deprovision_tenant(
    tenant_id: str,
    provisioner: Provisioner,
    backup: bool | None = Query(
        default=None, description="Back up data before removal; omitted uses each component's default"
    ),
) -> Any:
    """Remove every component. Partial failures return 500 with per-component errors."""
    result = await provisioner.deprovision(tenant_id, backup=backup)
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=result.to_dict(),
        )
    return result.to_dict()


@router.get(
    "/log",
    response_model=list[LogEntryRead],
    summary="Provisioning log",
)
async def get_log(
    provisioner: Provisioner,
    tenant_id: str | None = Query(default=None),
) -> list[LogEntryRead]:
    return [LogEntryRead(**entry.to_dict()) for entry in provisioner.get_provisioning_log(tenant_id)]


@router.delete(
    "/log",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Clear the provisioning log",
)
async def clear_log(provisioner: Provisioner) -> Response:
    provisioner.clear_log()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
