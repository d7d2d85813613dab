"""V1 API router aggregation."""

from fastapi import APIRouter

from tenantkit.api.v1.provisioning import router as provisioning_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(provisioning_router)
