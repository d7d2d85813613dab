"""FastAPI application entrypoint."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tenantkit.api.v1 import v1_router
from tenantkit.core.config import get_settings
from tenantkit.core.database import async_session_factory, engine, init_db
from tenantkit.core.logging import configure_logging
from tenantkit.provisioning import build_provisioner


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    # Startup: ensure tables exist (use Alembic in production)
    await init_db()
    app.state.provisioner = build_provisioner(settings, engine, async_session_factory)
    yield
    await app.state.provisioner.database.connections.dispose()


app = FastAPI(
    title="tenantkit",
    version="0.1.0",
    description="Multi-tenant provisioning: database, storage and configuration per tenant",
    lifespan=lifespan,
)

# ── API routes ───────────────────────────────────────────────
app.include_router(v1_router)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    return {"status": "ok"}
