"""Tenant provisioning: database, storage and config resources for one tenant."""

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker

from tenantkit.core.config import Settings
from tenantkit.core.connections import ConnectionManager
from tenantkit.provisioning.config import ConfigProvisioner
from tenantkit.provisioning.database import DatabaseProvisioner
from tenantkit.provisioning.orchestrator import TenantProvisioner
from tenantkit.provisioning.storage import StorageProvisioner
from tenantkit.services.state_store import (
    InMemoryStateStore,
    ProvisioningStateStore,
    SQLStateStore,
)

__all__ = [
    "ConfigProvisioner",
    "DatabaseProvisioner",
    "StorageProvisioner",
    "TenantProvisioner",
    "build_provisioner",
]


def build_state_store(settings: Settings, session_factory: sessionmaker | None = None) -> ProvisioningStateStore:
    if settings.state_store == "memory":
        return InMemoryStateStore()
    if settings.state_store == "database":
        if session_factory is None:
            from tenantkit.core.database import async_session_factory as session_factory
        return SQLStateStore(session_factory)
    raise ValueError(f"Unknown state store '{settings.state_store}' (expected 'memory' or 'database')")


def build_provisioner(
    settings: Settings,
    engine: AsyncEngine | None = None,
    session_factory: sessionmaker | None = None,
) -> TenantProvisioner:
    """Wire the three sub-provisioners and the orchestrator from settings."""
    if engine is None:
        from tenantkit.core.database import engine

    store = build_state_store(settings, session_factory)
    connections = ConnectionManager(engine, settings.tenant_database_urls)

    database = DatabaseProvisioner(
        connections,
        store,
        default_strategy=settings.default_strategy,
        create_user=settings.create_database_user,
        run_migrations=settings.run_migrations,
        seed_data=settings.seed_data,
        backup_path=settings.database_backup_path,
    )
    storage = StorageProvisioner(
        store,
        base_path=settings.storage_base_path,
        tenant_dir=settings.storage_tenant_dir,
        default_quota=settings.storage_default_quota,
        create_subdirs=settings.storage_create_subdirs,
        set_permissions=settings.storage_set_permissions,
        backup_on_deprovision=settings.storage_backup_on_deprovision,
    )
    config = ConfigProvisioner(
        store,
        config_path=settings.config_path,
        create_env_file=settings.config_create_env_file,
        setup_cache_config=settings.config_setup_cache,
        setup_logging=settings.config_setup_logging,
        apply_feature_flags=settings.config_apply_feature_flags,
        backup_on_deprovision=settings.config_backup_on_deprovision,
    )
    return TenantProvisioner(
        database,
        storage,
        config,
        auto_rollback=settings.auto_rollback,
        validation_enabled=settings.validation_enabled,
    )
