"""Application settings loaded from environment / .env file."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./tenantkit.db"
    # Extra logical connections a tenant may name in its database config,
    # e.g. {"reporting": "postgresql+asyncpg://..."}
    tenant_database_urls: dict[str, str] = {}

    # Where provisioning records live: "memory" or "database"
    state_store: str = "memory"

    # ── Database provisioning ─────────────────────────────
    default_strategy: str = "prefix"
    create_database_user: bool = False
    run_migrations: bool = True
    seed_data: bool = False
    database_backup_path: str = "storage/backups"

    # ── Storage provisioning ──────────────────────────────
    storage_base_path: str = "storage"
    storage_tenant_dir: str = "tenants"
    storage_default_quota: str = "1GB"
    storage_create_subdirs: bool = True
    storage_set_permissions: bool = True
    storage_backup_on_deprovision: bool = True

    # ── Config provisioning ───────────────────────────────
    config_path: str = "config/tenants"
    config_create_env_file: bool = True
    config_setup_cache: bool = True
    config_setup_logging: bool = True
    config_apply_feature_flags: bool = True
    config_backup_on_deprovision: bool = True

    # ── Orchestrator ──────────────────────────────────────
    auto_rollback: bool = True
    validation_enabled: bool = True

    # ── Security ──────────────────────────────────────────
    # Fernet key for generated database credentials kept in provisioning records
    encryption_key: str = ""
    admin_token: str = ""  # MUST be set to enable the provisioning API

    # ── Logging ───────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
