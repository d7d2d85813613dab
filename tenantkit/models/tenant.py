"""Tenant descriptor — immutable description of a tenant to provision."""

import re
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from tenantkit.models.base import utcnow

TENANT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9\-_]+$")

# Ids that collide with backup folders next to tenant directories
RESERVED_TENANT_IDS = frozenset({"backups"})


class TenantStatus(StrEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"
    PENDING = "pending"


class DatabaseStrategy(StrEnum):
    SEPARATE = "separate"
    SCHEMA = "schema"
    PREFIX = "prefix"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class DomainConfig(_Frozen):
    primary: str | None = None
    aliases: list[str] = Field(default_factory=list)
    subdomain: str | None = None


class DatabaseConfig(_Frozen):
    # Left as a plain string so an unknown value reaches the provisioner,
    # which owns the strategy dispatch.
    strategy: str | None = None
    connection: str = "default"
    database: str | None = None
    schema_name: str | None = Field(default=None, alias="schema")
    prefix: str | None = None


class CacheConfig(_Frozen):
    prefix: str | None = None
    ttl_multiplier: float = 1.0
    driver: str = "default"


class ResourceQuotas(_Frozen):
    quotas: dict[str, Any] = Field(default_factory=dict)
    usage: dict[str, Any] = Field(default_factory=dict)


class TenantDescriptor(_Frozen):
    """Identity, isolation strategy, quotas and feature flags of one tenant.

    Raw tenant data may use either snake_case keys or the camelCase /
    short keys produced by the tenant-management API (``databaseConfig`` or
    ``database``, ``resourceQuotas`` or ``resources`` and so on).
    """

    id: str
    name: str = ""
    status: TenantStatus = TenantStatus.ACTIVE
    domain: DomainConfig = Field(default_factory=DomainConfig)
    created_at: datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("updated_at", "updatedAt"),
    )
    database_config: DatabaseConfig = Field(
        default_factory=DatabaseConfig,
        validation_alias=AliasChoices("database_config", "databaseConfig", "database"),
    )
    cache_config: CacheConfig = Field(
        default_factory=CacheConfig,
        validation_alias=AliasChoices("cache_config", "cacheConfig", "cache"),
    )
    resource_quotas: ResourceQuotas = Field(
        default_factory=ResourceQuotas,
        validation_alias=AliasChoices("resource_quotas", "resourceQuotas", "resources"),
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        if not value:
            raise ValueError("Tenant ID is required")
        if not TENANT_ID_PATTERN.match(value):
            raise ValueError(
                "Tenant ID must contain only alphanumeric characters, hyphens, and underscores"
            )
        if value in RESERVED_TENANT_IDS:
            raise ValueError(f"Tenant ID '{value}' is reserved")
        return value

    @field_validator("domain", mode="before")
    @classmethod
    def _coerce_domain(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            return {"primary": value}
        return value

    @field_validator("name", mode="after")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()

    # ── Derived values ────────────────────────────────────────

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def table_prefix(self) -> str:
        return self.database_config.prefix or f"{self.id}_"

    @property
    def cache_prefix(self) -> str:
        return self.cache_config.prefix or f"tenant:{self.id}:"

    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE

    def features(self) -> list[str]:
        """Features from metadata plus the defaults granted by status."""
        features = list(self.metadata.get("features") or [])
        if self.is_active():
            features.append("basic_access")
        return list(dict.fromkeys(features))

    def get_config(self, key: str, default: Any = None) -> Any:
        """Look up ``key`` in the tenant config, following dots into nested dicts."""
        if key in self.config:
            return self.config[key]
        node: Any = self.config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
