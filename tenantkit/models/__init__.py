"""Import all models so SQLModel.metadata picks them up."""

from tenantkit.models.provisioning import (
    Component,
    ComponentState,
    DeprovisioningPhase,
    DeprovisionResult,
    ProvisioningLogEntry,
    ProvisioningPhase,
    ProvisioningRecord,
    StepResult,
)
from tenantkit.models.tenant import (
    CacheConfig,
    DatabaseConfig,
    DatabaseStrategy,
    DomainConfig,
    ResourceQuotas,
    TenantDescriptor,
    TenantStatus,
)

__all__ = [
    "CacheConfig",
    "Component",
    "ComponentState",
    "DatabaseConfig",
    "DatabaseStrategy",
    "DeprovisionResult",
    "DeprovisioningPhase",
    "DomainConfig",
    "ProvisioningLogEntry",
    "ProvisioningPhase",
    "ProvisioningRecord",
    "ResourceQuotas",
    "StepResult",
    "TenantDescriptor",
    "TenantStatus",
]
