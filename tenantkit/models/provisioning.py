"""Provisioning records, results and log entries."""

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from tenantkit.models.base import TimestampMixin


class Component(StrEnum):
    DATABASE = "database"
    STORAGE = "storage"
    CONFIG = "config"


class ComponentState(StrEnum):
    READY = "ready"
    NOT_PROVISIONED = "not_provisioned"
    PROVISIONING = "provisioning"


class ProvisioningPhase(StrEnum):
    """Forward path of provision(); rollback returns to PENDING."""

    PENDING = "pending"
    DATABASE_DONE = "database_done"
    STORAGE_DONE = "storage_done"
    CONFIG_DONE = "config_done"
    READY = "ready"


class DeprovisioningPhase(StrEnum):
    """Forward path of deprovision(). Not shared with rollback."""

    READY = "ready"
    DATABASE_REMOVED = "database_removed"
    STORAGE_REMOVED = "storage_removed"
    CONFIG_REMOVED = "config_removed"
    GONE = "gone"


class ProvisioningRecord(TimestampMixin, SQLModel, table=True):
    """Durable copy of what a sub-provisioner created for a tenant."""

    __tablename__ = "provisioning_records"
    __table_args__ = (UniqueConstraint("component", "tenant_id", name="uq_component_tenant"),)

    id: int | None = Field(default=None, primary_key=True)
    component: str = Field(max_length=32, nullable=False, index=True)
    tenant_id: str = Field(max_length=255, nullable=False, index=True)

    # Record payload stored as JSON text
    data: str = Field(default="{}", sa_column=Column(Text, nullable=False, server_default="{}"))


@dataclass
class StepResult:
    """Outcome of one sub-provisioner teardown."""

    component: str
    success: bool
    error: str | None = None

    def __bool__(self) -> bool:
        return self.success


@dataclass
class DeprovisionResult:
    tenant_id: str
    success: bool
    components: dict[str, bool] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    backup: bool | None = None

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProvisioningLogEntry:
    timestamp: float
    tenant_id: str
    message: str
    datetime: str
    phase: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
