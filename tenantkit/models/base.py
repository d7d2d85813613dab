"""Shared base fields and time helpers for all models."""

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_datetime(value: datetime) -> str:
    """Render timestamps the way provisioning artifacts store them."""
    return value.strftime("%Y-%m-%d %H:%M:%S")


class TimestampMixin(SQLModel):
    """Created / updated timestamps injected into every table."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)
