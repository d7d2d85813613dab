"""Provisioning state stores — where sub-provisioners track what they created.

Two backends share one async interface keyed by (component, tenant_id):

* ``InMemoryStateStore`` — process-local, lock guarded. Default, and what the
  tests use.
* ``SQLStateStore`` — rows in ``provisioning_records`` so tracking survives a
  restart alongside the resources it describes.
"""

from __future__ import annotations

import copy
import json
import threading
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from tenantkit.models.base import utcnow
from tenantkit.models.provisioning import ProvisioningRecord


class ProvisioningStateStore(Protocol):
    async def get(self, component: str, tenant_id: str) -> dict[str, Any] | None: ...

    async def put(self, component: str, tenant_id: str, record: dict[str, Any]) -> None: ...

    async def delete(self, component: str, tenant_id: str) -> None: ...

    async def list(self, component: str) -> dict[str, dict[str, Any]]: ...


class InMemoryStateStore:
    """component -> tenant_id -> record."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, dict[str, dict[str, Any]]] = {}

    async def get(self, component: str, tenant_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._records.get(component, {}).get(tenant_id)
            return copy.deepcopy(record) if record is not None else None

    async def put(self, component: str, tenant_id: str, record: dict[str, Any]) -> None:
        with self._lock:
            self._records.setdefault(component, {})[tenant_id] = copy.deepcopy(record)

    async def delete(self, component: str, tenant_id: str) -> None:
        with self._lock:
            self._records.get(component, {}).pop(tenant_id, None)

    async def list(self, component: str) -> dict[str, dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._records.get(component, {}))


class SQLStateStore:
    """Records persisted through SQLModel, one row per component + tenant."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    async def get(self, component: str, tenant_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            row = await self._get_row(session, component, tenant_id)
            return json.loads(row.data) if row else None

    async def put(self, component: str, tenant_id: str, record: dict[str, Any]) -> None:
        payload = json.dumps(record, default=str)
        async with self._session_factory() as session:
            row = await self._get_row(session, component, tenant_id)
            if row is None:
                row = ProvisioningRecord(component=component, tenant_id=tenant_id, data=payload)
            else:
                row.data = payload
                row.updated_at = utcnow()
            session.add(row)
            await session.commit()

    async def delete(self, component: str, tenant_id: str) -> None:
        async with self._session_factory() as session:
            row = await self._get_row(session, component, tenant_id)
            if row is not None:
                await session.delete(row)
                await session.commit()

    async def list(self, component: str) -> dict[str, dict[str, Any]]:
        async with self._session_factory() as session:
            stmt = select(ProvisioningRecord).where(ProvisioningRecord.component == component)
            result = await session.execute(stmt)
            return {row.tenant_id: json.loads(row.data) for row in result.scalars().all()}

    @staticmethod
    async def _get_row(
        session: AsyncSession, component: str, tenant_id: str
    ) -> ProvisioningRecord | None:
        stmt = select(ProvisioningRecord).where(
            ProvisioningRecord.component == component,
            ProvisioningRecord.tenant_id == tenant_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
