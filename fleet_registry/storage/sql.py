"""SQL storage backing.

Each write and the device transition it triggers run in one transaction. The
device row is read ``SELECT ... FOR UPDATE`` so concurrent writers on the same
device serialize on PostgreSQL (SQLite serializes writers on its own).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from fleet_registry.core.database import create_schema, create_session_maker
from fleet_registry.exceptions import NotFoundError
from fleet_registry.models import Device, OTAUpdate, Telemetry
from fleet_registry.storage.base import (
    DEVICE_IMMUTABLE_FIELDS,
    OTA_UPDATE_IMMUTABLE_FIELDS,
    Storage,
    merge_changes,
)
from fleet_registry.storage.tables import DeviceRow, OTAUpdateRow, TelemetryRow
from fleet_registry.storage.transitions import (
    DeviceEvent,
    OTAUpdateCreated,
    OTAUpdateStatusChanged,
    TelemetryRecorded,
    next_device_state,
)

logger = logging.getLogger(__name__)


class SqlStorage(Storage):
    """Storage on an async SQLAlchemy engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_maker = create_session_maker(engine)

    async def create_schema(self) -> None:
        await create_schema(self.engine)

    async def close(self) -> None:
        await self.engine.dispose()

    async def _locked_device(self, session: AsyncSession, device_id: str) -> DeviceRow | None:
        result = await session.execute(
            select(DeviceRow).where(DeviceRow.device_id == device_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _apply_to_device(self, session: AsyncSession, event: DeviceEvent, required: bool = False) -> None:
        """Apply a derived transition inside the caller's transaction."""
        row = await self._locked_device(session, event.device_id)
        if row is None:
            if required:
                raise NotFoundError("device", event.device_id)
            logger.debug("Device %s no longer registered, skipping %s", event.device_id, type(event).__name__)
            return
        previous = row.status
        row.apply(next_device_state(row.to_record(), event))
        if row.status != previous:
            logger.info("Device %s: %s -> %s", row.device_id, previous, row.status)

    # ==================== DEVICES ====================

    async def save_device(self, device: Device) -> Device:
        async with self._session_maker() as session:
            async with session.begin():
                await session.merge(DeviceRow.from_record(device))
        return device.model_copy(deep=True)

    async def get_device(self, device_id: str) -> Device | None:
        async with self._session_maker() as session:
            row = await session.get(DeviceRow, device_id)
            return row.to_record() if row else None

    async def list_devices(self) -> list[Device]:
        async with self._session_maker() as session:
            result = await session.execute(select(DeviceRow).order_by(DeviceRow.registered_at))
            return [row.to_record() for row in result.scalars().all()]

    async def update_device(self, device_id: str, changes: Mapping[str, Any]) -> Device | None:
        async with self._session_maker() as session:
            async with session.begin():
                row = await self._locked_device(session, device_id)
                if row is None:
                    return None
                updated = merge_changes(row.to_record(), changes, DEVICE_IMMUTABLE_FIELDS)
                row.apply(updated)
        return updated

    async def delete_device(self, device_id: str) -> bool:
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(delete(DeviceRow).where(DeviceRow.device_id == device_id))
        return result.rowcount > 0

    # ==================== TELEMETRY ====================

    async def save_telemetry(self, telemetry: Telemetry, *, require_device: bool = False) -> Telemetry:
        async with self._session_maker() as session:
            async with session.begin():
                await self._apply_to_device(session, TelemetryRecorded.from_telemetry(telemetry), require_device)
                session.add(TelemetryRow.from_record(telemetry))
        return telemetry.model_copy(deep=True)

    async def get_telemetry(self, telemetry_id: str) -> Telemetry | None:
        async with self._session_maker() as session:
            row = await session.get(TelemetryRow, telemetry_id)
            return row.to_record() if row else None

    async def list_telemetry(self, device_id: str) -> list[Telemetry]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(TelemetryRow)
                .where(TelemetryRow.device_id == device_id)
                .order_by(TelemetryRow.timestamp.desc())
            )
            return [row.to_record() for row in result.scalars().all()]

    # ==================== OTA UPDATES ====================

    async def save_ota_update(self, update: OTAUpdate, *, require_device: bool = False) -> OTAUpdate:
        async with self._session_maker() as session:
            async with session.begin():
                await self._apply_to_device(session, OTAUpdateCreated.from_update(update), require_device)
                session.add(OTAUpdateRow.from_record(update))
        return update.model_copy(deep=True)

    async def get_ota_update(self, update_id: str) -> OTAUpdate | None:
        async with self._session_maker() as session:
            row = await session.get(OTAUpdateRow, update_id)
            return row.to_record() if row else None

    async def list_ota_updates(self, device_id: str) -> list[OTAUpdate]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(OTAUpdateRow)
                .where(OTAUpdateRow.device_id == device_id)
                .order_by(OTAUpdateRow.created_at.desc())
            )
            return [row.to_record() for row in result.scalars().all()]

    async def update_ota_update(self, update_id: str, changes: Mapping[str, Any]) -> OTAUpdate | None:
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(OTAUpdateRow).where(OTAUpdateRow.update_id == update_id).with_for_update()
                )
                row = result.scalar_one_or_none()
                if row is None:
                    return None
                updated = merge_changes(row.to_record(), changes, OTA_UPDATE_IMMUTABLE_FIELDS)
                row.apply(updated)
                if "status" in changes:
                    await self._apply_to_device(session, OTAUpdateStatusChanged.from_update(updated))
        return updated
