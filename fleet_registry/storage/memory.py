"""In-memory storage backing.

All three tables are plain dicts guarded by one re-entrant lock. Every
operation runs to completion without awaiting, so the "read device, apply
transition, write device" sequence can never interleave with another writer,
whether callers share one event loop or come from other threads (e.g. the
MQTT network thread).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any

from fleet_registry.exceptions import NotFoundError
from fleet_registry.models import Device, OTAUpdate, Telemetry
from fleet_registry.storage.base import (
    DEVICE_IMMUTABLE_FIELDS,
    OTA_UPDATE_IMMUTABLE_FIELDS,
    Storage,
    merge_changes,
)
from fleet_registry.storage.transitions import (
    DeviceEvent,
    OTAUpdateCreated,
    OTAUpdateStatusChanged,
    TelemetryRecorded,
    next_device_state,
)

logger = logging.getLogger(__name__)


class InMemoryStorage(Storage):
    """Dict-backed storage. Records are copied on the way in and out."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._devices: dict[str, Device] = {}
        self._telemetry: dict[str, Telemetry] = {}
        self._ota_updates: dict[str, OTAUpdate] = {}

    def _apply_to_device(self, event: DeviceEvent, required: bool = False) -> None:
        """Apply a derived transition. Caller must hold the lock."""
        device = self._devices.get(event.device_id)
        if device is None:
            if required:
                raise NotFoundError("device", event.device_id)
            logger.debug("Device %s no longer registered, skipping %s", event.device_id, type(event).__name__)
            return
        updated = next_device_state(device, event)
        self._devices[device.device_id] = updated
        if updated.status != device.status:
            logger.info("Device %s: %s -> %s", device.device_id, device.status, updated.status)

    # ==================== DEVICES ====================

    async def save_device(self, device: Device) -> Device:
        with self._lock:
            self._devices[device.device_id] = device.model_copy(deep=True)
        return device.model_copy(deep=True)

    async def get_device(self, device_id: str) -> Device | None:
        with self._lock:
            device = self._devices.get(device_id)
            return device.model_copy(deep=True) if device else None

    async def list_devices(self) -> list[Device]:
        with self._lock:
            return [device.model_copy(deep=True) for device in self._devices.values()]

    async def update_device(self, device_id: str, changes: Mapping[str, Any]) -> Device | None:
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            updated = merge_changes(device, changes, DEVICE_IMMUTABLE_FIELDS)
            self._devices[device_id] = updated
            return updated.model_copy(deep=True)

    async def delete_device(self, device_id: str) -> bool:
        with self._lock:
            return self._devices.pop(device_id, None) is not None

    # ==================== TELEMETRY ====================

    async def save_telemetry(self, telemetry: Telemetry, *, require_device: bool = False) -> Telemetry:
        with self._lock:
            self._apply_to_device(TelemetryRecorded.from_telemetry(telemetry), require_device)
            self._telemetry[telemetry.telemetry_id] = telemetry.model_copy(deep=True)
        return telemetry.model_copy(deep=True)

    async def get_telemetry(self, telemetry_id: str) -> Telemetry | None:
        with self._lock:
            telemetry = self._telemetry.get(telemetry_id)
            return telemetry.model_copy(deep=True) if telemetry else None

    async def list_telemetry(self, device_id: str) -> list[Telemetry]:
        with self._lock:
            records = [t.model_copy(deep=True) for t in self._telemetry.values() if t.device_id == device_id]
        return sorted(records, key=lambda t: t.timestamp, reverse=True)

    # ==================== OTA UPDATES ====================

    async def save_ota_update(self, update: OTAUpdate, *, require_device: bool = False) -> OTAUpdate:
        with self._lock:
            self._apply_to_device(OTAUpdateCreated.from_update(update), require_device)
            self._ota_updates[update.update_id] = update.model_copy(deep=True)
        return update.model_copy(deep=True)

    async def get_ota_update(self, update_id: str) -> OTAUpdate | None:
        with self._lock:
            update = self._ota_updates.get(update_id)
            return update.model_copy(deep=True) if update else None

    async def list_ota_updates(self, device_id: str) -> list[OTAUpdate]:
        with self._lock:
            records = [u.model_copy(deep=True) for u in self._ota_updates.values() if u.device_id == device_id]
        return sorted(records, key=lambda u: u.created_at, reverse=True)

    async def update_ota_update(self, update_id: str, changes: Mapping[str, Any]) -> OTAUpdate | None:
        with self._lock:
            update = self._ota_updates.get(update_id)
            if update is None:
                return None
            updated = merge_changes(update, changes, OTA_UPDATE_IMMUTABLE_FIELDS)
            self._ota_updates[update_id] = updated
            if "status" in changes:
                self._apply_to_device(OTAUpdateStatusChanged.from_update(updated))
            return updated.model_copy(deep=True)
