"""
Fleet Registry - Access Facade

The operation surface used by the REST API and the MQTT bridge. It checks
cross-entity preconditions (a telemetry record or OTA update must reference a
registered device), generates identifiers and timestamps, and hands every
write to the storage backing, which applies the derived device state.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from fleet_registry.exceptions import NotFoundError
from fleet_registry.models import (
    Device,
    DeviceStatus,
    OTAUpdate,
    OTAUpdateStatus,
    Telemetry,
    TelemetryData,
)
from fleet_registry.storage import Storage

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class FleetRegistry:
    """Devices, telemetry and OTA update campaigns over a storage backing."""

    def __init__(
        self,
        storage: Storage,
        *,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_id,
    ):
        self.storage = storage
        self._clock = clock
        self._new_id = id_factory

    async def _require_device(self, device_id: str) -> Device:
        device = await self.storage.get_device(device_id)
        if device is None:
            raise NotFoundError("device", device_id)
        return device

    # ==================== DEVICES ====================

    async def register_device(self, name: str, type: str, firmware_version: str) -> Device:
        """Register a new device. It starts ACTIVE on the given firmware."""
        device = Device(
            device_id=self._new_id(),
            name=name,
            type=type,
            firmware_version=firmware_version,
            registered_at=self._clock(),
            status=DeviceStatus.ACTIVE,
        )
        saved = await self.storage.save_device(device)
        logger.info("Registered device %s (%s, firmware %s)", saved.device_id, saved.name, saved.firmware_version)
        return saved

    async def get_device(self, device_id: str) -> Device | None:
        return await self.storage.get_device(device_id)

    async def list_devices(self) -> list[Device]:
        return await self.storage.list_devices()

    async def delete_device(self, device_id: str) -> bool:
        """Delete a device. Telemetry and OTA history stay retrievable by ID."""
        deleted = await self.storage.delete_device(device_id)
        if deleted:
            logger.info("Deleted device %s", device_id)
        return deleted

    # ==================== TELEMETRY ====================

    async def submit_telemetry(self, device_id: str, data: TelemetryData) -> Telemetry:
        """
        Record a telemetry snapshot. The device becomes ACTIVE and its
        last_seen moves to the telemetry timestamp.

        Raises:
            NotFoundError: device is not registered (nothing is stored)
        """
        await self._require_device(device_id)

        telemetry = Telemetry(
            telemetry_id=self._new_id(),
            device_id=device_id,
            timestamp=self._clock(),
            data=data,
        )
        # Re-checked in the write itself: the device may be deleted in between
        saved = await self.storage.save_telemetry(telemetry, require_device=True)
        logger.debug("Saved telemetry %s for %s: %s", saved.telemetry_id, device_id, saved.data)
        return saved

    async def get_telemetry(self, telemetry_id: str) -> Telemetry | None:
        return await self.storage.get_telemetry(telemetry_id)

    async def list_telemetry_for_device(self, device_id: str) -> list[Telemetry]:
        """Telemetry for a device, newest first."""
        return await self.storage.list_telemetry(device_id)

    # ==================== OTA UPDATES ====================

    async def create_ota_update(self, device_id: str, to_version: str, download_url: str) -> OTAUpdate:
        """
        Start an OTA campaign. The update is PENDING, remembers the device's
        current firmware as from_version, and the device becomes UPDATING.

        Raises:
            NotFoundError: device is not registered (nothing is stored)
        """
        device = await self._require_device(device_id)

        update = OTAUpdate(
            update_id=self._new_id(),
            device_id=device_id,
            from_version=device.firmware_version,
            to_version=to_version,
            status=OTAUpdateStatus.PENDING,
            download_url=download_url,
            created_at=self._clock(),
        )
        saved = await self.storage.save_ota_update(update, require_device=True)
        logger.info(
            "Created OTA update %s for %s: %s -> %s",
            saved.update_id, device_id, saved.from_version, saved.to_version,
        )
        return saved

    async def get_ota_update(self, update_id: str) -> OTAUpdate | None:
        return await self.storage.get_ota_update(update_id)

    async def list_ota_updates_for_device(self, device_id: str) -> list[OTAUpdate]:
        """OTA updates for a device, newest first."""
        return await self.storage.list_ota_updates(device_id)

    async def update_ota_update_status(self, update_id: str, status: OTAUpdateStatus) -> OTAUpdate | None:
        """
        Move an OTA update to a new status.

        IN_PROGRESS stamps started_at; COMPLETED, FAILED and CANCELLED stamp
        completed_at. The device follows: COMPLETED -> ACTIVE on to_version,
        FAILED -> ERROR, anything else leaves it as it is.

        Returns:
            The updated record, or None if the update does not exist
        """
        status = OTAUpdateStatus(status)
        changes: dict = {"status": status}

        if status == OTAUpdateStatus.IN_PROGRESS:
            changes["started_at"] = self._clock()
        elif status.is_terminal:
            changes["completed_at"] = self._clock()

        updated = await self.storage.update_ota_update(update_id, changes)
        if updated is None:
            logger.debug("OTA update %s not found", update_id)
            return None

        logger.info("OTA update %s for %s is now %s", update_id, updated.device_id, status)
        return updated
