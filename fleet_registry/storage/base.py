"""Storage interface.

A storage backing owns every Device, Telemetry and OTAUpdate record. Besides
plain CRUD it applies the derived device transitions (see
:mod:`fleet_registry.storage.transitions`) as part of the write that
triggers them, so callers never observe a telemetry record or OTA status
change without the matching device state.

Lookups of unknown identifiers return ``None``; none of these operations
raise on well-typed input. The one exception is a save called with
``require_device=True``, which raises :class:`NotFoundError` and stores nothing
when the referenced device is missing at write time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any, TypeVar

from fleet_registry.models import Device, OTAUpdate, Telemetry
from fleet_registry.models._base import Record

R = TypeVar("R", bound=Record)

# Fields fixed at creation; a partial merge may not touch them
DEVICE_IMMUTABLE_FIELDS = frozenset({"device_id", "registered_at"})
OTA_UPDATE_IMMUTABLE_FIELDS = frozenset({"update_id", "device_id", "from_version", "created_at"})


def merge_changes(record: R, changes: Mapping[str, Any], immutable: Iterable[str] = ()) -> R:
    """Apply a partial update: keys in ``changes`` overwrite, the rest is kept.

    The merged record is re-validated, so e.g. a plain ``"FAILED"`` string
    becomes ``OTAUpdateStatus.FAILED``.
    """
    fields = type(record).model_fields
    unknown = set(changes) - set(fields)
    if unknown:
        raise ValueError(f"Unknown {type(record).__name__} fields: {', '.join(sorted(unknown))}")
    frozen = set(changes) & set(immutable)
    if frozen:
        raise ValueError(f"Cannot change {type(record).__name__} fields: {', '.join(sorted(frozen))}")
    merged = record.model_dump()
    merged.update(changes)
    return type(record).model_validate(merged)


class Storage(ABC):
    """Record store with derived device-state rules."""

    # ==================== DEVICES ====================

    @abstractmethod
    async def save_device(self, device: Device) -> Device:
        """Insert or replace a device."""

    @abstractmethod
    async def get_device(self, device_id: str) -> Device | None:
        ...

    @abstractmethod
    async def list_devices(self) -> list[Device]:
        ...

    @abstractmethod
    async def update_device(self, device_id: str, changes: Mapping[str, Any]) -> Device | None:
        """Partially update a device. Returns None if it does not exist."""

    @abstractmethod
    async def delete_device(self, device_id: str) -> bool:
        """Delete a device. Its telemetry and OTA history is kept."""

    # ==================== TELEMETRY ====================

    @abstractmethod
    async def save_telemetry(self, telemetry: Telemetry, *, require_device: bool = False) -> Telemetry:
        """Store telemetry and mark the device ACTIVE / last seen."""

    @abstractmethod
    async def get_telemetry(self, telemetry_id: str) -> Telemetry | None:
        ...

    @abstractmethod
    async def list_telemetry(self, device_id: str) -> list[Telemetry]:
        """Telemetry for a device, newest first."""

    # ==================== OTA UPDATES ====================

    @abstractmethod
    async def save_ota_update(self, update: OTAUpdate, *, require_device: bool = False) -> OTAUpdate:
        """Store a new OTA update and mark the device UPDATING."""

    @abstractmethod
    async def get_ota_update(self, update_id: str) -> OTAUpdate | None:
        ...

    @abstractmethod
    async def list_ota_updates(self, device_id: str) -> list[OTAUpdate]:
        """OTA updates for a device, newest first."""

    @abstractmethod
    async def update_ota_update(self, update_id: str, changes: Mapping[str, Any]) -> OTAUpdate | None:
        """Partially update an OTA update.

        When ``changes`` carries a status, the device transition for that
        status is applied in the same step.
        """

    async def close(self) -> None:
        """Release resources held by the backing."""
