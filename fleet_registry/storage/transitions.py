"""Derived device state.

A device's ``status`` (and, on a completed update, its ``firmware_version``)
is never written directly by callers. It is recomputed here from the event
that a telemetry or OTA update write produced. This module holds no storage
logic: both storage backings call :func:`next_device_state` inside their own
read-modify-write section.
"""

from __future__ import annotations

from datetime import datetime
from typing import Union

from pydantic import BaseModel, ConfigDict

from fleet_registry.models import Device, DeviceStatus, OTAUpdate, OTAUpdateStatus, Telemetry


class TelemetryRecorded(BaseModel):
    """A telemetry record was saved for the device."""

    model_config = ConfigDict(frozen=True)

    device_id: str
    timestamp: datetime

    @classmethod
    def from_telemetry(cls, telemetry: Telemetry) -> TelemetryRecorded:
        return cls(device_id=telemetry.device_id, timestamp=telemetry.timestamp)


class OTAUpdateCreated(BaseModel):
    """A new OTA update campaign targets the device."""

    model_config = ConfigDict(frozen=True)

    device_id: str
    update_id: str

    @classmethod
    def from_update(cls, update: OTAUpdate) -> OTAUpdateCreated:
        return cls(device_id=update.device_id, update_id=update.update_id)


class OTAUpdateStatusChanged(BaseModel):
    """An OTA update campaign moved to ``status``."""

    model_config = ConfigDict(frozen=True)

    device_id: str
    update_id: str
    status: OTAUpdateStatus
    to_version: str

    @classmethod
    def from_update(cls, update: OTAUpdate) -> OTAUpdateStatusChanged:
        return cls(
            device_id=update.device_id,
            update_id=update.update_id,
            status=update.status,
            to_version=update.to_version,
        )


DeviceEvent = Union[TelemetryRecorded, OTAUpdateCreated, OTAUpdateStatusChanged]


def next_device_state(device: Device, event: DeviceEvent) -> Device:
    """Return the device as it is after ``event``.

    Truth table:

    ==========================  ==============================================
    event                       effect
    ==========================  ==============================================
    TelemetryRecorded           last_seen = timestamp, status = ACTIVE
    OTAUpdateCreated            status = UPDATING
    status -> COMPLETED         status = ACTIVE, firmware_version = to_version
    status -> FAILED            status = ERROR
    status -> CANCELLED         unchanged (device may stay UPDATING)
    status -> IN_PROGRESS       unchanged
    status -> PENDING           unchanged
    ==========================  ==============================================

    The input device is never modified; a copy is returned even when
    nothing changes.
    """
    if event.device_id != device.device_id:
        raise ValueError(f"Event for device {event.device_id} applied to {device.device_id}")

    changes: dict = {}

    if isinstance(event, TelemetryRecorded):
        changes = {"last_seen": event.timestamp, "status": DeviceStatus.ACTIVE}
    elif isinstance(event, OTAUpdateCreated):
        changes = {"status": DeviceStatus.UPDATING}
    elif isinstance(event, OTAUpdateStatusChanged):
        if event.status == OTAUpdateStatus.COMPLETED:
            changes = {"status": DeviceStatus.ACTIVE, "firmware_version": event.to_version}
        elif event.status == OTAUpdateStatus.FAILED:
            changes = {"status": DeviceStatus.ERROR}
    else:
        raise TypeError(f"Unsupported device event: {type(event).__name__}")

    return device.model_copy(update=changes, deep=True)
