"""
Device model - a registered physical or virtual unit
"""

from datetime import datetime
from enum import StrEnum

from fleet_registry.models._base import Record


class DeviceStatus(StrEnum):
    """Operational status. Derived from telemetry and OTA events, never set directly."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    UPDATING = "UPDATING"
    ERROR = "ERROR"


class Device(Record):
    """Registered device tracked for firmware version and status."""

    device_id: str
    name: str
    type: str
    firmware_version: str
    registered_at: datetime
    last_seen: datetime | None = None
    status: DeviceStatus = DeviceStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Device {self.device_id} ({self.name}) {self.status}>"
