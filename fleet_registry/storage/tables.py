"""
ORM tables for the SQL storage backing
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from fleet_registry.core.database import Base
from fleet_registry.models import Device, OTAUpdate, Telemetry


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DeviceRow(Base):
    """Registered device."""

    __tablename__ = "devices"

    device_id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    type: Mapped[str] = mapped_column(String)
    firmware_version: Mapped[str] = mapped_column(String)

    # Derived state (telemetry / OTA events)
    status: Mapped[str] = mapped_column(String(20))
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    @classmethod
    def from_record(cls, device: Device) -> "DeviceRow":
        return cls(**{**device.model_dump(), "status": device.status.value})

    def to_record(self) -> Device:
        return Device(
            device_id=self.device_id,
            name=self.name,
            type=self.type,
            firmware_version=self.firmware_version,
            status=self.status,
            last_seen=_aware(self.last_seen),
            registered_at=_aware(self.registered_at),
        )

    def apply(self, device: Device) -> None:
        """Copy mutable fields from a record onto this row."""
        self.name = device.name
        self.type = device.type
        self.firmware_version = device.firmware_version
        self.status = device.status.value
        self.last_seen = device.last_seen

    def __repr__(self) -> str:
        return f"<DeviceRow {self.device_id} ({self.name})>"


class TelemetryRow(Base):
    """Sensor readings from a device. No foreign key: history outlives the device."""

    __tablename__ = "telemetry"

    telemetry_id: Mapped[str] = mapped_column(String, primary_key=True)
    device_id: Mapped[str] = mapped_column(String, index=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    @classmethod
    def from_record(cls, telemetry: Telemetry) -> "TelemetryRow":
        return cls(**telemetry.model_dump())

    def to_record(self) -> Telemetry:
        return Telemetry(
            telemetry_id=self.telemetry_id,
            device_id=self.device_id,
            data=self.data or {},
            timestamp=_aware(self.timestamp),
        )

    def __repr__(self) -> str:
        return f"<TelemetryRow {self.telemetry_id} device={self.device_id}>"


class OTAUpdateRow(Base):
    """Firmware update campaign."""

    __tablename__ = "ota_updates"

    update_id: Mapped[str] = mapped_column(String, primary_key=True)
    device_id: Mapped[str] = mapped_column(String, index=True)
    from_version: Mapped[str] = mapped_column(String)
    to_version: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String(20))
    download_url: Mapped[str] = mapped_column(String)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @classmethod
    def from_record(cls, update: OTAUpdate) -> "OTAUpdateRow":
        return cls(**{**update.model_dump(), "status": update.status.value})

    def to_record(self) -> OTAUpdate:
        return OTAUpdate(
            update_id=self.update_id,
            device_id=self.device_id,
            from_version=self.from_version,
            to_version=self.to_version,
            status=self.status,
            download_url=self.download_url,
            created_at=_aware(self.created_at),
            started_at=_aware(self.started_at),
            completed_at=_aware(self.completed_at),
        )

    def apply(self, update: OTAUpdate) -> None:
        self.to_version = update.to_version
        self.status = update.status.value
        self.download_url = update.download_url
        self.started_at = update.started_at
        self.completed_at = update.completed_at

    def __repr__(self) -> str:
        return f"<OTAUpdateRow {self.update_id} {self.status}>"
