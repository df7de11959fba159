"""
OTA update model - a firmware update campaign targeting one device
"""

from datetime import datetime
from enum import StrEnum

from fleet_registry.models._base import Record


class OTAUpdateStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        """Check if this status closes the campaign (sets completedAt)."""
        return self in (OTAUpdateStatus.COMPLETED, OTAUpdateStatus.FAILED, OTAUpdateStatus.CANCELLED)


class OTAUpdate(Record):
    """Firmware update campaign. fromVersion is a snapshot taken at creation."""

    update_id: str
    device_id: str
    from_version: str
    to_version: str
    status: OTAUpdateStatus = OTAUpdateStatus.PENDING
    download_url: str
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def __repr__(self) -> str:
        return f"<OTAUpdate {self.update_id} {self.from_version}->{self.to_version} {self.status}>"
