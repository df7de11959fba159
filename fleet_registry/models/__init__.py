# Fleet records
from fleet_registry.models.device import Device, DeviceStatus
from fleet_registry.models.ota_update import OTAUpdate, OTAUpdateStatus
from fleet_registry.models.telemetry import Telemetry, TelemetryData, TelemetryValue

__all__ = [
    "Device",
    "DeviceStatus",
    "OTAUpdate",
    "OTAUpdateStatus",
    "Telemetry",
    "TelemetryData",
    "TelemetryValue",
]
