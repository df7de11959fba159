"""
Telemetry model - sensor readings reported by devices
"""

from datetime import datetime
from typing import Union

from pydantic import Field

from fleet_registry.models._base import Record

TelemetryValue = Union[bool, int, float, str]
TelemetryData = dict[str, TelemetryValue]

# Well-known metric keys; any other key is stored as-is
WELL_KNOWN_METRICS = ("temperature", "humidity", "signal_strength", "battery_level")


class Telemetry(Record):
    """Timestamped snapshot of readings from one device."""

    telemetry_id: str
    device_id: str
    timestamp: datetime
    data: TelemetryData = Field(default_factory=dict)

    @property
    def temperature(self) -> float | None:
        return self._metric("temperature")

    @property
    def humidity(self) -> float | None:
        return self._metric("humidity")

    @property
    def signal_strength(self) -> float | None:
        return self._metric("signal_strength")

    @property
    def battery_level(self) -> float | None:
        return self._metric("battery_level")

    def _metric(self, key: str) -> float | None:
        value = self.data.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def __repr__(self) -> str:
        return f"<Telemetry {self.telemetry_id} device={self.device_id}>"
