"""
Request bodies for the REST API (camelCase on the wire)
"""

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, StringConstraints
from pydantic.alias_generators import to_camel

from fleet_registry.models import OTAUpdateStatus, TelemetryValue

NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]


class RequestBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeviceRegistrationIn(RequestBody):
    name: NonEmptyStr
    type: NonEmptyStr
    firmware_version: NonEmptyStr


class TelemetryIn(RequestBody):
    device_id: NonEmptyStr
    data: dict[str, TelemetryValue]


class OTAUpdateIn(RequestBody):
    device_id: NonEmptyStr
    to_version: NonEmptyStr
    download_url: NonEmptyStr


class OTAUpdateStatusIn(RequestBody):
    status: OTAUpdateStatus


def envelope(data: Any = None, error: str | None = None) -> dict:
    """Uniform response body: {success, data?, error?}."""
    if error is not None:
        return {"success": False, "error": error}
    return {"success": True, "data": data}
