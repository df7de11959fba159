"""
Fleet Registry - GraphQL API

Queries and mutations mirror the REST endpoints and go through the same
FleetRegistry. Mounted by the REST app under /graphql.

Query:    device, devices, telemetry, deviceTelemetry, otaUpdate, deviceOTAUpdates
Mutation: registerDevice, deleteDevice, submitTelemetry, createOTAUpdate,
          updateOTAUpdateStatus
"""

import logging
from datetime import datetime

import strawberry
from fastapi import Request
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool
from strawberry.fastapi import GraphQLRouter
from strawberry.scalars import JSON
from strawberry.types import Info

from fleet_registry.api.schemas import DeviceRegistrationIn, OTAUpdateIn, TelemetryIn
from fleet_registry.exceptions import InvalidInputError, NotFoundError
from fleet_registry.models import Device, DeviceStatus, OTAUpdate, OTAUpdateStatus, Telemetry
from fleet_registry.services.registry import FleetRegistry

logger = logging.getLogger(__name__)

strawberry.enum(DeviceStatus)
strawberry.enum(OTAUpdateStatus)


# ==================== TYPES ====================

@strawberry.type(name="Device")
class DeviceType:
    device_id: strawberry.ID
    name: str
    type: str
    firmware_version: str
    registered_at: datetime
    last_seen: datetime | None
    status: DeviceStatus

    @classmethod
    def from_record(cls, device: Device) -> "DeviceType":
        return cls(**device.model_dump())


@strawberry.type(name="Telemetry")
class TelemetryType:
    telemetry_id: strawberry.ID
    device_id: str
    timestamp: datetime
    data: JSON

    @classmethod
    def from_record(cls, telemetry: Telemetry) -> "TelemetryType":
        return cls(**telemetry.model_dump())


@strawberry.type(name="OTAUpdate")
class OTAUpdateType:
    update_id: strawberry.ID
    device_id: str
    from_version: str
    to_version: str
    status: OTAUpdateStatus
    download_url: str
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None

    @classmethod
    def from_record(cls, update: OTAUpdate) -> "OTAUpdateType":
        return cls(**update.model_dump())


@strawberry.input
class DeviceRegistrationInput:
    name: str
    type: str
    firmware_version: str


@strawberry.input
class TelemetryInput:
    device_id: str
    data: JSON


@strawberry.input(name="OTAUpdateInput")
class OTAUpdateInput:
    device_id: str
    to_version: str
    download_url: str


def _registry(info: Info) -> FleetRegistry:
    return info.context["registry"]


def _validated(model: type[BaseModel], **values) -> BaseModel:
    """Apply the REST request rules (non-empty strings, scalar telemetry values)."""
    try:
        return model(**values)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidInputError(f"Invalid value for {field}: {first.get('msg')}") from e


# ==================== QUERIES ====================

@strawberry.type
class Query:

    @strawberry.field
    async def device(self, info: Info, device_id: strawberry.ID) -> DeviceType | None:
        device = await _registry(info).get_device(device_id)
        return DeviceType.from_record(device) if device else None

    @strawberry.field
    async def devices(self, info: Info) -> list[DeviceType]:
        return [DeviceType.from_record(device) for device in await _registry(info).list_devices()]

    @strawberry.field
    async def telemetry(self, info: Info, telemetry_id: strawberry.ID) -> TelemetryType | None:
        telemetry = await _registry(info).get_telemetry(telemetry_id)
        return TelemetryType.from_record(telemetry) if telemetry else None

    @strawberry.field(description="Telemetry for a device, newest first")
    async def device_telemetry(self, info: Info, device_id: strawberry.ID) -> list[TelemetryType]:
        records = await _registry(info).list_telemetry_for_device(device_id)
        return [TelemetryType.from_record(record) for record in records]

    @strawberry.field
    async def ota_update(self, info: Info, update_id: strawberry.ID) -> OTAUpdateType | None:
        update = await _registry(info).get_ota_update(update_id)
        return OTAUpdateType.from_record(update) if update else None

    @strawberry.field(name="deviceOTAUpdates", description="OTA updates for a device, newest first")
    async def device_ota_updates(self, info: Info, device_id: strawberry.ID) -> list[OTAUpdateType]:
        updates = await _registry(info).list_ota_updates_for_device(device_id)
        return [OTAUpdateType.from_record(update) for update in updates]


# ==================== MUTATIONS ====================

@strawberry.type
class Mutation:

    @strawberry.mutation
    async def register_device(self, info: Info, input: DeviceRegistrationInput) -> DeviceType:
        body = _validated(
            DeviceRegistrationIn,
            name=input.name,
            type=input.type,
            firmware_version=input.firmware_version,
        )
        device = await _registry(info).register_device(body.name, body.type, body.firmware_version)
        return DeviceType.from_record(device)

    @strawberry.mutation
    async def delete_device(self, info: Info, device_id: strawberry.ID) -> bool:
        return await _registry(info).delete_device(device_id)

    @strawberry.mutation
    async def submit_telemetry(self, info: Info, input: TelemetryInput) -> TelemetryType:
        body = _validated(TelemetryIn, device_id=input.device_id, data=input.data)
        telemetry = await _registry(info).submit_telemetry(body.device_id, body.data)
        return TelemetryType.from_record(telemetry)

    @strawberry.mutation(name="createOTAUpdate")
    async def create_ota_update(self, info: Info, input: OTAUpdateInput) -> OTAUpdateType:
        body = _validated(
            OTAUpdateIn,
            device_id=input.device_id,
            to_version=input.to_version,
            download_url=input.download_url,
        )
        update = await _registry(info).create_ota_update(body.device_id, body.to_version, body.download_url)

        notifier = info.context.get("notifier")
        if notifier is not None:
            if not await run_in_threadpool(notifier, update):
                logger.warning("Device %s was not notified about OTA update %s", update.device_id, update.update_id)

        return OTAUpdateType.from_record(update)

    @strawberry.mutation(name="updateOTAUpdateStatus")
    async def update_ota_update_status(
        self,
        info: Info,
        update_id: strawberry.ID,
        status: OTAUpdateStatus,
    ) -> OTAUpdateType:
        update = await _registry(info).update_ota_update_status(update_id, status)
        if update is None:
            raise NotFoundError("OTA update", update_id)
        return OTAUpdateType.from_record(update)


schema = strawberry.Schema(query=Query, mutation=Mutation)


async def get_context(request: Request) -> dict:
    return {
        "registry": request.app.state.registry,
        "notifier": request.app.state.notifier,
    }


def create_graphql_router() -> GraphQLRouter:
    """Router serving the schema against the app's registry."""
    return GraphQLRouter(schema, context_getter=get_context)
