"""
Fleet Registry - REST API Server

Provides endpoints for:
- Device registration, lookup and removal
- Telemetry submission and history
- OTA update campaigns and their status lifecycle
- Health check
- GraphQL queries and mutations under /graphql

REST responses use the envelope {success, data?, error?}.
"""

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from fleet_registry.api.schemas import (
    DeviceRegistrationIn,
    OTAUpdateIn,
    OTAUpdateStatusIn,
    TelemetryIn,
    envelope,
)
from fleet_registry.core.config import Settings, get_settings
from fleet_registry.exceptions import InvalidInputError, NotFoundError
from fleet_registry.graphql.schema import create_graphql_router
from fleet_registry.models import OTAUpdate
from fleet_registry.services.registry import FleetRegistry
from fleet_registry.storage import build_storage

logger = logging.getLogger(__name__)

OTANotifier = Callable[[OTAUpdate], bool]


def ok(data, status_code: int = 200) -> JSONResponse:
    return JSONResponse(envelope(data=data), status_code=status_code)


def fail(error: str, status_code: int) -> JSONResponse:
    return JSONResponse(envelope(error=error), status_code=status_code)


def get_registry(request: Request) -> FleetRegistry:
    """Dependency for getting the registry bound to this app."""
    return request.app.state.registry


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    for error in errors:
        if tuple(error.get("loc", ())) == ("body",) and error.get("type") == "missing":
            return "Request body is required"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    if field:
        return f"Invalid value for {field}: {first.get('msg')}"
    return f"Invalid request: {first.get('msg')}"


# ==================== APP ====================

def create_app(
    registry: FleetRegistry | None = None,
    settings: Settings | None = None,
    notifier: OTANotifier | None = None,
) -> FastAPI:
    """
    Build the REST app.

    Args:
        registry: Registry to serve; built from settings at startup if omitted
        settings: Defaults to environment settings
        notifier: Called with every new OTA update (e.g. MQTT publish)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.registry is None
        if owned:
            storage = await build_storage(settings)
            app.state.registry = FleetRegistry(storage)
        try:
            yield
        finally:
            if owned:
                await app.state.registry.storage.close()
                app.state.registry = None

    app = FastAPI(
        title=settings.api_title,
        description="Device fleet registry: devices, telemetry and OTA updates",
        version=settings.api_version,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.notifier = notifier
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _install_error_handlers(app)
    _install_routes(app)
    app.include_router(create_graphql_router(), prefix="/graphql")
    return app


# ==================== ERROR HANDLING ====================

def _install_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return fail(_describe_validation_error(exc), 400)

    @app.exception_handler(InvalidInputError)
    async def invalid_input(request: Request, exc: InvalidInputError):
        return fail(exc.reason, 400)

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return fail(exc.message, 404)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code in (404, 405):
            return fail(f"Route not found: {request.method} {request.url.path}", 404)
        return fail(str(exc.detail), exc.status_code)

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return fail("Internal server error", 500)


# ==================== ROUTES ====================

def _install_routes(app: FastAPI) -> None:

    # ---------- Devices ----------

    @app.post("/devices")
    async def register_device(body: DeviceRegistrationIn, registry: FleetRegistry = Depends(get_registry)):
        """Register a new device."""
        device = await registry.register_device(body.name, body.type, body.firmware_version)
        return ok(device.to_wire(), 201)

    @app.get("/devices")
    async def list_devices(registry: FleetRegistry = Depends(get_registry)):
        devices = await registry.list_devices()
        return ok([device.to_wire() for device in devices])

    @app.get("/devices/{device_id}")
    async def get_device(device_id: str, registry: FleetRegistry = Depends(get_registry)):
        device = await registry.get_device(device_id)
        if device is None:
            return fail("Device not found", 404)
        return ok(device.to_wire())

    @app.delete("/devices/{device_id}")
    async def delete_device(device_id: str, registry: FleetRegistry = Depends(get_registry)):
        """Delete a device. Its telemetry and OTA history is kept."""
        if not await registry.delete_device(device_id):
            return fail("Device not found", 404)
        return ok({"message": "Device deleted successfully"})

    @app.get("/devices/{device_id}/telemetry")
    async def get_device_telemetry(device_id: str, registry: FleetRegistry = Depends(get_registry)):
        """Telemetry for a device, newest first."""
        if await registry.get_device(device_id) is None:
            return fail("Device not found", 404)
        records = await registry.list_telemetry_for_device(device_id)
        return ok([record.to_wire() for record in records])

    @app.get("/devices/{device_id}/ota-updates")
    async def get_device_ota_updates(device_id: str, registry: FleetRegistry = Depends(get_registry)):
        """OTA updates for a device, newest first."""
        if await registry.get_device(device_id) is None:
            return fail("Device not found", 404)
        updates = await registry.list_ota_updates_for_device(device_id)
        return ok([update.to_wire() for update in updates])

    # ---------- Telemetry ----------

    @app.post("/telemetry")
    async def submit_telemetry(body: TelemetryIn, registry: FleetRegistry = Depends(get_registry)):
        telemetry = await registry.submit_telemetry(body.device_id, body.data)
        return ok(telemetry.to_wire(), 201)

    @app.get("/telemetry/{telemetry_id}")
    async def get_telemetry(telemetry_id: str, registry: FleetRegistry = Depends(get_registry)):
        telemetry = await registry.get_telemetry(telemetry_id)
        if telemetry is None:
            return fail("Telemetry not found", 404)
        return ok(telemetry.to_wire())

    # ---------- OTA updates ----------

    @app.post("/ota-updates")
    async def create_ota_update(
        body: OTAUpdateIn,
        request: Request,
        registry: FleetRegistry = Depends(get_registry),
    ):
        """Start an OTA update campaign for a device."""
        update = await registry.create_ota_update(body.device_id, body.to_version, body.download_url)

        notifier = request.app.state.notifier
        if notifier is not None:
            if not await run_in_threadpool(notifier, update):
                logger.warning("Device %s was not notified about OTA update %s", update.device_id, update.update_id)

        return ok(update.to_wire(), 201)

    @app.get("/ota-updates/{update_id}")
    async def get_ota_update(update_id: str, registry: FleetRegistry = Depends(get_registry)):
        update = await registry.get_ota_update(update_id)
        if update is None:
            return fail("OTA update not found", 404)
        return ok(update.to_wire())

    @app.patch("/ota-updates/{update_id}/status")
    async def update_ota_update_status(
        update_id: str,
        body: OTAUpdateStatusIn,
        registry: FleetRegistry = Depends(get_registry),
    ):
        update = await registry.update_ota_update_status(update_id, body.status)
        if update is None:
            return fail("OTA update not found", 404)
        return ok(update.to_wire())

    # ---------- Health ----------

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return ok({"status": "ok", "version": app.state.settings.api_version})


def _default_notifier(settings: Settings) -> OTANotifier | None:
    if not settings.mqtt_notify_ota:
        return None
    from fleet_registry.mqtt.main import publish_ota_update

    return publish_ota_update


settings = get_settings()
app = create_app(settings=settings, notifier=_default_notifier(settings))


# ==================== MAIN ====================

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=settings.log_level.upper())
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
