"""
Fleet Registry - MQTT Bridge
Receives telemetry and OTA progress reports from devices and pushes
new OTA campaigns to them.

Topics:
- devices/{device_id}/telemetry  (in)  {"temperature": 21.5, ...}
- devices/{device_id}/ota        (in)  {"update_id": "...", "status": "IN_PROGRESS"}
- devices/{device_id}/commands   (out) {"command": "ota_update", ...}
"""

import asyncio
import json
import logging
import signal
import time

import paho.mqtt.client as mqtt
from pydantic import TypeAdapter, ValidationError

from fleet_registry.core.config import Settings, get_settings
from fleet_registry.exceptions import InvalidInputError, NotFoundError
from fleet_registry.models import OTAUpdate, OTAUpdateStatus, TelemetryData
from fleet_registry.services.registry import FleetRegistry
from fleet_registry.storage import build_storage

logger = logging.getLogger(__name__)

TELEMETRY_TOPIC = "devices/+/telemetry"
OTA_REPORT_TOPIC = "devices/+/ota"

_telemetry_data = TypeAdapter(TelemetryData)

# Global reference to MQTT client for command push
_mqtt_client: mqtt.Client | None = None


def get_mqtt_client() -> mqtt.Client | None:
    """Get the global MQTT client instance."""
    return _mqtt_client


# ==================== PAYLOAD PARSING ====================

def parse_telemetry_payload(payload) -> TelemetryData:
    """Validate a telemetry payload: a flat object of number/string/boolean values."""
    if not isinstance(payload, dict):
        raise InvalidInputError("Telemetry payload must be a JSON object")
    try:
        return _telemetry_data.validate_python(payload)
    except ValidationError as e:
        raise InvalidInputError(f"Invalid telemetry data: {e.errors()[0]['msg']}") from e


def parse_ota_report(payload) -> tuple[str, OTAUpdateStatus]:
    """Validate an OTA progress report and return (update_id, status)."""
    if not isinstance(payload, dict):
        raise InvalidInputError("OTA report must be a JSON object")

    update_id = payload.get("update_id")
    if not isinstance(update_id, str) or not update_id:
        raise InvalidInputError("OTA report requires a non-empty update_id")

    try:
        status = OTAUpdateStatus(payload.get("status"))
    except ValueError as e:
        raise InvalidInputError(f"Invalid status value: {payload.get('status')!r}") from e

    return update_id, status


# ==================== PUBLISHING ====================

def publish_device_command(device_id: str, command: str, **params) -> bool:
    """
    Publish command to a device.
    Creates a temporary MQTT connection if no global client is available.

    Args:
        device_id: Device identifier
        command: Command name (e.g., "ota_update")
        **params: Extra payload fields

    Returns:
        True if published successfully
    """
    topic = f"devices/{device_id}/commands"
    payload = json.dumps({"command": command, **params})

    # Try global client first (for the bridge process)
    client = get_mqtt_client()
    if client and client.is_connected():
        result = client.publish(topic, payload, qos=1)
        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            logger.info("📤 Command sent to %s: %s", device_id, command)
            return True
        logger.error("Failed to send command to %s: %s", device_id, result.rc)
        return False

    # Create temporary connection (for the API which runs in a separate process)
    settings = get_settings()
    try:
        temp_client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        temp_client.connect(settings.mqtt_broker, settings.mqtt_port, keepalive=10)
        temp_client.loop_start()

        # Wait for connection (max 1 second)
        for _ in range(10):
            if temp_client.is_connected():
                break
            time.sleep(0.1)

        if not temp_client.is_connected():
            logger.warning("Could not connect to MQTT broker %s:%s", settings.mqtt_broker, settings.mqtt_port)
            temp_client.loop_stop()
            return False

        result = temp_client.publish(topic, payload, qos=1)
        result.wait_for_publish(timeout=5)

        temp_client.loop_stop()
        temp_client.disconnect()

        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            logger.info("📤 Command sent to %s: %s (via temp connection)", device_id, command)
            return True
        logger.error("Failed to send command to %s: %s", device_id, result.rc)
        return False

    except (OSError, ValueError, RuntimeError) as e:
        logger.error("MQTT error sending command to %s: %s", device_id, e)
        return False


def publish_ota_update(update: OTAUpdate) -> bool:
    """Tell a device about a new OTA update campaign."""
    return publish_device_command(
        update.device_id,
        "ota_update",
        update_id=update.update_id,
        to_version=update.to_version,
        download_url=update.download_url,
    )


# ==================== PROCESSOR ====================

class MQTTProcessor:
    """Routes device MQTT messages into the registry."""

    def __init__(self, registry: FleetRegistry, settings: Settings | None = None):
        global _mqtt_client
        self.registry = registry
        self.settings = settings or get_settings()
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect
        self.running = False
        self._loop: asyncio.AbstractEventLoop | None = None
        _mqtt_client = self.client

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Called when connected to MQTT broker."""
        logger.info("✅ Connected to MQTT broker: %s:%s", self.settings.mqtt_broker, self.settings.mqtt_port)

        client.subscribe(TELEMETRY_TOPIC)
        client.subscribe(OTA_REPORT_TOPIC)
        logger.info("📡 Subscribed to: %s, %s", TELEMETRY_TOPIC, OTA_REPORT_TOPIC)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        """Called when disconnected from MQTT broker."""
        logger.warning("Disconnected from MQTT broker: %s", reason_code)

    def _on_message(self, client, userdata, msg):
        """Called on the network thread; hands the message to the event loop."""
        if self._loop is None:
            logger.warning("Message on %s before processor start, dropped", msg.topic)
            return
        asyncio.run_coroutine_threadsafe(self.handle_message(msg.topic, msg.payload), self._loop)

    async def handle_message(self, topic: str, raw: bytes) -> None:
        """Process one message. Bad payloads and unknown devices are logged and dropped."""
        # Topic: devices/{device_id}/{channel}
        parts = topic.split("/")
        if len(parts) != 3 or parts[0] != "devices":
            logger.debug("Ignoring message on %s", topic)
            return

        device_id, channel = parts[1], parts[2]

        try:
            payload = json.loads(raw.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Malformed %s message from %s: %s", channel, device_id, e)
            return

        try:
            if channel == "telemetry":
                await self._process_telemetry(device_id, payload)
            elif channel == "ota":
                await self._process_ota_report(device_id, payload)
            else:
                logger.debug("Ignoring %s message from %s", channel, device_id)
        except InvalidInputError as e:
            logger.warning("Dropped %s message from %s: %s", channel, device_id, e.reason)
        except NotFoundError as e:
            logger.warning("Dropped %s message from %s: %s", channel, device_id, e)
        except Exception:
            logger.exception("Failed to process %s message from %s", channel, device_id)

    async def _process_telemetry(self, device_id: str, payload) -> None:
        data = parse_telemetry_payload(payload)
        telemetry = await self.registry.submit_telemetry(device_id, data)
        logger.info("📩 Saved telemetry %s for %s", telemetry.telemetry_id, device_id)

    async def _process_ota_report(self, device_id: str, payload) -> None:
        update_id, status = parse_ota_report(payload)

        # A device may only report on its own campaigns
        update = await self.registry.get_ota_update(update_id)
        if update is None or update.device_id != device_id:
            raise NotFoundError("OTA update", update_id)

        await self.registry.update_ota_update_status(update_id, status)
        logger.info("📩 OTA update %s reported %s by %s", update_id, status, device_id)

    async def run(self):
        """Main run loop."""
        self._loop = asyncio.get_running_loop()
        self.running = True

        logger.info("🚀 Starting MQTT bridge, connecting to %s:%s", self.settings.mqtt_broker, self.settings.mqtt_port)

        self.client.connect(self.settings.mqtt_broker, self.settings.mqtt_port, 60)

        # Start MQTT loop in background thread
        self.client.loop_start()

        # Keep running until stopped
        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            self.client.loop_stop()
            self.client.disconnect()
            logger.info("MQTT bridge stopped")

    def stop(self):
        """Stop the processor."""
        self.running = False


async def main():
    """Entry point."""
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    storage = await build_storage(settings)
    processor = MQTTProcessor(FleetRegistry(storage), settings)

    # Handle shutdown signals
    def signal_handler(sig, frame):
        logger.info("Shutting down...")
        processor.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await processor.run()
    finally:
        await storage.close()


if __name__ == "__main__":
    asyncio.run(main())
