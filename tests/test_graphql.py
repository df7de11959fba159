"""
Tests for the GraphQL endpoint mounted at /graphql.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from fleet_registry.api.main import create_app
from fleet_registry.core.config import Settings

REGISTER = """
mutation Register($input: DeviceRegistrationInput!) {
  registerDevice(input: $input) { deviceId name type firmwareVersion status registeredAt lastSeen }
}
"""

DEVICE = """
query Device($id: ID!) {
  device(deviceId: $id) { deviceId firmwareVersion status lastSeen }
}
"""

SUBMIT = """
mutation Submit($input: TelemetryInput!) {
  submitTelemetry(input: $input) { telemetryId deviceId timestamp data }
}
"""

CREATE_UPDATE = """
mutation Create($input: OTAUpdateInput!) {
  createOTAUpdate(input: $input) { updateId deviceId fromVersion toVersion status downloadUrl createdAt }
}
"""

SET_STATUS = """
mutation SetStatus($id: ID!, $status: OTAUpdateStatus!) {
  updateOTAUpdateStatus(updateId: $id, status: $status) { updateId status startedAt completedAt }
}
"""


@pytest.fixture
def notifier():
    return MagicMock(return_value=True)


@pytest.fixture
def client(memory_registry, notifier):
    app = create_app(registry=memory_registry, settings=Settings(storage_backend="memory"), notifier=notifier)
    return TestClient(app)


def _execute(client, query: str, **variables) -> dict:
    response = client.post("/graphql", json={"query": query, "variables": variables})
    assert response.status_code == 200
    return response.json()


def _register(client, firmware: str = "1.0") -> dict:
    result = _execute(client, REGISTER, input={"name": "sensor-1", "type": "temp", "firmwareVersion": firmware})
    assert "errors" not in result
    return result["data"]["registerDevice"]


def _create_update(client, device_id: str, to_version: str = "1.1") -> dict:
    result = _execute(
        client,
        CREATE_UPDATE,
        input={"deviceId": device_id, "toVersion": to_version, "downloadUrl": f"https://fw.example.com/{to_version}.bin"},
    )
    assert "errors" not in result
    return result["data"]["createOTAUpdate"]


class TestQueries:

    def test_register_and_fetch_device(self, client):
        device = _register(client)

        assert device["status"] == "ACTIVE"
        assert device["firmwareVersion"] == "1.0"
        assert device["lastSeen"] is None

        fetched = _execute(client, DEVICE, id=device["deviceId"])["data"]["device"]
        assert fetched["deviceId"] == device["deviceId"]

        devices = _execute(client, "{ devices { deviceId } }")["data"]["devices"]
        assert devices == [{"deviceId": device["deviceId"]}]

    def test_unknown_records_are_null(self, client):
        result = _execute(
            client,
            '{ device(deviceId: "x") { deviceId } telemetry(telemetryId: "x") { telemetryId }'
            ' otaUpdate(updateId: "x") { updateId } }',
        )

        assert result["data"] == {"device": None, "telemetry": None, "otaUpdate": None}

    def test_device_lists_newest_first(self, client):
        device = _register(client)
        for reading in (20.0, 21.0):
            _execute(client, SUBMIT, input={"deviceId": device["deviceId"], "data": {"temperature": reading}})
        for version in ("1.1", "1.2"):
            _create_update(client, device["deviceId"], version)

        result = _execute(
            client,
            "query Lists($id: ID!) { deviceTelemetry(deviceId: $id) { data }"
            " deviceOTAUpdates(deviceId: $id) { toVersion } }",
            id=device["deviceId"],
        )

        assert [t["data"]["temperature"] for t in result["data"]["deviceTelemetry"]] == [21.0, 20.0]
        assert [u["toVersion"] for u in result["data"]["deviceOTAUpdates"]] == ["1.2", "1.1"]


class TestMutations:

    def test_submit_telemetry_keeps_data_and_touches_device(self, client, sample_telemetry_data):
        device = _register(client)

        result = _execute(client, SUBMIT, input={"deviceId": device["deviceId"], "data": sample_telemetry_data})

        telemetry = result["data"]["submitTelemetry"]
        assert telemetry["data"] == sample_telemetry_data
        assert telemetry["data"]["door_open"] is False

        refreshed = _execute(client, DEVICE, id=device["deviceId"])["data"]["device"]
        assert refreshed["status"] == "ACTIVE"
        assert refreshed["lastSeen"] is not None

    def test_submit_telemetry_for_unknown_device(self, client):
        result = _execute(client, SUBMIT, input={"deviceId": "missing", "data": {"temperature": 1.0}})

        assert result["data"] is None
        assert result["errors"][0]["message"] == "Device not found: missing"
        assert result["errors"][0]["path"] == ["submitTelemetry"]

    def test_nested_telemetry_is_rejected(self, client):
        device = _register(client)

        result = _execute(client, SUBMIT, input={"deviceId": device["deviceId"], "data": {"gps": {"lat": 1}}})

        assert result["errors"][0]["message"].startswith("Invalid value for data")

    def test_empty_name_is_rejected(self, client):
        result = _execute(client, REGISTER, input={"name": "", "type": "temp", "firmwareVersion": "1.0"})

        assert result["errors"][0]["message"].startswith("Invalid value for name")

    def test_ota_lifecycle(self, client, notifier):
        device = _register(client)

        update = _create_update(client, device["deviceId"])
        assert update["status"] == "PENDING"
        assert update["fromVersion"] == "1.0"
        assert _execute(client, DEVICE, id=device["deviceId"])["data"]["device"]["status"] == "UPDATING"
        notifier.assert_called_once()

        started = _execute(client, SET_STATUS, id=update["updateId"], status="IN_PROGRESS")
        assert started["data"]["updateOTAUpdateStatus"]["startedAt"] is not None
        assert started["data"]["updateOTAUpdateStatus"]["completedAt"] is None

        completed = _execute(client, SET_STATUS, id=update["updateId"], status="COMPLETED")
        assert completed["data"]["updateOTAUpdateStatus"]["completedAt"] is not None

        refreshed = _execute(client, DEVICE, id=device["deviceId"])["data"]["device"]
        assert refreshed["status"] == "ACTIVE"
        assert refreshed["firmwareVersion"] == "1.1"

    def test_create_update_for_unknown_device(self, client, notifier):
        result = _execute(
            client,
            CREATE_UPDATE,
            input={"deviceId": "missing", "toVersion": "1.1", "downloadUrl": "https://fw.example.com/1.1.bin"},
        )

        assert result["errors"][0]["message"] == "Device not found: missing"
        notifier.assert_not_called()

    def test_status_for_unknown_update(self, client):
        result = _execute(client, SET_STATUS, id="missing", status="FAILED")

        assert result["errors"][0]["message"] == "OTA update not found: missing"

    def test_invalid_status_value(self, client):
        device = _register(client)
        update = _create_update(client, device["deviceId"])

        response = client.post(
            "/graphql",
            json={"query": SET_STATUS, "variables": {"id": update["updateId"], "status": "DONE"}},
        )

        assert response.json()["errors"]
        assert _execute(client, DEVICE, id=device["deviceId"])["data"]["device"]["status"] == "UPDATING"

    def test_delete_device(self, client):
        device = _register(client)
        delete = 'mutation Delete($id: ID!) { deleteDevice(deviceId: $id) }'

        assert _execute(client, delete, id=device["deviceId"])["data"]["deleteDevice"] is True
        assert _execute(client, delete, id=device["deviceId"])["data"]["deleteDevice"] is False
        assert _execute(client, DEVICE, id=device["deviceId"])["data"]["device"] is None
