"""
Tests for the storage backings below the facade.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import String

from fleet_registry.core.config import Settings
from fleet_registry.exceptions import ConfigurationError, NotFoundError
from fleet_registry.models import Device, DeviceStatus, OTAUpdate, OTAUpdateStatus, Telemetry
from fleet_registry.storage import InMemoryStorage, build_storage
from fleet_registry.storage.base import merge_changes
from fleet_registry.storage.tables import DeviceRow, OTAUpdateRow, TelemetryRow

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _device(device_id="dev-1", firmware="1.0") -> Device:
    return Device(
        device_id=device_id,
        name="gateway",
        type="lte",
        firmware_version=firmware,
        registered_at=T0,
    )


def _telemetry(telemetry_id: str, minutes: int, device_id="dev-1") -> Telemetry:
    return Telemetry(
        telemetry_id=telemetry_id,
        device_id=device_id,
        timestamp=T0 + timedelta(minutes=minutes),
        data={"signal_strength": -70},
    )


def _update(update_id: str, minutes: int, device_id="dev-1") -> OTAUpdate:
    return OTAUpdate(
        update_id=update_id,
        device_id=device_id,
        from_version="1.0",
        to_version=f"1.{minutes}",
        download_url=f"https://fw.example.com/{update_id}.bin",
        created_at=T0 + timedelta(minutes=minutes),
    )


@pytest.mark.asyncio
class TestListingOrder:

    async def test_telemetry_sorted_by_timestamp_not_insertion(self, storage):
        await storage.save_device(_device())
        for telemetry_id, minutes in (("b", 5), ("a", 1), ("d", 30), ("c", 10)):
            await storage.save_telemetry(_telemetry(telemetry_id, minutes))

        records = await storage.list_telemetry("dev-1")

        assert [t.telemetry_id for t in records] == ["d", "c", "b", "a"]

    async def test_ota_updates_sorted_by_created_at(self, storage):
        await storage.save_device(_device())
        for update_id, minutes in (("u2", 2), ("u9", 9), ("u1", 1)):
            await storage.save_ota_update(_update(update_id, minutes))

        updates = await storage.list_ota_updates("dev-1")

        assert [u.update_id for u in updates] == ["u9", "u2", "u1"]

    async def test_unknown_device_lists_are_empty(self, storage):
        assert await storage.list_telemetry("nobody") == []
        assert await storage.list_ota_updates("nobody") == []


@pytest.mark.asyncio
class TestDerivedState:

    async def test_telemetry_sets_last_seen(self, storage):
        await storage.save_device(_device())
        await storage.save_telemetry(_telemetry("t1", 15))

        device = await storage.get_device("dev-1")

        assert device.last_seen == T0 + timedelta(minutes=15)
        assert device.status == DeviceStatus.ACTIVE

    async def test_side_effects_skipped_for_missing_device(self, storage):
        await storage.save_telemetry(_telemetry("t1", 1, device_id="ghost"))
        await storage.save_ota_update(_update("u1", 1, device_id="ghost"))
        updated = await storage.update_ota_update("u1", {"status": OTAUpdateStatus.FAILED})

        assert updated.status == OTAUpdateStatus.FAILED
        assert await storage.get_device("ghost") is None
        assert (await storage.get_telemetry("t1")).device_id == "ghost"

    async def test_update_without_status_does_not_touch_device(self, storage):
        await storage.save_device(_device())
        await storage.save_ota_update(_update("u1", 1))
        await storage.update_ota_update("u1", {"status": OTAUpdateStatus.COMPLETED})
        await storage.update_device("dev-1", {"status": DeviceStatus.INACTIVE})

        await storage.update_ota_update("u1", {"download_url": "https://mirror.example.com/u1.bin"})

        assert (await storage.get_device("dev-1")).status == DeviceStatus.INACTIVE


@pytest.mark.asyncio
class TestPartialUpdates:

    async def test_ota_update_merge_keeps_other_fields(self, storage):
        await storage.save_device(_device())
        original = await storage.save_ota_update(_update("u1", 3))

        updated = await storage.update_ota_update("u1", {"status": "IN_PROGRESS", "started_at": T0})

        assert updated.status == OTAUpdateStatus.IN_PROGRESS
        assert updated.started_at == T0
        assert updated.to_version == original.to_version
        assert updated.download_url == original.download_url
        assert updated.created_at == original.created_at
        assert await storage.get_ota_update("u1") == updated

    async def test_from_version_cannot_be_changed(self, storage):
        await storage.save_ota_update(_update("u1", 3))

        with pytest.raises(ValueError):
            await storage.update_ota_update("u1", {"from_version": "0.9"})

    async def test_unknown_fields_are_rejected(self, storage):
        await storage.save_device(_device())

        with pytest.raises(ValueError):
            await storage.update_device("dev-1", {"colour": "blue"})

    async def test_update_device_merges(self, storage):
        await storage.save_device(_device())

        device = await storage.update_device("dev-1", {"name": "gateway-2"})

        assert device.name == "gateway-2"
        assert device.firmware_version == "1.0"
        assert (await storage.get_device("dev-1")).name == "gateway-2"

    async def test_missing_records_return_none(self, storage):
        assert await storage.update_device("nobody", {"name": "x"}) is None
        assert await storage.update_ota_update("nothing", {"status": "FAILED"}) is None


class TestInMemoryIsolation:

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        storage = InMemoryStorage()
        saved = await storage.save_device(_device())

        saved.firmware_version = "hacked"
        fetched = await storage.get_device("dev-1")
        fetched.name = "renamed"

        assert (await storage.get_device("dev-1")).firmware_version == "1.0"
        assert (await storage.get_device("dev-1")).name == "gateway"

    @pytest.mark.asyncio
    async def test_concurrent_writers_do_not_lose_records(self):
        storage = InMemoryStorage()
        await storage.save_device(_device())

        await asyncio.gather(*(storage.save_telemetry(_telemetry(f"t{i}", i)) for i in range(50)))

        records = await storage.list_telemetry("dev-1")
        device = await storage.get_device("dev-1")

        assert len(records) == 50
        assert device.last_seen == T0 + timedelta(minutes=49)

    def test_merge_changes_validates_values(self):
        update = _update("u1", 1)

        merged = merge_changes(update, {"status": "CANCELLED"})

        assert merged.status is OTAUpdateStatus.CANCELLED
        assert update.status is OTAUpdateStatus.PENDING


@pytest.mark.asyncio
class TestBuildStorage:

    async def test_memory_backend(self):
        storage = await build_storage(Settings(storage_backend="memory"))
        assert isinstance(storage, InMemoryStorage)

    async def test_sql_backend(self, tmp_path):
        from fleet_registry.storage.sql import SqlStorage

        storage = await build_storage(
            Settings(storage_backend="sql", database_url=f"sqlite+aiosqlite:///{tmp_path / 'fleet.db'}")
        )
        try:
            assert isinstance(storage, SqlStorage)
            await storage.save_device(_device())
            assert (await storage.get_device("dev-1")).name == "gateway"
        finally:
            await storage.close()

    async def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            await build_storage(Settings(storage_backend="redis"))


@pytest.mark.asyncio
class TestRequiredDevice:

    async def test_telemetry_for_missing_device_is_not_stored(self, storage):
        with pytest.raises(NotFoundError):
            await storage.save_telemetry(_telemetry("t1", 1, device_id="ghost"), require_device=True)

        assert await storage.get_telemetry("t1") is None

    async def test_ota_update_for_missing_device_is_not_stored(self, storage):
        with pytest.raises(NotFoundError):
            await storage.save_ota_update(_update("u1", 1, device_id="ghost"), require_device=True)

        assert await storage.get_ota_update("u1") is None

    async def test_required_device_present(self, storage):
        await storage.save_device(_device())

        await storage.save_ota_update(_update("u1", 1), require_device=True)

        assert (await storage.get_device("dev-1")).status == DeviceStatus.UPDATING


class TestColumnLengths:

    @pytest.mark.parametrize("table", [DeviceRow, TelemetryRow, OTAUpdateRow])
    def test_free_text_columns_are_unbounded(self, table):
        for column in table.__table__.columns:
            if isinstance(column.type, String) and column.name != "status":
                assert column.type.length is None, column.name

    @pytest.mark.asyncio
    async def test_long_values_round_trip(self, storage):
        long_id = "fleet/eu-west/" + "d" * 80
        url = "https://fw.example.com/1.1.bin?X-Signature=" + "a" * 700
        await storage.save_device(_device(device_id=long_id, firmware="2026.10.17-build." + "9" * 60))
        update = _update("u" * 64, 1, device_id=long_id).model_copy(update={"download_url": url})

        await storage.save_ota_update(update, require_device=True)

        stored = await storage.get_ota_update(update.update_id)
        assert stored.download_url == url
        assert (await storage.get_device(long_id)).firmware_version.endswith("9" * 60)
