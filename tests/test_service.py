import asyncio
import json
from datetime import timedelta

import boxlog.service as service_module
from boxlog.db import InMemoryKeyValueStore
from boxlog.service import SCHEMA_VERSION, StorageService, get_storage_service
from boxlog.settings import Settings
from boxlog.utils import utcnow

KEYS = ("boxlog_events", "boxlog_logs", "boxlog_tags")


class FailingWritesStore(InMemoryKeyValueStore):
    """Substrate whose writes fail, as when storage is unavailable at startup."""

    def set(self, key, value):
        raise OSError("storage unavailable")


def make_service(store=None, **settings_overrides):
    return StorageService(
        store=store if store is not None else InMemoryKeyValueStore(),
        settings=Settings(**settings_overrides),
    )


def seed(service):
    async def _seed():
        event = await service.events.create(
            {"title": "Plan", "start_date": "2024-01-10T09:00:00Z", "end_date": "2024-01-10T10:00:00Z"}
        )
        trashed = await service.events.create({"title": "Trashed", "start_date": "2024-01-11"})
        await service.events.delete(trashed["id"])
        log = await service.logs.create(
            {
                "event_id": event["id"],
                "title": "Did it",
                "actual_start": "2024-01-10T09:05:00Z",
                "actual_end": "2024-01-10T09:50:00Z",
                "focus_level": 4,
            }
        )
        return event, trashed, log

    return asyncio.run(_seed())


def normalized(store, key):
    raw = store.get(key)
    return None if raw is None else json.loads(raw)


class TestInitialize:
    def test_creates_version_and_empty_collections(self):
        service = make_service()
        assert asyncio.run(service.initialize()) is True
        assert service.store.get("boxlog_version") == SCHEMA_VERSION
        for key in KEYS:
            assert service.store.get(key) == "[]"

    def test_is_idempotent_and_keeps_existing_data(self):
        store = InMemoryKeyValueStore({"boxlog_version": "0.9.0", "boxlog_tags": '[{"id":"t1"}]'})
        service = make_service(store)
        asyncio.run(service.initialize())
        asyncio.run(service.initialize())
        assert store.get("boxlog_version") == "0.9.0"
        assert store.get("boxlog_tags") == '[{"id":"t1"}]'
        assert store.get("boxlog_events") == "[]"

    def test_failures_are_logged_not_raised(self, caplog):
        service = make_service(FailingWritesStore())
        assert asyncio.run(service.initialize()) is False
        assert "Failed to initialize" in caplog.text
        # Reads still work against the degraded store
        assert asyncio.run(service.events.list()) == []

    def test_key_prefix_is_configurable(self):
        service = make_service(key_prefix="test_")
        asyncio.run(service.initialize())
        assert sorted(service.store.keys()) == ["test_events", "test_logs", "test_tags", "test_version"]


class TestExportImport:
    def test_export_includes_soft_deleted_rows(self):
        service = make_service()
        asyncio.run(service.initialize())
        event, trashed, log = seed(service)
        snapshot = asyncio.run(service.export_all())
        assert snapshot["version"] == SCHEMA_VERSION
        assert {e["id"] for e in snapshot["events"]} == {event["id"], trashed["id"]}
        assert [r["id"] for r in snapshot["logs"]] == [log["id"]]

    def test_import_of_export_restores_identical_collections(self):
        service = make_service()
        asyncio.run(service.initialize())
        seed(service)
        before = {key: normalized(service.store, key) for key in ("boxlog_events", "boxlog_logs")}

        snapshot = asyncio.run(service.export_all())
        asyncio.run(service.clear_all())
        asyncio.run(service.import_all(snapshot))

        after = {key: normalized(service.store, key) for key in ("boxlog_events", "boxlog_logs")}
        assert after == before

    def test_import_into_another_store(self):
        source = make_service()
        asyncio.run(source.initialize())
        seed(source)
        target = make_service()
        asyncio.run(target.initialize())
        asyncio.run(target.import_all(asyncio.run(source.export_all())))
        assert target.store.get("boxlog_events") == source.store.get("boxlog_events")
        assert target.store.get("boxlog_logs") == source.store.get("boxlog_logs")

    def test_partial_snapshot_leaves_other_collection_untouched(self):
        service = make_service()
        asyncio.run(service.initialize())
        seed(service)
        logs_before = service.store.get("boxlog_logs")
        asyncio.run(service.import_all({"events": []}))
        assert service.store.get("boxlog_events") == "[]"
        assert service.store.get("boxlog_logs") == logs_before


class TestClearAndSize:
    def test_clear_all_resets_every_collection(self):
        service = make_service()
        asyncio.run(service.initialize())
        seed(service)
        service.store.set("boxlog_tags", '[{"id":"t1"}]')
        asyncio.run(service.clear_all())
        for key in KEYS:
            assert service.store.get(key) == "[]"
        # The version marker is not a collection
        assert service.store.get("boxlog_version") == SCHEMA_VERSION

    def test_size_report(self):
        service = make_service(quota_bytes=100_000)
        asyncio.run(service.initialize())
        seed(service)
        report = asyncio.run(service.size_report())
        expected_total = sum(len(k.encode()) + len(service.store.get(k).encode()) for k in service.store.keys())
        assert report == {
            "total_bytes": expected_total,
            "quota_bytes": 100_000,
            "events": 2,
            "logs": 1,
            "tags": 0,
            "version": SCHEMA_VERSION,
        }

    def test_size_report_tolerates_corruption(self):
        service = make_service()
        asyncio.run(service.initialize())
        service.store.set("boxlog_events", "oops")
        assert asyncio.run(service.size_report())["events"] == 0


class TestValidate:
    def test_well_formed_collections_have_no_violations(self):
        service = make_service()
        asyncio.run(service.initialize())
        seed(service)
        assert asyncio.run(service.validate()) == []

    def test_log_ending_before_start_is_reported_with_its_id(self):
        service = make_service()
        asyncio.run(service.initialize())
        log = asyncio.run(
            service.logs.create(
                {"title": "Backwards", "actual_start": "2024-01-10T10:00:00Z", "actual_end": "2024-01-10T09:00:00Z"}
            )
        )
        violations = asyncio.run(service.validate())
        assert len(violations) == 1
        assert log["id"] in violations[0]
        assert "actualEnd is before actualStart" in violations[0]

    def test_soft_deleted_rows_are_checked(self):
        service = make_service()
        asyncio.run(service.initialize())
        event = asyncio.run(
            service.events.create({"title": "Backwards", "start_date": "2024-01-12", "end_date": "2024-01-10"})
        )
        asyncio.run(service.events.delete(event["id"]))
        violations = asyncio.run(service.validate())
        assert violations == [f"event {event['id']}: endDate is before startDate"]

    def test_bad_stored_rows_are_reported(self):
        service = make_service()
        asyncio.run(service.initialize())
        service.store.set(
            "boxlog_events",
            json.dumps([{"id": "e1", "title": "", "startDate": "yesterday", "status": "inbox"}]),
        )
        violations = asyncio.run(service.validate())
        assert "event e1: missing title" in violations
        assert "event e1: invalid startDate value 'yesterday'" in violations
        assert "event e1: missing createdAt" in violations

    def test_unreadable_collection_is_reported(self):
        service = make_service()
        asyncio.run(service.initialize())
        service.store.set("boxlog_logs", "{broken")
        assert asyncio.run(service.validate()) == ["boxlog_logs: stored value is not a readable JSON array"]


class TestTrashRetention:
    def test_purge_expired_trash(self):
        service = make_service(trash_retention_days=30)
        asyncio.run(service.initialize())
        _, trashed, _ = seed(service)

        # Recently deleted: kept
        assert asyncio.run(service.purge_expired_trash()) == {"events": 0, "logs": 0}

        rows = asyncio.run(service.events.list(include_deleted=True))
        for row in rows:
            if row["id"] == trashed["id"]:
                row["deleted_at"] = utcnow() - timedelta(days=31)
        asyncio.run(service.events.replace_all(rows))

        assert asyncio.run(service.purge_expired_trash()) == {"events": 1, "logs": 0}
        assert asyncio.run(service.events.get(trashed["id"])) is None


class TestGetStorageService:
    def test_returns_one_initialized_instance(self, monkeypatch):
        monkeypatch.setattr(service_module, "_service", None)
        monkeypatch.setenv("BOXLOG_SUBSTRATE", "memory")

        async def twice():
            return await get_storage_service(), await get_storage_service()

        first, second = asyncio.run(twice())
        assert first is second
        assert first.store.get(first.settings.version_key) == SCHEMA_VERSION

    def test_sqlite_substrate_end_to_end(self, monkeypatch, tmp_path):
        monkeypatch.setattr(service_module, "_service", None)
        monkeypatch.setenv("BOXLOG_SUBSTRATE", "sqlite")
        monkeypatch.setenv("BOXLOG_SQLITE_PATH", str(tmp_path / "boxlog.db"))

        async def scenario():
            service = await get_storage_service()
            event = await service.events.create({"title": "Persisted", "start_date": "2024-01-10"})
            return service, event

        service, event = asyncio.run(scenario())
        # A fresh service over the same file sees the record
        reopened = StorageService(settings=service.settings)
        assert asyncio.run(reopened.events.get(event["id"])) == event
