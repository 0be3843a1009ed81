"""
Process-wide entry point to local persistence.

StorageService owns schema-version initialization and the tag placeholder
collection, composes the Event and Log repositories over one substrate, and
adds the operations that span every collection: export/import, clear,
size reporting, validation and trash purging.

Cross-collection operations take each collection's lock in turn and never
hold two at once, so they are sequential per key rather than atomic.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Dict, List, Optional

from .db import KeyValueStore, get_store, read_value, write_value
from .models import SizeReport, StorageSnapshot
from .mutex import KeyedMutex
from .quota import QuotaGuard
from .repositories import EventRepository, LogRepository
from .settings import Settings, get_settings
from .utils import utcnow

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"
EMPTY_COLLECTION = "[]"


# PUBLIC_INTERFACE
class StorageService:
    """
    Facade over the events, logs and tags collections of one substrate.

    Parameters
    ----------
    store:
        Key-value substrate. Defaults to the one selected by settings.
    settings:
        Storage settings. Defaults to get_settings().
    mutex:
        Keyed write mutex shared by all writers of this substrate. A fresh
        one is created when omitted.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        settings: Optional[Settings] = None,
        mutex: Optional[KeyedMutex] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store if store is not None else get_store(self.settings)
        self.mutex = mutex or KeyedMutex()
        self.quota = QuotaGuard(self.store, self.settings.quota_bytes)
        self.events = EventRepository(self.store, self.settings.events_key, self.mutex, self.quota)
        self.logs = LogRepository(self.store, self.settings.logs_key, self.mutex, self.quota)
        self._initialized = False

    @property
    def collection_keys(self) -> List[str]:
        return [self.settings.events_key, self.settings.logs_key, self.settings.tags_key]

    async def initialize(self) -> bool:
        """
        Create the version marker and any missing collection as an empty array.

        Runs once per service; later calls are no-ops. A failing step is
        logged and skipped so the service stays usable. Returns True when
        every step succeeded.
        """
        if self._initialized:
            return True

        ok = True
        try:
            if await read_value(self.store, self.settings.version_key) is None:
                await write_value(self.store, self.settings.version_key, SCHEMA_VERSION)
                logger.info("Initialized storage schema version %s", SCHEMA_VERSION)
        except Exception:
            logger.exception("Failed to initialize %s", self.settings.version_key)
            ok = False

        for key in self.collection_keys:
            try:
                async with self.mutex.hold(key):
                    if await read_value(self.store, key) is None:
                        await write_value(self.store, key, EMPTY_COLLECTION)
                        logger.info("Created empty collection %s", key)
            except Exception:
                logger.exception("Failed to initialize collection %s", key)
                ok = False

        self._initialized = True
        return ok

    async def version(self) -> Optional[str]:
        return await read_value(self.store, self.settings.version_key)

    async def export_all(self) -> StorageSnapshot:
        """Snapshot every event and log, soft-deleted ones included."""
        return {
            "version": await self.version() or SCHEMA_VERSION,
            "exported_at": utcnow(),
            "events": await self.events.list(include_deleted=True),
            "logs": await self.logs.list(include_deleted=True),
        }

    async def import_all(self, snapshot: StorageSnapshot) -> None:
        """
        Overwrite each collection present in ``snapshot``. A collection the
        snapshot does not carry is left untouched.
        """
        if "events" in snapshot:
            await self.events.replace_all(snapshot["events"])
            logger.info("Imported %d events", len(snapshot["events"]))
        if "logs" in snapshot:
            await self.logs.replace_all(snapshot["logs"])
            logger.info("Imported %d logs", len(snapshot["logs"]))

    async def clear_all(self) -> None:
        """Reset events, logs and tags to empty arrays, one key at a time."""
        for key in self.collection_keys:
            async with self.mutex.hold(key):
                await write_value(self.store, key, EMPTY_COLLECTION)
        logger.info("Cleared %s", ", ".join(self.collection_keys))

    async def _count(self, key: str) -> int:
        raw = await read_value(self.store, key)
        if raw is None:
            return 0
        try:
            rows = json.loads(raw)
        except ValueError:
            return 0
        return len(rows) if isinstance(rows, list) else 0

    async def size_report(self) -> SizeReport:
        """Total stored bytes, the quota, row counts per collection and the schema version."""
        return {
            "total_bytes": await self.quota.usage(),
            "quota_bytes": self.quota.limit_bytes,
            "events": await self._count(self.settings.events_key),
            "logs": await self._count(self.settings.logs_key),
            "tags": await self._count(self.settings.tags_key),
            "version": await self.version(),
        }

    async def validate(self) -> List[str]:
        """
        Report invariant violations across both collections, soft-deleted rows
        included. Advisory only: nothing is blocked or repaired.
        """
        violations: List[str] = []
        for repo in (self.events, self.logs):
            records = await repo.list(include_deleted=True)
            if repo.recovered_from_corruption:
                violations.append(f"{repo.key}: stored value is not a readable JSON array")
            violations.extend(repo.check_invariants(records))
        return violations

    async def purge_expired_trash(self) -> Dict[str, int]:
        """Hard delete rows soft-deleted longer ago than the retention window."""
        cutoff = utcnow() - timedelta(days=self.settings.trash_retention_days)
        purged = {
            "events": await self.events.purge_deleted(cutoff),
            "logs": await self.logs.purge_deleted(cutoff),
        }
        if purged["events"] or purged["logs"]:
            logger.info("Purged expired trash: %(events)d events, %(logs)d logs", purged)
        return purged


_service: Optional[StorageService] = None


# PUBLIC_INTERFACE
async def get_storage_service() -> StorageService:
    """Return the process-wide StorageService, initializing it on first use."""
    global _service
    if _service is None:
        _service = StorageService()
    await _service.initialize()
    return _service
