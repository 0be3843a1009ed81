from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel

from .codec import EVENT_CODEC, LOG_CODEC, RecordCodec
from .db import KeyValueStore, byte_length, read_value, write_value
from .errors import StorageCorruptionError
from .models import EventEntity, LogEntity
from .mutex import KeyedMutex
from .quota import QuotaGuard
from .schemas import (
    EventCreate,
    EventUpdate,
    LogCreate,
    LogUpdate,
    TimestampInput,
    parse_timestamp,
)
from .utils import new_id, utcnow

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", EventEntity, LogEntity)


def overlaps(
    record_start: datetime, record_end: datetime, start: datetime, end: datetime
) -> bool:
    """Inclusive interval overlap: containment, partial overlap and boundary touch all count."""
    return record_start <= end and record_end >= start


# PUBLIC_INTERFACE
class CollectionRepository(ABC, Generic[RecordT]):
    """
    CRUD, range query and soft delete over one collection stored as a single
    JSON array under one substrate key.

    Every mutation is a read-modify-write of the whole array, serialized by
    the shared KeyedMutex on the collection key. Reads do not take the lock:
    they see the last fully written value, never a torn one.
    """

    kind: str
    codec: RecordCodec
    create_model: Type[BaseModel]
    update_model: Type[BaseModel]

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        mutex: KeyedMutex,
        quota: QuotaGuard,
    ) -> None:
        self._store = store
        self.key = key
        self._mutex = mutex
        self._quota = quota
        # Set when the last read found an unparseable value and fell back to []
        self.recovered_from_corruption = False

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _build(self, data: BaseModel) -> Dict[str, Any]:
        """Turn a validated create model into a full record."""

    @abstractmethod
    def _interval(self, record: Mapping[str, Any]) -> Tuple[Any, Any]:
        """Return the (start, end) a record occupies for range queries."""

    @abstractmethod
    def _check(self, record: Mapping[str, Any]) -> List[str]:
        """Return invariant violations for one record, without the id prefix."""

    def _apply_changes(self, record: Dict[str, Any], changes: Dict[str, Any]) -> None:
        record.update(changes)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _decode(self, raw: Optional[str]) -> List[Dict[str, Any]]:
        self.recovered_from_corruption = False
        if raw is None:
            return []
        try:
            rows = json.loads(raw)
        except ValueError:
            rows = None
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            logger.warning("Stored value under %s is not a JSON array of objects; reading it as empty", self.key)
            self.recovered_from_corruption = True
            return []
        return [self.codec.from_stored(r) for r in rows]

    def _encode(self, records: List[Dict[str, Any]]) -> str:
        try:
            return json.dumps(
                [self.codec.to_stored(r) for r in records],
                ensure_ascii=False,
                separators=(",", ":"),
            )
        except (TypeError, ValueError) as e:
            raise StorageCorruptionError(self.key, str(e)) from e

    async def _load(self) -> List[Dict[str, Any]]:
        return self._decode(await read_value(self._store, self.key))

    async def _save(self, records: List[Dict[str, Any]]) -> None:
        await write_value(self._store, self.key, self._encode(records))

    @staticmethod
    def _find(records: List[Dict[str, Any]], record_id: str) -> Optional[int]:
        for i, r in enumerate(records):
            if r.get("id") == record_id:
                return i
        return None

    def _coerce(self, model: Type[BaseModel], data: Union[BaseModel, Mapping[str, Any]]) -> BaseModel:
        if isinstance(data, model):
            return data
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        # Unknown keys such as id or created_at are ignored by the schema.
        return model.model_validate(data)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, data: Union[BaseModel, Mapping[str, Any]]) -> RecordT:
        """Create a record with a fresh id and append it to the collection."""
        model = self._coerce(self.create_model, data)
        now = utcnow()
        record = self._build(model)
        record["id"] = new_id(self.kind)
        record["created_at"] = now
        record["updated_at"] = now
        record["deleted_at"] = None

        async with self._mutex.hold(self.key):
            raw = await read_value(self._store, self.key)
            records = self._decode(raw)
            records.append(record)
            serialized = self._encode(records)
            current = byte_length(raw) if raw is not None else -byte_length(self.key)
            await self._quota.check(self.key, byte_length(serialized) - current)
            await write_value(self._store, self.key, serialized)

        logger.debug("Created %s %s", self.kind, record["id"])
        return record  # type: ignore[return-value]

    async def update(
        self, record_id: str, data: Union[BaseModel, Mapping[str, Any]]
    ) -> Optional[RecordT]:
        """Merge the provided fields into an existing record. Return it, or None if not found."""
        changes = self._coerce(self.update_model, data).changes()  # type: ignore[attr-defined]
        async with self._mutex.hold(self.key):
            records = await self._load()
            idx = self._find(records, record_id)
            if idx is None:
                return None
            updated = dict(records[idx])
            self._apply_changes(updated, changes)
            updated["id"] = record_id
            updated["updated_at"] = utcnow()
            records[idx] = updated
            await self._save(records)
        return updated  # type: ignore[return-value]

    async def delete(self, record_id: str, soft: bool = True) -> bool:
        """
        Soft delete stamps deleted_at and keeps the row; hard delete removes it.
        Return True if the record existed.
        """
        async with self._mutex.hold(self.key):
            records = await self._load()
            idx = self._find(records, record_id)
            if idx is None:
                return False
            if soft:
                now = utcnow()
                records[idx] = {**records[idx], "deleted_at": now, "updated_at": now}
            else:
                del records[idx]
            await self._save(records)
        logger.debug("Deleted %s %s (soft=%s)", self.kind, record_id, soft)
        return True

    async def restore(self, record_id: str) -> Optional[RecordT]:
        """Clear the soft-delete marker. Return the record, or None if not found."""
        async with self._mutex.hold(self.key):
            records = await self._load()
            idx = self._find(records, record_id)
            if idx is None:
                return None
            restored = {**records[idx], "deleted_at": None, "updated_at": utcnow()}
            records[idx] = restored
            await self._save(records)
        return restored  # type: ignore[return-value]

    async def purge_deleted(self, older_than: datetime) -> int:
        """Hard delete soft-deleted records whose deleted_at is before ``older_than``."""
        cutoff = parse_timestamp(older_than)
        async with self._mutex.hold(self.key):
            records = await self._load()
            kept = [
                r
                for r in records
                if not (isinstance(r.get("deleted_at"), datetime) and r["deleted_at"] < cutoff)
            ]
            removed = len(records) - len(kept)
            if removed:
                await self._save(kept)
        return removed

    async def replace_all(self, records: List[Mapping[str, Any]]) -> None:
        """Overwrite the whole collection with ``records`` (used by import)."""
        async with self._mutex.hold(self.key):
            await self._save([dict(r) for r in records])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, record_id: str) -> Optional[RecordT]:
        """Return a record by id, soft-deleted ones included, or None if not found."""
        records = await self._load()
        idx = self._find(records, record_id)
        return None if idx is None else records[idx]  # type: ignore[return-value]

    async def list(self, include_deleted: bool = False) -> List[RecordT]:
        records = await self._load()
        if not include_deleted:
            records = [r for r in records if r.get("deleted_at") is None]
        return records  # type: ignore[return-value]

    async def list_by_date_range(self, start: TimestampInput, end: TimestampInput) -> List[RecordT]:
        """
        Return non-deleted records whose interval overlaps [start, end], inclusive.
        Records with unreadable dates are skipped.
        """
        lo = parse_timestamp(start)
        hi = parse_timestamp(end)
        result = []
        for r in await self.list():
            r_start, r_end = self._interval(r)
            if not isinstance(r_start, datetime) or not isinstance(r_end, datetime):
                continue
            if overlaps(r_start, r_end, lo, hi):
                result.append(r)
        return result

    def check_invariants(self, records: List[Mapping[str, Any]]) -> List[str]:
        """Describe every record that breaks a required-field or ordering invariant."""
        violations = []
        for r in records:
            rid = r.get("id") or "<missing id>"
            if not r.get("id"):
                violations.append(f"{self.kind} {rid}: missing id")
            for problem in self._check(r):
                violations.append(f"{self.kind} {rid}: {problem}")
        return violations


def _check_dates(record: Mapping[str, Any], codec: RecordCodec, required: Tuple[str, ...]) -> List[str]:
    problems = []
    for f in codec.fields:
        if not f.is_date:
            continue
        value = record.get(f.name)
        if value is None:
            if f.name in required:
                problems.append(f"missing {f.stored}")
        elif not isinstance(value, datetime):
            problems.append(f"invalid {f.stored} value {value!r}")
    return problems


def _check_title(record: Mapping[str, Any]) -> List[str]:
    title = record.get("title")
    if not isinstance(title, str) or not title.strip():
        return ["missing title"]
    return []


class EventRepository(CollectionRepository[EventEntity]):
    """Repository for Events stored under the events key."""

    kind = "event"
    codec = EVENT_CODEC
    create_model = EventCreate
    update_model = EventUpdate

    def _build(self, data: BaseModel) -> Dict[str, Any]:
        return data.model_dump()

    def _interval(self, record: Mapping[str, Any]) -> Tuple[Any, Any]:
        start = record.get("start_date")
        end = record.get("end_date")
        return start, (end if end is not None else start)

    def _check(self, record: Mapping[str, Any]) -> List[str]:
        problems = _check_title(record)
        problems += _check_dates(record, self.codec, ("start_date", "created_at", "updated_at"))
        if not record.get("status"):
            problems.append("missing status")
        start, end = record.get("start_date"), record.get("end_date")
        if isinstance(start, datetime) and isinstance(end, datetime) and end < start:
            problems.append("endDate is before startDate")
        return problems


def _minutes_between(start: Any, end: Any) -> Optional[int]:
    if isinstance(start, datetime) and isinstance(end, datetime):
        return int((end - start).total_seconds() // 60)
    return None


class LogRepository(CollectionRepository[LogEntity]):
    """Repository for Logs stored under the logs key."""

    kind = "log"
    codec = LOG_CODEC
    create_model = LogCreate
    update_model = LogUpdate

    def _build(self, data: BaseModel) -> Dict[str, Any]:
        record = data.model_dump()
        if record["duration"] is None:
            record["duration"] = max(_minutes_between(record["actual_start"], record["actual_end"]) or 0, 0)
        return record

    def _apply_changes(self, record: Dict[str, Any], changes: Dict[str, Any]) -> None:
        record.update(changes)
        bounds_changed = "actual_start" in changes or "actual_end" in changes
        if bounds_changed and "duration" not in changes:
            minutes = _minutes_between(record.get("actual_start"), record.get("actual_end"))
            record["duration"] = max(minutes or 0, 0)

    def _interval(self, record: Mapping[str, Any]) -> Tuple[Any, Any]:
        return record.get("actual_start"), record.get("actual_end")

    def _check(self, record: Mapping[str, Any]) -> List[str]:
        problems = _check_title(record)
        problems += _check_dates(
            record, self.codec, ("actual_start", "actual_end", "created_at", "updated_at")
        )
        start, end = record.get("actual_start"), record.get("actual_end")
        if isinstance(start, datetime) and isinstance(end, datetime) and end < start:
            problems.append("actualEnd is before actualStart")
        for name in ("satisfaction", "focus_level", "energy_level"):
            value = record.get(name)
            if value is not None and (not isinstance(value, int) or not 1 <= value <= 5):
                problems.append(f"{name} must be between 1 and 5, got {value!r}")
        return problems

    async def list_by_event(self, event_id: str) -> List[LogEntity]:
        """Return non-deleted logs tied to ``event_id``."""
        return [r for r in await self.list() if r.get("event_id") == event_id]
