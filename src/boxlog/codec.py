"""
Conversion between in-memory records and their stored JSON shape.

In memory, records use snake_case keys and timezone-aware datetimes. Stored
rows use camelCase keys and ISO-8601 UTC strings with millisecond precision
(``2024-01-10T09:30:00.000Z``). Optional fields that are None are omitted
from the stored row and come back as None. Keys a codec does not know about
are carried through untouched in both directions.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Tuple


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime truncated to milliseconds; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def encode_datetime(value: datetime) -> str:
    return to_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def decode_datetime(value: str) -> Any:
    """
    Parse an ISO-8601 string into an aware datetime.

    A malformed string is returned unchanged rather than raising; it shows up
    as an invalid value in StorageService.validate().
    """
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Field:
    name: str
    stored: str
    is_date: bool = False


class RecordCodec:
    """Bidirectional mapping for one record kind."""

    def __init__(self, kind: str, fields: Tuple[Field, ...]) -> None:
        self.kind = kind
        self.fields = fields
        self._by_name = {f.name: f for f in fields}
        self._by_stored = {f.stored: f for f in fields}

    def date_fields(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields if f.is_date)

    def to_stored(self, record: Dict[str, Any]) -> Dict[str, Any]:
        stored: Dict[str, Any] = {}
        for f in self.fields:
            value = record.get(f.name)
            if value is None:
                continue
            if f.is_date and isinstance(value, datetime):
                value = encode_datetime(value)
            stored[f.stored] = value
        for key, value in record.items():
            if key not in self._by_name:
                stored[key] = value
        return stored

    def from_stored(self, stored: Dict[str, Any]) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        for f in self.fields:
            value = stored.get(f.stored)
            if f.is_date and isinstance(value, str):
                value = decode_datetime(value)
            record[f.name] = value
        for key, value in stored.items():
            if key not in self._by_stored:
                record[key] = value
        return record


EVENT_CODEC = RecordCodec(
    "event",
    (
        Field("id", "id"),
        Field("title", "title"),
        Field("description", "description"),
        Field("start_date", "startDate", is_date=True),
        Field("end_date", "endDate", is_date=True),
        Field("status", "status"),
        Field("priority", "priority"),
        Field("color", "color"),
        Field("tags", "tags"),
        Field("created_at", "createdAt", is_date=True),
        Field("updated_at", "updatedAt", is_date=True),
        Field("deleted_at", "deletedAt", is_date=True),
    ),
)

LOG_CODEC = RecordCodec(
    "log",
    (
        Field("id", "id"),
        Field("event_id", "eventId"),
        Field("title", "title"),
        Field("actual_start", "actualStart", is_date=True),
        Field("actual_end", "actualEnd", is_date=True),
        Field("duration", "duration"),
        Field("satisfaction", "satisfaction"),
        Field("focus_level", "focusLevel"),
        Field("energy_level", "energyLevel"),
        Field("note", "note"),
        Field("tags", "tags"),
        Field("created_at", "createdAt", is_date=True),
        Field("updated_at", "updatedAt", is_date=True),
        Field("deleted_at", "deletedAt", is_date=True),
    ),
)
