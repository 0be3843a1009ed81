from __future__ import annotations

from datetime import datetime
from typing import List, Optional, TypedDict


# PUBLIC_INTERFACE
class EventEntity(TypedDict):
    """
    In-memory shape of a plannable, possibly time-boxed Event.

    Fields:
    - id: Globally unique identifier, immutable after creation
    - title: Non-empty title
    - description: Optional free text
    - start_date: Start timestamp (timezone-aware)
    - end_date: Optional end timestamp; when present it should be >= start_date
    - status: One of inbox, planned, in_progress, completed, cancelled
    - priority: Optional priority label
    - color: Display color
    - tags: Optional list of tag ids
    - created_at / updated_at: System-managed timestamps
    - deleted_at: Soft-delete marker; None while the event is live
    """

    id: str
    title: str
    description: Optional[str]
    start_date: datetime
    end_date: Optional[datetime]
    status: str
    priority: Optional[str]
    color: str
    tags: Optional[List[str]]
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime]


# PUBLIC_INTERFACE
class LogEntity(TypedDict):
    """
    In-memory shape of a Log: time actually spent, optionally tied to an Event.

    Ratings (satisfaction, focus_level, energy_level) are 1..5 when present.
    duration is in whole minutes.
    """

    id: str
    event_id: Optional[str]
    title: str
    actual_start: datetime
    actual_end: datetime
    duration: int
    satisfaction: Optional[int]
    focus_level: Optional[int]
    energy_level: Optional[int]
    note: Optional[str]
    tags: Optional[List[str]]
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime]


class StorageSnapshot(TypedDict, total=False):
    """Backup structure produced by export_all and consumed by import_all."""

    version: str
    exported_at: datetime
    events: List[EventEntity]
    logs: List[LogEntity]


class SizeReport(TypedDict):
    total_bytes: int
    quota_bytes: int
    events: int
    logs: int
    tags: int
    version: Optional[str]
