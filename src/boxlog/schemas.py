from __future__ import annotations

from datetime import date, datetime
from typing import Any, ClassVar, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .codec import to_utc

# Shared type for incoming timestamps which can be a date, datetime, or ISO8601 string
TimestampInput = Union[date, datetime, str]

EventStatus = Literal["inbox", "planned", "in_progress", "completed", "cancelled"]

DEFAULT_EVENT_STATUS = "inbox"
DEFAULT_EVENT_COLOR = "#3b82f6"


# PUBLIC_INTERFACE
def parse_timestamp(value: Optional[TimestampInput]) -> Optional[datetime]:
    """
    Normalize timestamp input into an aware UTC datetime.
    - If value is a string, parse via datetime.fromisoformat ('Z' suffix allowed); date-only strings become 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - Naive datetimes are taken as UTC. Precision is truncated to milliseconds.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return to_utc(value)

    if isinstance(value, date):
        # Promote a date to a datetime at midnight
        return to_utc(datetime(value.year, value.month, value.day, 0, 0, 0))

    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return to_utc(datetime.fromisoformat(s))
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return to_utc(datetime(d.year, d.month, d.day, 0, 0, 0))
            except ValueError as e:
                raise ValueError(
                    "Invalid timestamp format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00Z')."
                ) from e

    # Any other type is invalid
    raise ValueError("Invalid type for timestamp; expected date, datetime, or ISO8601 string.")


def _strip_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not s:
        raise ValueError("title must not be empty")
    return s


class _Changes(BaseModel):
    """Base for partial updates: only fields the caller set are applied."""

    # Fields that may be changed but never cleared
    not_nullable: ClassVar[FrozenSet[str]] = frozenset()

    @model_validator(mode="after")
    def reject_cleared_required(self):
        cleared = sorted(
            n for n in self.not_nullable if n in self.model_fields_set and getattr(self, n) is None
        )
        if cleared:
            raise ValueError(f"fields cannot be cleared: {', '.join(cleared)}")
        return self

    def changes(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


# PUBLIC_INTERFACE
class EventCreate(BaseModel):
    """
    Schema for creating a new Event.

    Only the shape is checked here; end_date >= start_date is reported by
    StorageService.validate() rather than rejected.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Deep work block",
                "start_date": "2024-01-10T09:00:00Z",
                "end_date": "2024-01-10T11:00:00Z",
                "status": "planned",
                "priority": "important",
            }
        }
    )

    title: str = Field(..., description="Event title", min_length=1)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    start_date: datetime = Field(..., description="Start of the event")
    end_date: Optional[datetime] = Field(default=None, description="Optional end of the event")
    status: EventStatus = Field(default=DEFAULT_EVENT_STATUS, description="Workflow status")
    priority: Optional[str] = Field(default=None, description="Optional priority label, e.g. urgent or important")
    color: str = Field(default=DEFAULT_EVENT_COLOR, description="Display color")
    tags: Optional[List[str]] = Field(default=None, description="Tag ids")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _strip_title(v)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Optional[TimestampInput]) -> Optional[datetime]:
        return parse_timestamp(v)


# PUBLIC_INTERFACE
class EventUpdate(_Changes):
    """
    Schema for updating an existing Event.
    All fields are optional; only provided fields will be updated.
    """

    not_nullable: ClassVar[FrozenSet[str]] = frozenset({"title", "start_date", "status", "color"})

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[EventStatus] = None
    priority: Optional[str] = None
    color: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _strip_title(v)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Optional[TimestampInput]) -> Optional[datetime]:
        return parse_timestamp(v)


# PUBLIC_INTERFACE
class LogCreate(BaseModel):
    """
    Schema for recording time actually spent.

    duration (minutes) is derived from actual_start/actual_end when omitted.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Wrote report",
                "actual_start": "2024-01-10T09:05:00Z",
                "actual_end": "2024-01-10T10:35:00Z",
                "satisfaction": 4,
            }
        }
    )

    event_id: Optional[str] = Field(default=None, description="Event this log belongs to")
    title: str = Field(..., description="Log title", min_length=1)
    actual_start: datetime = Field(..., description="When the work started")
    actual_end: datetime = Field(..., description="When the work ended")
    duration: Optional[int] = Field(default=None, ge=0, description="Minutes spent")
    satisfaction: Optional[int] = Field(default=None, ge=1, le=5)
    focus_level: Optional[int] = Field(default=None, ge=1, le=5)
    energy_level: Optional[int] = Field(default=None, ge=1, le=5)
    note: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _strip_title(v)

    @field_validator("actual_start", "actual_end", mode="before")
    @classmethod
    def parse_dates(cls, v: Optional[TimestampInput]) -> Optional[datetime]:
        return parse_timestamp(v)


# PUBLIC_INTERFACE
class LogUpdate(_Changes):
    """
    Schema for updating an existing Log.
    All fields are optional; only provided fields will be updated.
    """

    not_nullable: ClassVar[FrozenSet[str]] = frozenset({"title", "actual_start", "actual_end", "duration"})

    event_id: Optional[str] = None
    title: Optional[str] = Field(default=None, min_length=1)
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=0)
    satisfaction: Optional[int] = Field(default=None, ge=1, le=5)
    focus_level: Optional[int] = Field(default=None, ge=1, le=5)
    energy_level: Optional[int] = Field(default=None, ge=1, le=5)
    note: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _strip_title(v)

    @field_validator("actual_start", "actual_end", mode="before")
    @classmethod
    def parse_dates(cls, v: Optional[TimestampInput]) -> Optional[datetime]:
        return parse_timestamp(v)
