"""Records exchanged by the calendar sync core."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_CALENDAR_SUMMARY = "Sin nombre"
DEFAULT_CALENDAR_COLOR = "#4285f4"


def _ensure_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class TokenGrant(BaseModel):
    """Result of an OAuth token exchange (refresh or authorization code)."""

    model_config = ConfigDict(extra="forbid")

    access_token: str = Field(min_length=1)
    expires_at: datetime
    scope: str | None = None
    refresh_token: str | None = None

    @field_validator("expires_at")
    @classmethod
    def _aware_expiry(cls, value: datetime) -> datetime:
        return _ensure_aware(value)

    def __repr__(self) -> str:
        return (
            f"TokenGrant(access_token=<REDACTED>, expires_at={self.expires_at!r}, "
            f"scope={self.scope!r}, refresh_token="
            f"{'<REDACTED>' if self.refresh_token else None})"
        )

    __str__ = __repr__


class CalendarCredential(BaseModel):
    """One user's stored OAuth credential for their external calendar account."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1)
    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    expires_at: datetime
    scope: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def _aware_timestamps(cls, value: datetime | None) -> datetime | None:
        return None if value is None else _ensure_aware(value)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True once ``now`` has reached ``expires_at``."""
        current = now or datetime.now(UTC)
        return current >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"CalendarCredential("
            f"user_id={self.user_id!r}, "
            f"access_token=<REDACTED>, "
            f"refresh_token=<REDACTED>, "
            f"expires_at={self.expires_at!r}, "
            f"scope={self.scope!r})"
        )

    # Pydantic's default __str__ would expose field values verbatim.
    __str__ = __repr__


# ---------------------------------------------------------------------------
# Remote calendar data
# ---------------------------------------------------------------------------


class RemoteCalendar(BaseModel):
    """A calendar visible to the connected account."""

    id: str
    summary: str = DEFAULT_CALENDAR_SUMMARY
    primary: bool = False
    background_color: str = DEFAULT_CALENDAR_COLOR


class RemoteEvent(BaseModel):
    """An event read from a remote calendar. Identity is ``id``."""

    id: str
    calendar_id: str
    start: datetime
    end: datetime
    title: str = ""
    description: str | None = None
    all_day: bool = False
    html_link: str | None = None
    status: str | None = None


class BusyInterval(BaseModel):
    start: datetime
    end: datetime


# ---------------------------------------------------------------------------
# Tasks and links
# ---------------------------------------------------------------------------


class TaskSnapshot(BaseModel):
    """The external task record as seen at one mutation."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    title: str = ""
    description: str | None = None
    due_date: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_record_aliases(cls, data: Any) -> Any:
        # Task CRUD rows use camelCase ``dueDate`` in some callers.
        if isinstance(data, dict) and "due_date" not in data and "dueDate" in data:
            data = {**data, "due_date": data["dueDate"]}
        if isinstance(data, dict) and data.get("id") is not None:
            data = {**data, "id": str(data["id"])}
        return data

    @field_validator("due_date")
    @classmethod
    def _aware_due_date(cls, value: datetime | None) -> datetime | None:
        return None if value is None else _ensure_aware(value)

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def has_due_date(self) -> bool:
        return self.due_date is not None


class TaskEventLink(BaseModel):
    """Persisted cross-reference between a local task and its remote event."""

    task_id: str
    user_id: str
    remote_event_id: str
    calendar_id: str
    last_synced_at: datetime

    @field_validator("last_synced_at")
    @classmethod
    def _aware_synced_at(cls, value: datetime) -> datetime:
        return _ensure_aware(value)


class SyncIntent(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


ReconcileOutcome = Literal["applied", "noop", "not_connected", "self_healed"]


class ReconcileResult(BaseModel):
    task_id: str
    intent: SyncIntent
    outcome: ReconcileOutcome
    remote_event_id: str | None = None
