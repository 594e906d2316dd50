from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import NaiveDatetime
from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class ServiceType(str, Enum):
    DIAGNOSTIC = "diagnostic"
    MECANIQUE = "mecanique"
    PIECES_PREMIUM = "pieces-premium"
    REPROG = "reprog"


class AppointmentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    MODIFIED = "MODIFIED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


# Statuses that hold a slot in the calendar
ACTIVE_STATUSES = frozenset(
    {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.MODIFIED}
)
TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    id: int | None = Field(default=None, primary_key=True)
    client_ref: str = Field(index=True)
    vehicle_snapshot: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    service: ServiceType
    description: str | None = None
    # Wall-clock day + time of the occupied slot
    requested_date: NaiveDatetime = Field(sa_column=Column(DateTime, nullable=False, index=True))
    status: AppointmentStatus = Field(default=AppointmentStatus.PENDING, index=True)
    access_token: str = Field(unique=True, index=True)
    created_at: NaiveDatetime = Field(default_factory=_utc_naive_now, sa_column=Column(DateTime, nullable=False))
    updated_at: NaiveDatetime = Field(default_factory=_utc_naive_now, sa_column=Column(DateTime, nullable=False))

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def touch(self) -> None:
        self.updated_at = _utc_naive_now()


class AppointmentCreate(SQLModel):
    client_ref: str
    vehicle_snapshot: dict[str, Any]
    service: ServiceType
    description: str | None = None
    requested_date: datetime


class AppointmentTransition(SQLModel):
    """A status change a notifier can react to."""

    appointment_id: int
    previous_status: AppointmentStatus | None = None
    status: AppointmentStatus
    previous_requested_date: datetime | None = None
    requested_date: datetime
    occurred_at: datetime = Field(default_factory=_utc_naive_now)
