from datetime import UTC, date, datetime

from pydantic import NaiveDatetime
from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class Availability(SQLModel, table=True):
    """One row per configured calendar day.

    ``time_slots`` and ``booked_slots`` hold sorted "HH:MM" strings and
    ``booked_slots`` is always a subset of ``time_slots``. JSON columns are
    not mutation-tracked: always assign a new list.
    """

    __tablename__ = "availabilities"
    id: int | None = Field(default=None, primary_key=True)
    day: date = Field(unique=True, index=True)
    time_slots: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    booked_slots: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    updated_at: NaiveDatetime = Field(default_factory=_utc_naive_now, sa_column=Column(DateTime, nullable=False))


class DayAvailability(SQLModel):
    """Read-only projection of a day handed to callers."""

    day: date
    offered_slots: list[str] = []
    booked_slots: list[str] = []

    @property
    def bookable_slots(self) -> list[str]:
        booked = set(self.booked_slots)
        return [s for s in self.offered_slots if s not in booked]


class SlotSetResult(SQLModel):
    """Outcome of replacing a day's offered slots."""

    day: date
    offered_slots: list[str] = []
    booked_slots: list[str] = []
    dropped_slots: list[str] = []
    affected_appointment_ids: list[int] = []
