from datetime import date, datetime

from pydantic import Field, field_validator

from app.api.schemas.common import CamelModel, to_garage_wall_clock


class DaySlots(CamelModel):
    # Bookable slots: offered minus booked
    time_slots: list[str]
    booked_slots: list[str]
    offered_slots: list[str]


class DayAvailabilityOut(DaySlots):
    day: str = Field(alias="date")  # YYYY-MM-DD


class SingleDayResponse(CamelModel):
    availability: DayAvailabilityOut | None = None


class SetAvailabilityRequest(CamelModel):
    day: date = Field(alias="date")
    time_slots: list[str]
    override: bool = False
    cancel_affected: bool = False

    @field_validator("day", mode="before")
    @classmethod
    def _strip_time_of_day(cls, value):
        """Accept a full ISO datetime (the admin editor sends the garage's local
        midnight as a UTC instant) and keep its calendar day at the garage."""
        if isinstance(value, str) and "T" in value:
            value = datetime.fromisoformat(value)
        if isinstance(value, datetime):
            return to_garage_wall_clock(value).date()
        return value


class SetAvailabilityResponse(DayAvailabilityOut):
    affected_appointments: list[int] = []
    cancelled_appointments: list[int] = []
