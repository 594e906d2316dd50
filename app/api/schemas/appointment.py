from datetime import date, datetime
from typing import Any

from pydantic import ConfigDict, Field, field_validator, model_validator

from app.api.schemas.common import CamelModel, to_garage_wall_clock
from app.models.appointment import AppointmentStatus, ServiceType

SLOT_PATTERN = r"^([0-1][0-9]|2[0-3]):[0-5][0-9]$"


class VehicleSnapshot(CamelModel):
    """Copy of the vehicle at booking time; unknown keys are kept as-is."""

    model_config = ConfigDict(extra="allow")

    brand: str = Field(min_length=1)
    model: str = Field(min_length=1)
    year: int = Field(ge=1900, le=2100)
    trim: str | None = None


class BookAppointmentRequest(CamelModel):
    client_ref: str = Field(min_length=1)
    vehicle_snapshot: VehicleSnapshot
    service: ServiceType
    description: str | None = Field(default=None, max_length=2000)
    day: date = Field(alias="date")
    time: str = Field(pattern=SLOT_PATTERN)


class UpdateAppointmentRequest(CamelModel):
    status: AppointmentStatus | None = None
    requested_date: datetime | None = None

    @field_validator("requested_date")
    @classmethod
    def _wall_clock(cls, value: datetime | None) -> datetime | None:
        return to_garage_wall_clock(value) if value is not None else None

    @model_validator(mode="after")
    def _one_change(self) -> "UpdateAppointmentRequest":
        if (self.status is None) == (self.requested_date is None):
            raise ValueError("Provide exactly one of status or requestedDate")
        if self.status not in (None, AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED):
            raise ValueError("status must be CONFIRMED or COMPLETED")
        return self


class AppointmentPublic(CamelModel):
    id: int
    client_ref: str
    vehicle_snapshot: dict[str, Any]
    service: ServiceType
    description: str | None = None
    requested_date: datetime
    day: str = Field(alias="date")  # YYYY-MM-DD
    time: str  # HH:MM
    status: AppointmentStatus
    created_at: datetime
    updated_at: datetime


class AppointmentCreated(AppointmentPublic):
    access_token: str


class CancelResponse(CamelModel):
    success: bool = True
    data: AppointmentPublic
