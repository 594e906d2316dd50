"""Scheduling error taxonomy.

Every error carries the HTTP status the API answers with, a stable ``code``
for clients and a ``context`` dict naming the day, slot or appointment
involved. Services raise these and let them propagate; ``app.main`` renders
them.
"""
from datetime import date, time
from typing import Any

from fastapi import status


def _jsonable(value: Any) -> Any:
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


class SchedulingError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "scheduling_error"
    retryable: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: _jsonable(v) for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.context}


class InvalidSlotSet(SchedulingError):
    code = "invalid_slot_set"


class SlotInUse(SchedulingError):
    code = "slot_in_use"


class OutsideBookingHorizon(SchedulingError):
    code = "outside_booking_horizon"


class SlotNotOffered(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_not_offered"


class SlotAlreadyBooked(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_already_booked"


class InvalidTransition(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class AppointmentNotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "appointment_not_found"


class NotAuthorized(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_authorized"


class StorageUnavailable(SchedulingError):
    """Transient storage failure (lock wait timeout, dropped connection). Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "storage_unavailable"
    retryable = True
