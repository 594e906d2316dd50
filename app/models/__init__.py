from app.models.operator import Operator, OperatorCreate, OperatorPublic
from app.models.refresh_token import RefreshToken
from app.models.availability import Availability, DayAvailability, SlotSetResult
from app.models.appointment import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Appointment,
    AppointmentCreate,
    AppointmentStatus,
    AppointmentTransition,
    ServiceType,
)

__all__ = [
    "Operator",
    "OperatorCreate",
    "OperatorPublic",
    "RefreshToken",
    "Availability",
    "DayAvailability",
    "SlotSetResult",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "Appointment",
    "AppointmentCreate",
    "AppointmentStatus",
    "AppointmentTransition",
    "ServiceType",
]
