"""Entry point used by the HTTP layer.

Adds the booking horizon (today .. today + N months), the authorization
context (operator vs. self-service token) and transition facts on top of the
lifecycle and the availability store. Errors from the layers below propagate
unchanged.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import AppointmentNotFound, NotAuthorized, OutsideBookingHorizon
from app.core.security import appointment_token_matches
from app.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentStatus,
    AppointmentTransition,
)
from app.models.availability import DayAvailability, SlotSetResult
from app.models.operator import Operator
from app.services import appointment_lifecycle, availability_store, conflict_guard

logger = logging.getLogger(__name__)

TransitionListener = Callable[[AppointmentTransition], None]


@dataclass
class Actor:
    """Who is acting on an appointment: an operator, a token holder, or neither."""

    operator: Operator | None = None
    token: str | None = None

    @property
    def is_operator(self) -> bool:
        return self.operator is not None and self.operator.is_active


@dataclass
class ConfigureDayResult:
    slots: SlotSetResult
    cancelled: list[AppointmentTransition] = field(default_factory=list)


_listeners: list[TransitionListener] = []


def register_transition_listener(listener: TransitionListener) -> None:
    if listener not in _listeners:
        _listeners.append(listener)


def unregister_transition_listener(listener: TransitionListener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def log_transition(transition: AppointmentTransition) -> None:
    logger.info(
        "Appointment %s: %s -> %s at %s",
        transition.appointment_id,
        transition.previous_status.value if transition.previous_status else "-",
        transition.status.value,
        transition.requested_date.isoformat(),
    )


register_transition_listener(log_transition)


def publish_transition(transition: AppointmentTransition) -> None:
    """Hand a committed transition to every listener; one failing listener does not stop the others."""
    for listener in list(_listeners):
        try:
            listener(transition)
        except Exception:
            logger.exception("Transition listener %r failed for appointment %s", listener, transition.appointment_id)


def now() -> datetime:
    """Current naive wall-clock time at the garage."""
    return datetime.now(settings.garage_tz).replace(tzinfo=None, second=0, microsecond=0)


def today() -> date:
    return now().date()


def booking_horizon(reference: date | None = None) -> tuple[date, date]:
    start = reference or today()
    return start, start + relativedelta(months=settings.booking_horizon_months)


def _ensure_in_horizon(day: date) -> None:
    start, end = booking_horizon()
    if not start <= day <= end:
        raise OutsideBookingHorizon(
            f"{day.isoformat()} is outside the booking window {start.isoformat()} .. {end.isoformat()}",
            date=day,
            start=start,
            end=end,
        )


def _ensure_bookable(requested: datetime) -> None:
    """The slot must be inside the horizon and not already started."""
    _ensure_in_horizon(requested.date())
    current = now()
    if requested.replace(second=0, microsecond=0, tzinfo=None) < current:
        raise OutsideBookingHorizon(
            f"{requested.isoformat()} is in the past",
            date=requested.date(),
            time=requested.time(),
            now=current.isoformat(),
        )


def _ensure_operator(actor: Actor) -> None:
    if not actor.is_operator:
        raise NotAuthorized("Operator access required")


def _transition(
    appointment: Appointment,
    previous_status: AppointmentStatus | None,
    previous_date: datetime | None,
) -> AppointmentTransition | None:
    if previous_status == appointment.status and previous_date == appointment.requested_date:
        return None
    return AppointmentTransition(
        appointment_id=appointment.id,
        previous_status=previous_status,
        status=appointment.status,
        previous_requested_date=previous_date,
        requested_date=appointment.requested_date,
    )


# --- Availability ---


async def query_availability(
    session: AsyncSession, start: date, end: date
) -> list[DayAvailability]:
    """Configured days of [start, end] clamped to the booking horizon."""
    horizon_start, horizon_end = booking_horizon()
    start = max(start, horizon_start)
    end = min(end, horizon_end)
    if end < start:
        return []
    return await availability_store.get_range(session, start, end)


async def get_day_availability(session: AsyncSession, day: date) -> DayAvailability | None:
    row = await availability_store.get_day(session, day)
    return availability_store.to_day_availability(row) if row else None


async def configure_day(
    session: AsyncSession,
    day: date,
    slots: list[str | time],
    actor: Actor,
    allow_override_of_booked: bool = False,
    cancel_affected: bool = False,
) -> ConfigureDayResult:
    """Replace the offered slots of ``day``.

    With ``allow_override_of_booked`` booked slots may be removed; the
    appointments on them are returned, and cancelled afterwards only when
    ``cancel_affected`` is set.
    """
    _ensure_operator(actor)
    _ensure_in_horizon(day)
    availability_store.validate_slot_set(slots)
    async with conflict_guard.day_transaction(session, day):
        result = await availability_store.set_offered_slots(
            session, day, slots, override=allow_override_of_booked
        )
    cancelled: list[AppointmentTransition] = []
    if cancel_affected:
        for appointment_id in result.affected_appointment_ids:
            appointment = await appointment_lifecycle.get_appointment(session, appointment_id)
            previous_status = appointment.status
            appointment = await appointment_lifecycle.cancel(session, appointment_id)
            transition = _transition(appointment, previous_status, appointment.requested_date)
            if transition:
                cancelled.append(transition)
    return ConfigureDayResult(slots=result, cancelled=cancelled)


async def clear_day(
    session: AsyncSession,
    day: date,
    actor: Actor,
    allow_override_of_booked: bool = False,
    cancel_affected: bool = False,
) -> ConfigureDayResult:
    return await configure_day(
        session,
        day,
        [],
        actor,
        allow_override_of_booked=allow_override_of_booked,
        cancel_affected=cancel_affected,
    )


# --- Appointments ---


async def book(
    session: AsyncSession, data: AppointmentCreate
) -> tuple[Appointment, AppointmentTransition]:
    """Public booking: reserve the slot and create a PENDING appointment."""
    _ensure_bookable(data.requested_date)
    appointment = await appointment_lifecycle.create(session, data)
    return appointment, _transition(appointment, None, None)


async def authorize(
    session: AsyncSession, appointment_id: int, actor: Actor
) -> Appointment:
    """Load an appointment the actor may act on: any for operators, only their own for token holders."""
    try:
        appointment = await appointment_lifecycle.get_appointment(session, appointment_id)
    except AppointmentNotFound:
        if actor.is_operator:
            raise
        # Token holders get the same answer for unknown and foreign ids
        raise NotAuthorized(
            f"Not allowed to act on appointment {appointment_id}",
            appointment_id=appointment_id,
        ) from None
    if actor.is_operator:
        return appointment
    if appointment_token_matches(appointment.access_token, actor.token):
        return appointment
    raise NotAuthorized(
        f"Not allowed to act on appointment {appointment_id}",
        appointment_id=appointment_id,
    )


async def get_appointment_by_token(session: AsyncSession, token: str) -> Appointment:
    appointment = await appointment_lifecycle.get_by_token(session, token)
    if appointment is None:
        raise NotAuthorized("Unknown appointment token")
    return appointment


async def list_appointments(
    session: AsyncSession,
    actor: Actor,
    start: date | None = None,
    end: date | None = None,
    status: AppointmentStatus | None = None,
) -> list[Appointment]:
    _ensure_operator(actor)
    return await appointment_lifecycle.list_appointments(session, start=start, end=end, status=status)


async def confirm(
    session: AsyncSession, appointment_id: int, actor: Actor
) -> tuple[Appointment, AppointmentTransition | None]:
    """Operators confirm any request; a token holder may only accept a proposed change (MODIFIED)."""
    appointment = await authorize(session, appointment_id, actor)
    if not actor.is_operator and appointment.status != AppointmentStatus.MODIFIED:
        raise NotAuthorized(
            "Only the garage can confirm this appointment",
            appointment_id=appointment_id,
        )
    previous_status = appointment.status
    appointment = await appointment_lifecycle.confirm(session, appointment_id)
    return appointment, _transition(appointment, previous_status, appointment.requested_date)


async def cancel(
    session: AsyncSession, appointment_id: int, actor: Actor
) -> tuple[Appointment, AppointmentTransition | None]:
    appointment = await authorize(session, appointment_id, actor)
    previous_status = appointment.status
    appointment = await appointment_lifecycle.cancel(session, appointment_id)
    return appointment, _transition(appointment, previous_status, appointment.requested_date)


async def reschedule(
    session: AsyncSession, appointment_id: int, new_date: datetime, actor: Actor
) -> tuple[Appointment, AppointmentTransition | None]:
    appointment = await authorize(session, appointment_id, actor)
    _ensure_bookable(new_date)
    previous_status, previous_date = appointment.status, appointment.requested_date
    appointment = await appointment_lifecycle.reschedule(session, appointment_id, new_date)
    return appointment, _transition(appointment, previous_status, previous_date)


async def complete(
    session: AsyncSession, appointment_id: int, actor: Actor
) -> tuple[Appointment, AppointmentTransition | None]:
    _ensure_operator(actor)
    appointment = await appointment_lifecycle.get_appointment(session, appointment_id)
    previous_status = appointment.status
    appointment = await appointment_lifecycle.complete(session, appointment_id)
    return appointment, _transition(appointment, previous_status, appointment.requested_date)


async def purge(session: AsyncSession, appointment_id: int, actor: Actor) -> None:
    _ensure_operator(actor)
    await appointment_lifecycle.purge(session, appointment_id)
