"""Appointment state machine.

    PENDING   -> CONFIRMED | CANCELLED | MODIFIED
    CONFIRMED -> CANCELLED | COMPLETED | MODIFIED
    MODIFIED  -> CONFIRMED | CANCELLED
    CANCELLED, COMPLETED: terminal

Each transition runs in a single ``conflict_guard.day_transaction``: the slot
change and the status change are committed together or not at all. The
appointment row is re-read under the day lock before it is validated.
"""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AppointmentNotFound, InvalidTransition, StorageUnavailable
from app.core.security import generate_appointment_token
from app.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentStatus,
)
from app.services import conflict_guard

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.MODIFIED}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.MODIFIED}
    ),
    AppointmentStatus.MODIFIED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
}

# Re-reads allowed when a concurrent reschedule moves the appointment to
# another day between the unlocked read and taking the day lock.
MAX_LOCK_ATTEMPTS = 3


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def _ensure_transition(appointment: Appointment, target: AppointmentStatus) -> None:
    if not can_transition(appointment.status, target):
        raise InvalidTransition(
            f"Cannot move appointment {appointment.id} from {appointment.status.value} to {target.value}",
            appointment_id=appointment.id,
            status=appointment.status.value,
            target=target.value,
        )


async def get_appointment(session: AsyncSession, appointment_id: int) -> Appointment:
    result = await session.execute(
        select(Appointment)
        .where(Appointment.id == appointment_id)
        .execution_options(populate_existing=True)
    )
    appointment = result.scalar_one_or_none()
    if appointment is None:
        raise AppointmentNotFound(
            f"Appointment {appointment_id} not found", appointment_id=appointment_id
        )
    return appointment


async def get_by_token(session: AsyncSession, token: str) -> Appointment | None:
    result = await session.execute(
        select(Appointment)
        .where(Appointment.access_token == token)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_appointments(
    session: AsyncSession,
    start: date | None = None,
    end: date | None = None,
    status: AppointmentStatus | None = None,
) -> list[Appointment]:
    q = select(Appointment).order_by(Appointment.requested_date.desc())
    if start:
        q = q.where(Appointment.requested_date >= datetime.combine(start, datetime.min.time()))
    if end:
        q = q.where(
            Appointment.requested_date < datetime.combine(end + timedelta(days=1), datetime.min.time())
        )
    if status:
        q = q.where(Appointment.status == status)
    result = await session.execute(q)
    return list(result.scalars().all())


@asynccontextmanager
async def _locked_appointment(
    session: AsyncSession, appointment_id: int, *extra_days: date
) -> AsyncIterator[Appointment]:
    """Yield the appointment re-read under the lock of its current day (and ``extra_days``)."""
    for _ in range(MAX_LOCK_ATTEMPTS):
        appointment = await get_appointment(session, appointment_id)
        day = appointment.requested_date.date()
        async with conflict_guard.day_transaction(session, day, *extra_days):
            await session.refresh(appointment, with_for_update=True)
            if appointment.requested_date.date() == day:
                yield appointment
                return
        logger.debug("Appointment %s moved off %s while waiting for its lock", appointment_id, day)
    raise StorageUnavailable(
        "Appointment is being rescheduled concurrently, retry the request",
        appointment_id=appointment_id,
    )


async def create(session: AsyncSession, data: AppointmentCreate) -> Appointment:
    """Reserve the requested slot and record a PENDING appointment."""
    requested = data.requested_date.replace(second=0, microsecond=0, tzinfo=None)
    async with conflict_guard.day_transaction(session, requested.date()):
        await conflict_guard.reserve(session, requested.date(), requested.time())
        appointment = Appointment(
            client_ref=data.client_ref,
            vehicle_snapshot=dict(data.vehicle_snapshot),
            service=data.service,
            description=data.description,
            requested_date=requested,
            status=AppointmentStatus.PENDING,
            access_token=generate_appointment_token(),
        )
        session.add(appointment)
        await session.flush()
    logger.info("Appointment %s requested for %s", appointment.id, requested.isoformat())
    return appointment


async def confirm(session: AsyncSession, appointment_id: int) -> Appointment:
    async with _locked_appointment(session, appointment_id) as appointment:
        _ensure_transition(appointment, AppointmentStatus.CONFIRMED)
        appointment.status = AppointmentStatus.CONFIRMED
        appointment.touch()
        session.add(appointment)
    logger.info("Appointment %s confirmed", appointment_id)
    return appointment


async def cancel(session: AsyncSession, appointment_id: int) -> Appointment:
    """Cancel and free the slot. Cancelling a cancelled appointment is a no-op."""
    async with _locked_appointment(session, appointment_id) as appointment:
        if appointment.status == AppointmentStatus.CANCELLED:
            return appointment
        _ensure_transition(appointment, AppointmentStatus.CANCELLED)
        await conflict_guard.release(
            session, appointment.requested_date.date(), appointment.requested_date.time()
        )
        appointment.status = AppointmentStatus.CANCELLED
        appointment.touch()
        session.add(appointment)
    logger.info("Appointment %s cancelled", appointment_id)
    return appointment


async def reschedule(
    session: AsyncSession, appointment_id: int, new_date: datetime
) -> Appointment:
    """Move to ``new_date`` and mark MODIFIED pending re-confirmation."""
    target = new_date.replace(second=0, microsecond=0, tzinfo=None)
    async with _locked_appointment(session, appointment_id, target.date()) as appointment:
        if appointment.status not in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED):
            raise InvalidTransition(
                f"Cannot reschedule appointment {appointment.id} while {appointment.status.value}",
                appointment_id=appointment.id,
                status=appointment.status.value,
                target=AppointmentStatus.MODIFIED.value,
            )
        await conflict_guard.move(session, appointment.requested_date, target)
        appointment.requested_date = target
        appointment.status = AppointmentStatus.MODIFIED
        appointment.touch()
        session.add(appointment)
    logger.info("Appointment %s rescheduled to %s", appointment_id, target.isoformat())
    return appointment


async def complete(session: AsyncSession, appointment_id: int) -> Appointment:
    async with _locked_appointment(session, appointment_id) as appointment:
        _ensure_transition(appointment, AppointmentStatus.COMPLETED)
        await conflict_guard.release(
            session, appointment.requested_date.date(), appointment.requested_date.time()
        )
        appointment.status = AppointmentStatus.COMPLETED
        appointment.touch()
        session.add(appointment)
    logger.info("Appointment %s completed", appointment_id)
    return appointment


async def purge(session: AsyncSession, appointment_id: int) -> None:
    """Administrative hard delete; frees the slot first when the appointment still holds one."""
    async with _locked_appointment(session, appointment_id) as appointment:
        if appointment.is_active:
            await conflict_guard.release(
                session, appointment.requested_date.date(), appointment.requested_date.time()
            )
        await session.delete(appointment)
    logger.warning("Appointment %s deleted", appointment_id)
