"""Per-day offered and booked slots.

Rows are read and replaced here; booking marks are flipped only through
``try_mark_booked`` / ``mark_free``, which ``conflict_guard`` calls on a row it
has locked. Slot-set replacement must also run inside a day transaction
(``conflict_guard.day_transaction``).
"""
import logging
import re
from collections.abc import Sequence
from datetime import UTC, date, datetime, time

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import InvalidSlotSet, SlotInUse, SlotNotOffered
from app.models.appointment import ACTIVE_STATUSES, Appointment
from app.models.availability import Availability, DayAvailability, SlotSetResult

logger = logging.getLogger(__name__)

SLOT_FORMAT = "%H:%M"
_SLOT_RE = re.compile(r"^([0-1][0-9]|2[0-3]):[0-5][0-9]$")


def _utc_naive_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def format_slot(slot: time) -> str:
    return slot.strftime(SLOT_FORMAT)


def parse_slot(value: str | time) -> time:
    """Parse "HH:MM" (or accept a time with no seconds part)."""
    if isinstance(value, time):
        if value.second or value.microsecond or value.tzinfo is not None:
            raise InvalidSlotSet(f"Slot {value} must be a whole minute", slot=str(value))
        return value
    if not isinstance(value, str) or not _SLOT_RE.match(value):
        raise InvalidSlotSet(f"Slot {value!r} is not in HH:MM format", slot=str(value))
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def _on_grid(slot: time) -> bool:
    return (slot.hour * 60 + slot.minute) % settings.slot_interval_minutes == 0


def _in_booking_windows(slot: time) -> bool:
    return any(start <= slot < end for start, end in settings.booking_windows_list)


def validate_slot_set(slots: Sequence[str | time]) -> list[time]:
    """Return the parsed slots, or raise InvalidSlotSet.

    Slots must be strictly increasing, aligned on the slot interval and inside
    one of the configured booking windows. An empty sequence is valid and
    means the day is closed.
    """
    if len(slots) > settings.max_slots_per_day:
        raise InvalidSlotSet(
            f"At most {settings.max_slots_per_day} slots per day",
            count=len(slots),
        )
    parsed = [parse_slot(s) for s in slots]
    for slot in parsed:
        if not _on_grid(slot):
            raise InvalidSlotSet(
                f"Slot {format_slot(slot)} is not on the {settings.slot_interval_minutes}-minute grid",
                slot=slot,
            )
        if not _in_booking_windows(slot):
            raise InvalidSlotSet(
                f"Slot {format_slot(slot)} is outside the booking windows ({settings.booking_windows})",
                slot=slot,
            )
    for prev, nxt in zip(parsed, parsed[1:]):
        if nxt <= prev:
            raise InvalidSlotSet(
                "Slots must be strictly increasing",
                slot=nxt,
            )
    return parsed


def to_day_availability(row: Availability) -> DayAvailability:
    return DayAvailability(
        day=row.day,
        offered_slots=list(row.time_slots),
        booked_slots=list(row.booked_slots),
    )


async def get_day(
    session: AsyncSession, day: date, for_update: bool = False
) -> Availability | None:
    q = (
        select(Availability)
        .where(Availability.day == day)
        .execution_options(populate_existing=True)
    )
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    return result.scalar_one_or_none()


async def get_range(session: AsyncSession, start: date, end: date) -> list[DayAvailability]:
    """Configured days in [start, end]. A day missing from the result has no slots."""
    if end < start:
        return []
    result = await session.execute(
        select(Availability)
        .where(Availability.day >= start, Availability.day <= end)
        .order_by(Availability.day)
        .execution_options(populate_existing=True)
    )
    return [to_day_availability(row) for row in result.scalars().all()]


async def _active_appointment_ids_at(
    session: AsyncSession, day: date, slots: Sequence[str]
) -> list[int]:
    if not slots:
        return []
    starts = [datetime.combine(day, parse_slot(s)) for s in slots]
    result = await session.execute(
        select(Appointment.id)
        .where(
            Appointment.requested_date.in_(starts),
            Appointment.status.in_(list(ACTIVE_STATUSES)),
        )
        .order_by(Appointment.id)
    )
    return [row[0] for row in result.all()]


async def set_offered_slots(
    session: AsyncSession,
    day: date,
    slots: Sequence[str | time],
    override: bool = False,
) -> SlotSetResult:
    """Replace the offered slots of ``day``.

    Removing a booked slot raises SlotInUse unless ``override`` is set; with
    ``override`` the slot is dropped from the booked set and the active
    appointments sitting on it are reported back, untouched.
    """
    offered = [format_slot(s) for s in validate_slot_set(slots)]
    offered_set = set(offered)
    row = await get_day(session, day, for_update=True)
    booked = list(row.booked_slots) if row else []
    dropped = [s for s in booked if s not in offered_set]
    affected: list[int] = []
    if dropped:
        if not override:
            raise SlotInUse(
                f"{len(dropped)} booked slot(s) on {day.isoformat()} would no longer be offered",
                date=day,
                slots=dropped,
            )
        affected = await _active_appointment_ids_at(session, day, dropped)
        logger.warning(
            "Availability override on %s: dropped booked slot(s) %s, affected appointment(s) %s",
            day.isoformat(),
            ",".join(dropped),
            affected,
        )
        booked = [s for s in booked if s in offered_set]

    if not offered:
        if row is not None:
            await session.delete(row)
    else:
        if row is None:
            row = Availability(day=day)
            session.add(row)
        row.time_slots = offered
        row.booked_slots = booked
        row.updated_at = _utc_naive_now()
    await session.flush()
    logger.info("Availability for %s set to %d slot(s)", day.isoformat(), len(offered))
    return SlotSetResult(
        day=day,
        offered_slots=offered,
        booked_slots=booked,
        dropped_slots=dropped,
        affected_appointment_ids=affected,
    )


async def clear_day(session: AsyncSession, day: date, override: bool = False) -> SlotSetResult:
    return await set_offered_slots(session, day, [], override=override)


def try_mark_booked(row: Availability, slot: time) -> bool:
    """Mark ``slot`` booked. Returns False if it already was."""
    key = format_slot(slot)
    if key not in row.time_slots:
        raise SlotNotOffered(
            f"{key} is not offered on {row.day.isoformat()}", date=row.day, time=key
        )
    if key in row.booked_slots:
        return False
    row.booked_slots = sorted([*row.booked_slots, key])
    row.updated_at = _utc_naive_now()
    return True


def mark_free(row: Availability, slot: time) -> bool:
    """Mark ``slot`` free. Returns False if it already was."""
    key = format_slot(slot)
    if key not in row.time_slots:
        raise SlotNotOffered(
            f"{key} is not offered on {row.day.isoformat()}", date=row.day, time=key
        )
    if key not in row.booked_slots:
        return False
    row.booked_slots = [s for s in row.booked_slots if s != key]
    row.updated_at = _utc_naive_now()
    return True
