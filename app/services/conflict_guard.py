"""Atomic reserve / release / move of booked slots.

All writes to ``Availability.booked_slots`` go through this module. Callers
open ``day_transaction(session, *days)`` first: it serializes work on those
days inside this process (one asyncio lock per day, always taken in date
order) and commits or rolls back the session as one unit. Row locks
(``SELECT ... FOR UPDATE`` on the day row) extend the guarantee across
processes on PostgreSQL. Work on different days never waits on each other.
"""
import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import date, datetime, time

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import SlotAlreadyBooked, SlotNotOffered, StorageUnavailable
from app.services import availability_store

logger = logging.getLogger(__name__)

_RETRYABLE_DB_ERRORS = (OperationalError, InterfaceError, IntegrityError)


class DayLocks:
    """Process-local mutex per calendar day.

    Entries are created on first use and dropped once nobody holds or waits
    on them, so the registry only ever contains days currently in use.
    """

    def __init__(self) -> None:
        self._locks: dict[date, asyncio.Lock] = {}
        self._users: dict[date, int] = {}

    def _checkout(self, day: date) -> asyncio.Lock:
        lock = self._locks.get(day)
        if lock is None:
            lock = self._locks[day] = asyncio.Lock()
        self._users[day] = self._users.get(day, 0) + 1
        return lock

    def _checkin(self, day: date) -> None:
        self._users[day] -= 1
        if self._users[day] == 0:
            del self._users[day]
            del self._locks[day]

    def _release(self, days: list[date]) -> None:
        for day in reversed(days):
            self._locks[day].release()
            self._checkin(day)

    def is_locked(self, day: date) -> bool:
        lock = self._locks.get(day)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, days: Iterable[date], timeout: float) -> AsyncIterator[None]:
        acquired: list[date] = []
        try:
            for day in sorted(set(days)):
                lock = self._checkout(day)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout)
                except BaseException:
                    self._checkin(day)
                    raise
                acquired.append(day)
        except TimeoutError as exc:
            self._release(acquired)
            raise StorageUnavailable(
                "Another request is updating this day, retry shortly",
                dates=sorted(set(days)),
            ) from exc
        except BaseException:
            self._release(acquired)
            raise
        try:
            yield
        finally:
            self._release(acquired)


day_locks = DayLocks()


@asynccontextmanager
async def day_transaction(session: AsyncSession, *days: date) -> AsyncIterator[AsyncSession]:
    """Hold the locks of ``days`` and run the block as one committed transaction."""
    async with day_locks.hold(days, settings.day_lock_timeout_seconds):
        try:
            yield session
            await session.commit()
        except _RETRYABLE_DB_ERRORS as exc:
            await session.rollback()
            logger.warning("Day transaction on %s failed in storage: %s", [d.isoformat() for d in days], exc)
            raise StorageUnavailable(
                "Storage temporarily unavailable, retry the request",
                dates=sorted(set(days)),
            ) from exc
        except Exception:
            await session.rollback()
            raise


def _require_lock(day: date) -> None:
    if not day_locks.is_locked(day):
        raise RuntimeError(f"{day.isoformat()} must be locked with day_transaction() first")


async def reserve(session: AsyncSession, day: date, slot: time) -> None:
    """Book a free offered slot. Raises SlotNotOffered or SlotAlreadyBooked, changing nothing."""
    _require_lock(day)
    row = await availability_store.get_day(session, day, for_update=True)
    if row is None:
        raise SlotNotOffered(
            f"No slots are offered on {day.isoformat()}", date=day, time=slot
        )
    if not availability_store.try_mark_booked(row, slot):
        raise SlotAlreadyBooked(
            f"{availability_store.format_slot(slot)} on {day.isoformat()} is already booked",
            date=day,
            time=slot,
        )
    await session.flush()
    logger.debug("Reserved %s %s", day.isoformat(), availability_store.format_slot(slot))


async def release(session: AsyncSession, day: date, slot: time) -> bool:
    """Free a slot. Idempotent; returns whether anything changed.

    A day without configuration or a time that is no longer offered holds no
    booking, so there is nothing to free.
    """
    _require_lock(day)
    row = await availability_store.get_day(session, day, for_update=True)
    if row is None:
        logger.debug("Release of %s on unconfigured day %s", slot, day.isoformat())
        return False
    try:
        changed = availability_store.mark_free(row, slot)
    except SlotNotOffered:
        logger.info(
            "Release of %s %s: slot no longer offered, nothing to free",
            day.isoformat(),
            availability_store.format_slot(slot),
        )
        return False
    if changed:
        await session.flush()
        logger.debug("Released %s %s", day.isoformat(), availability_store.format_slot(slot))
    return changed


async def move(session: AsyncSession, source: datetime, target: datetime) -> None:
    """Reserve ``target`` then free ``source``; on failure the source stays booked."""
    if source == target:
        return
    await reserve(session, target.date(), target.time())
    await release(session, source.date(), source.time())
