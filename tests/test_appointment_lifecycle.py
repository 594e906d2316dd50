"""Tests for the appointment state machine and its slot bookkeeping."""

from datetime import timedelta

import pytest
from sqlalchemy import DateTime

from app.core.errors import (
    AppointmentNotFound,
    InvalidTransition,
    SlotAlreadyBooked,
    SlotNotOffered,
)
from app.models.appointment import Appointment, AppointmentStatus
from app.models.availability import Availability
from app.models.refresh_token import RefreshToken
from app.services import appointment_lifecycle, availability_store, conflict_guard
from tests.conftest import at, booked_slots, booking, offer


async def _appointments(session):
    return await appointment_lifecycle.list_appointments(session)


class TestScenarios:
    async def test_book_confirm_reschedule_complete(self, session, day):
        await offer(session, day, "09:00", "09:30")

        a = await appointment_lifecycle.create(session, booking(day, "09:00"))
        a_id = a.id
        assert a.status == AppointmentStatus.PENDING
        assert await booked_slots(session, day) == ["09:00"]

        with pytest.raises(SlotAlreadyBooked):
            await appointment_lifecycle.create(session, booking(day, "09:00", client_ref="client-2"))
        assert await booked_slots(session, day) == ["09:00"]
        assert len(await _appointments(session)) == 1

        a = await appointment_lifecycle.confirm(session, a_id)
        assert a.status == AppointmentStatus.CONFIRMED

        a = await appointment_lifecycle.reschedule(session, a_id, at(day, "09:30"))
        assert a.status == AppointmentStatus.MODIFIED
        assert a.requested_date == at(day, "09:30")
        assert await booked_slots(session, day) == ["09:30"]

        a = await appointment_lifecycle.confirm(session, a_id)
        a = await appointment_lifecycle.complete(session, a_id)
        assert a.status == AppointmentStatus.COMPLETED
        assert await booked_slots(session, day) == []

    async def test_cancel_then_rebook(self, session, day):
        await offer(session, day, "10:00")

        b = await appointment_lifecycle.create(session, booking(day, "10:00"))
        b = await appointment_lifecycle.cancel(session, b.id)
        assert b.status == AppointmentStatus.CANCELLED
        assert await booked_slots(session, day) == []

        c = await appointment_lifecycle.create(session, booking(day, "10:00", client_ref="client-2"))
        assert c.id != b.id
        assert c.status == AppointmentStatus.PENDING
        assert await booked_slots(session, day) == ["10:00"]


class TestCreate:
    async def test_fresh_token_per_appointment(self, session, day):
        await offer(session, day, "09:00", "09:30")
        first = await appointment_lifecycle.create(session, booking(day, "09:00"))
        second = await appointment_lifecycle.create(session, booking(day, "09:30"))
        assert len(first.access_token) == 64
        assert first.access_token != second.access_token

    async def test_not_offered_creates_nothing(self, session, day):
        await offer(session, day, "09:00")
        with pytest.raises(SlotNotOffered):
            await appointment_lifecycle.create(session, booking(day, "14:00"))
        assert await _appointments(session) == []

    async def test_seconds_are_dropped(self, session, day):
        await offer(session, day, "09:00")
        data = booking(day, "09:00")
        data.requested_date = data.requested_date.replace(second=42)
        appointment = await appointment_lifecycle.create(session, data)
        assert appointment.requested_date == at(day, "09:00")

    async def test_get_by_token(self, session, day):
        await offer(session, day, "09:00")
        appointment = await appointment_lifecycle.create(session, booking(day, "09:00"))
        found = await appointment_lifecycle.get_by_token(session, appointment.access_token)
        assert found.id == appointment.id
        assert await appointment_lifecycle.get_by_token(session, "nope") is None

    async def test_unknown_appointment(self, session):
        with pytest.raises(AppointmentNotFound):
            await appointment_lifecycle.confirm(session, 999)


class TestTransitions:
    @pytest.mark.parametrize("current,target,allowed", [
        (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, True),
        (AppointmentStatus.PENDING, AppointmentStatus.COMPLETED, False),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, True),
        (AppointmentStatus.MODIFIED, AppointmentStatus.CONFIRMED, True),
        (AppointmentStatus.MODIFIED, AppointmentStatus.COMPLETED, False),
        (AppointmentStatus.MODIFIED, AppointmentStatus.MODIFIED, False),
    ])
    def test_table(self, current, target, allowed):
        assert appointment_lifecycle.can_transition(current, target) is allowed

    @pytest.mark.parametrize("terminal", [AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED])
    def test_terminal_states_have_no_exit(self, terminal):
        assert not any(
            appointment_lifecycle.can_transition(terminal, target) for target in AppointmentStatus
        )

    async def test_complete_requires_confirmed(self, session, day):
        await offer(session, day, "09:00")
        appointment_id = (await appointment_lifecycle.create(session, booking(day, "09:00"))).id
        with pytest.raises(InvalidTransition):
            await appointment_lifecycle.complete(session, appointment_id)
        appointment = await appointment_lifecycle.get_appointment(session, appointment_id)
        assert appointment.status == AppointmentStatus.PENDING
        assert await booked_slots(session, day) == ["09:00"]

    async def test_cancelled_is_closed(self, session, day):
        await offer(session, day, "09:00", "09:30")
        appointment_id = (await appointment_lifecycle.create(session, booking(day, "09:00"))).id
        await appointment_lifecycle.cancel(session, appointment_id)

        with pytest.raises(InvalidTransition):
            await appointment_lifecycle.confirm(session, appointment_id)
        with pytest.raises(InvalidTransition):
            await appointment_lifecycle.complete(session, appointment_id)
        with pytest.raises(InvalidTransition):
            await appointment_lifecycle.reschedule(session, appointment_id, at(day, "09:30"))

        appointment = await appointment_lifecycle.get_appointment(session, appointment_id)
        assert appointment.status == AppointmentStatus.CANCELLED
        assert await booked_slots(session, day) == []

    async def test_completed_is_closed(self, session, day):
        await offer(session, day, "09:00")
        appointment_id = (await appointment_lifecycle.create(session, booking(day, "09:00"))).id
        await appointment_lifecycle.confirm(session, appointment_id)
        await appointment_lifecycle.complete(session, appointment_id)

        with pytest.raises(InvalidTransition):
            await appointment_lifecycle.cancel(session, appointment_id)
        with pytest.raises(InvalidTransition):
            await appointment_lifecycle.confirm(session, appointment_id)

        appointment = await appointment_lifecycle.get_appointment(session, appointment_id)
        assert appointment.status == AppointmentStatus.COMPLETED


class TestCancel:
    async def test_cancel_twice(self, session, day):
        await offer(session, day, "09:00")
        appointment = await appointment_lifecycle.create(session, booking(day, "09:00"))

        first = await appointment_lifecycle.cancel(session, appointment.id)
        assert first.status == AppointmentStatus.CANCELLED
        assert await booked_slots(session, day) == []

        second = await appointment_lifecycle.cancel(session, appointment.id)
        assert second.status == AppointmentStatus.CANCELLED

    async def test_cancel_after_slot_was_overridden(self, session, day):
        await offer(session, day, "09:00", "09:30")
        appointment = await appointment_lifecycle.create(session, booking(day, "09:00"))
        async with conflict_guard.day_transaction(session, day):
            await availability_store.set_offered_slots(session, day, ["09:30"], override=True)

        appointment = await appointment_lifecycle.cancel(session, appointment.id)
        assert appointment.status == AppointmentStatus.CANCELLED
        row = await availability_store.get_day(session, day)
        assert row.time_slots == ["09:30"]
        assert row.booked_slots == []


class TestReschedule:
    async def test_conflict_leaves_appointment_unchanged(self, session, day):
        await offer(session, day, "09:00", "09:30")
        a_id = (await appointment_lifecycle.create(session, booking(day, "09:00"))).id
        await appointment_lifecycle.create(session, booking(day, "09:30", client_ref="client-2"))
        a = await appointment_lifecycle.confirm(session, a_id)
        before = (a.status, a.requested_date, a.updated_at)

        with pytest.raises(SlotAlreadyBooked):
            await appointment_lifecycle.reschedule(session, a_id, at(day, "09:30"))

        a = await appointment_lifecycle.get_appointment(session, a_id)
        assert (a.status, a.requested_date, a.updated_at) == before
        assert await booked_slots(session, day) == ["09:00", "09:30"]

    async def test_target_not_offered(self, session, day):
        await offer(session, day, "09:00")
        a_id = (await appointment_lifecycle.create(session, booking(day, "09:00"))).id
        with pytest.raises(SlotNotOffered):
            await appointment_lifecycle.reschedule(session, a_id, at(day + timedelta(days=1), "09:00"))
        a = await appointment_lifecycle.get_appointment(session, a_id)
        assert a.status == AppointmentStatus.PENDING
        assert a.requested_date == at(day, "09:00")

    async def test_to_another_day(self, session, day):
        other = day + timedelta(days=3)
        await offer(session, day, "09:00")
        await offer(session, other, "15:00")
        a = await appointment_lifecycle.create(session, booking(day, "09:00"))
        a = await appointment_lifecycle.reschedule(session, a.id, at(other, "15:00"))
        assert a.requested_date == at(other, "15:00")
        assert await booked_slots(session, day) == []
        assert await booked_slots(session, other) == ["15:00"]

    async def test_modified_cannot_be_rescheduled_again(self, session, day):
        await offer(session, day, "09:00", "09:30", "10:00")
        a_id = (await appointment_lifecycle.create(session, booking(day, "09:00"))).id
        await appointment_lifecycle.reschedule(session, a_id, at(day, "09:30"))
        with pytest.raises(InvalidTransition):
            await appointment_lifecycle.reschedule(session, a_id, at(day, "10:00"))
        assert await booked_slots(session, day) == ["09:30"]


class TestQueriesAndPurge:
    async def test_list_filters(self, session, day):
        other = day + timedelta(days=1)
        await offer(session, day, "09:00", "09:30")
        await offer(session, other, "09:00")
        a = await appointment_lifecycle.create(session, booking(day, "09:00"))
        b = await appointment_lifecycle.create(session, booking(day, "09:30"))
        c = await appointment_lifecycle.create(session, booking(other, "09:00"))
        await appointment_lifecycle.cancel(session, b.id)

        assert [x.id for x in await appointment_lifecycle.list_appointments(session)] == [c.id, b.id, a.id]
        assert [x.id for x in await appointment_lifecycle.list_appointments(session, start=other)] == [c.id]
        assert [x.id for x in await appointment_lifecycle.list_appointments(session, end=day)] == [b.id, a.id]
        cancelled = await appointment_lifecycle.list_appointments(session, status=AppointmentStatus.CANCELLED)
        assert [x.id for x in cancelled] == [b.id]

    async def test_purge_active_frees_slot(self, session, day):
        await offer(session, day, "09:00")
        a = await appointment_lifecycle.create(session, booking(day, "09:00"))
        await appointment_lifecycle.purge(session, a.id)
        assert await booked_slots(session, day) == []
        with pytest.raises(AppointmentNotFound):
            await appointment_lifecycle.get_appointment(session, a.id)


class TestColumnTypes:
    @pytest.mark.parametrize("column", [
        Appointment.__table__.c.requested_date,
        Appointment.__table__.c.created_at,
        Appointment.__table__.c.updated_at,
        Availability.__table__.c.updated_at,
        RefreshToken.__table__.c.issued_at,
        RefreshToken.__table__.c.expires_at,
    ], ids=lambda c: f"{c.table.name}.{c.name}")
    def test_timestamps_are_naive(self, column):
        assert isinstance(column.type, DateTime)
        assert column.type.timezone is False
        assert not column.nullable

    async def test_naive_wall_clock_round_trips(self, session, day):
        await offer(session, day, "09:00")
        appointment_id = (await appointment_lifecycle.create(session, booking(day, "09:00"))).id
        session.expire_all()
        appointment = await appointment_lifecycle.get_appointment(session, appointment_id)
        assert appointment.requested_date == at(day, "09:00")
        assert appointment.requested_date.tzinfo is None
