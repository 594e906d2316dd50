from datetime import date

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_operator_actor
from app.api.schemas.availability import (
    DayAvailabilityOut,
    DaySlots,
    SetAvailabilityRequest,
    SetAvailabilityResponse,
    SingleDayResponse,
)
from app.core.db import get_session
from app.models.availability import DayAvailability
from app.services import scheduling_service
from app.services.scheduling_service import Actor, ConfigureDayResult

router = APIRouter(prefix="/availability", tags=["availability"])


def _to_out(day: DayAvailability) -> DayAvailabilityOut:
    return DayAvailabilityOut(
        day=day.day.isoformat(),
        time_slots=day.bookable_slots,
        booked_slots=day.booked_slots,
        offered_slots=day.offered_slots,
    )


def _configured(result: ConfigureDayResult, background_tasks: BackgroundTasks) -> SetAvailabilityResponse:
    for transition in result.cancelled:
        background_tasks.add_task(scheduling_service.publish_transition, transition)
    slots = result.slots
    booked = set(slots.booked_slots)
    return SetAvailabilityResponse(
        day=slots.day.isoformat(),
        time_slots=[s for s in slots.offered_slots if s not in booked],
        booked_slots=slots.booked_slots,
        offered_slots=slots.offered_slots,
        affected_appointments=slots.affected_appointment_ids,
        cancelled_appointments=[t.appointment_id for t in result.cancelled],
    )


@router.get("", response_model=dict[str, DaySlots])
async def get_availability(
    start: date = Query(...),
    end: date = Query(...),
    session: AsyncSession = Depends(get_session),
) -> dict[str, DaySlots]:
    """Configured days between start and end (inclusive), clamped to the booking horizon."""
    if end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end must not be before start",
        )
    days = await scheduling_service.query_availability(session, start, end)
    return {
        d.day.isoformat(): DaySlots(
            time_slots=d.bookable_slots,
            booked_slots=d.booked_slots,
            offered_slots=d.offered_slots,
        )
        for d in days
    }


@router.get("/{day}", response_model=SingleDayResponse)
async def get_day_availability(
    day: date,
    session: AsyncSession = Depends(get_session),
) -> SingleDayResponse:
    found = await scheduling_service.get_day_availability(session, day)
    return SingleDayResponse(availability=_to_out(found) if found else None)


@router.post("", response_model=SetAvailabilityResponse)
async def set_availability(
    body: SetAvailabilityRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_operator_actor),
) -> SetAvailabilityResponse:
    result = await scheduling_service.configure_day(
        session,
        body.day,
        body.time_slots,
        actor,
        allow_override_of_booked=body.override,
        cancel_affected=body.cancel_affected,
    )
    return _configured(result, background_tasks)


@router.delete("", response_model=SetAvailabilityResponse)
async def delete_availability(
    background_tasks: BackgroundTasks,
    day: date = Query(..., alias="date"),
    override: bool = Query(False),
    cancel_affected: bool = Query(False, alias="cancelAffected"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_operator_actor),
) -> SetAvailabilityResponse:
    result = await scheduling_service.clear_day(
        session,
        day,
        actor,
        allow_override_of_booked=override,
        cancel_affected=cancel_affected,
    )
    return _configured(result, background_tasks)
