import logging
from datetime import date, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_actor, get_operator_actor
from app.api.schemas.appointment import (
    AppointmentCreated,
    AppointmentPublic,
    BookAppointmentRequest,
    CancelResponse,
    UpdateAppointmentRequest,
)
from app.core.db import get_session
from app.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentStatus,
    AppointmentTransition,
)
from app.services import scheduling_service
from app.services.availability_store import format_slot, parse_slot
from app.services.scheduling_service import Actor

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/appointments", tags=["appointments"])


def _to_public(a: Appointment) -> AppointmentPublic:
    return AppointmentPublic(
        id=a.id,
        client_ref=a.client_ref,
        vehicle_snapshot=a.vehicle_snapshot,
        service=a.service,
        description=a.description,
        requested_date=a.requested_date,
        day=a.requested_date.date().isoformat(),
        time=format_slot(a.requested_date.time()),
        status=a.status,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


def _notify(background_tasks: BackgroundTasks, transition: AppointmentTransition | None) -> None:
    if transition is not None:
        background_tasks.add_task(scheduling_service.publish_transition, transition)


@router.post("", response_model=AppointmentCreated, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    body: BookAppointmentRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
) -> AppointmentCreated:
    """Public booking. The returned accessToken is the client's only handle on the appointment."""
    data = AppointmentCreate(
        client_ref=body.client_ref,
        vehicle_snapshot=body.vehicle_snapshot.model_dump(),
        service=body.service,
        description=body.description,
        requested_date=datetime.combine(body.day, parse_slot(body.time)),
    )
    appointment, transition = await scheduling_service.book(session, data)
    _notify(background_tasks, transition)
    return AppointmentCreated(
        **_to_public(appointment).model_dump(),
        access_token=appointment.access_token,
    )


@router.get("", response_model=list[AppointmentPublic])
async def list_appointments(
    start: date | None = Query(None),
    end: date | None = Query(None),
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_operator_actor),
) -> list[AppointmentPublic]:
    """Operator listing, latest slot first."""
    appointments = await scheduling_service.list_appointments(
        session, actor, start=start, end=end, status=status_filter
    )
    return [_to_public(a) for a in appointments]


@router.get("/by-token/{token}", response_model=AppointmentPublic)
async def get_appointment_by_token(
    token: str,
    session: AsyncSession = Depends(get_session),
) -> AppointmentPublic:
    """Self-service lookup from the link sent to the client."""
    appointment = await scheduling_service.get_appointment_by_token(session, token)
    return _to_public(appointment)


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def get_appointment(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> AppointmentPublic:
    appointment = await scheduling_service.authorize(session, appointment_id, actor)
    return _to_public(appointment)


@router.patch("/{appointment_id}", response_model=AppointmentPublic)
async def update_appointment(
    appointment_id: int,
    body: UpdateAppointmentRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> AppointmentPublic:
    """Confirm, complete (status) or reschedule (requestedDate)."""
    if body.requested_date is not None:
        appointment, transition = await scheduling_service.reschedule(
            session, appointment_id, body.requested_date, actor
        )
    elif body.status == AppointmentStatus.CONFIRMED:
        appointment, transition = await scheduling_service.confirm(session, appointment_id, actor)
    else:
        appointment, transition = await scheduling_service.complete(session, appointment_id, actor)
    _notify(background_tasks, transition)
    return _to_public(appointment)


@router.delete("/{appointment_id}/cancel", response_model=CancelResponse)
async def cancel_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
) -> CancelResponse:
    """Idempotent: cancelling a cancelled appointment succeeds again."""
    appointment, transition = await scheduling_service.cancel(session, appointment_id, actor)
    _notify(background_tasks, transition)
    return CancelResponse(data=_to_public(appointment))


@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_operator_actor),
) -> None:
    await scheduling_service.purge(session, appointment_id, actor)
