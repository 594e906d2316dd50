from fastapi import Depends, Header, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_session
from app.core.security import decode_access_token
from app.models.operator import Operator
from app.services.auth_service import get_operator
from app.services.scheduling_service import Actor

bearer = HTTPBearer(auto_error=False)


def refresh_header(x_refresh_token: str | None = Header(default=None, alias="X-Refresh-Token")) -> str | None:
    """Extract X-Refresh-Token header for logout/refresh endpoints."""
    return x_refresh_token


async def _operator_from_credentials(
    session: AsyncSession, credentials: HTTPAuthorizationCredentials | None
) -> Operator | None:
    if not credentials or credentials.scheme.lower() != "bearer":
        return None
    operator_id = decode_access_token(credentials.credentials)
    if not operator_id:
        return None
    try:
        oid = int(operator_id)
    except ValueError:
        return None
    operator = await get_operator(session, oid)
    if operator is None or not operator.is_active:
        return None
    return operator


async def get_current_operator(
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Operator:
    operator = await _operator_from_credentials(session, credentials)
    if operator is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing, invalid or expired operator token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return operator


async def get_optional_operator(
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Operator | None:
    return await _operator_from_credentials(session, credentials)


async def get_actor(
    operator: Operator | None = Depends(get_optional_operator),
    x_appointment_token: str | None = Header(default=None, alias="X-Appointment-Token"),
    token: str | None = Query(default=None),
) -> Actor:
    """Operator (Bearer JWT) and/or the appointment self-service token (header or ?token=)."""
    return Actor(operator=operator, token=x_appointment_token or token)


async def get_operator_actor(operator: Operator = Depends(get_current_operator)) -> Actor:
    return Actor(operator=operator)
