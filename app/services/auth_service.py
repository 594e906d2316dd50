import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    verify_password,
)
from app.models.operator import Operator, OperatorCreate, OperatorPublic
from app.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)


async def get_operator_by_email(session: AsyncSession, email: str) -> Operator | None:
    result = await session.execute(select(Operator).where(Operator.email == email.lower()))
    return result.scalar_one_or_none()


async def get_operator(session: AsyncSession, operator_id: int) -> Operator | None:
    result = await session.execute(select(Operator).where(Operator.id == operator_id))
    return result.scalar_one_or_none()


async def create_operator(session: AsyncSession, data: OperatorCreate) -> Operator:
    operator = Operator(
        email=data.email.lower(),
        full_name=data.full_name,
        hashed_password=hash_password(data.password),
    )
    session.add(operator)
    await session.flush()
    await session.refresh(operator)
    return operator


def operator_to_public(operator: Operator) -> OperatorPublic:
    return OperatorPublic(
        id=operator.id,
        email=operator.email,
        full_name=operator.full_name,
        is_active=operator.is_active,
    )


def make_token_pair(operator_id: int) -> tuple[str, str, int]:
    access = create_access_token(operator_id)
    refresh = create_refresh_token(operator_id)
    expires_in = settings.access_token_expire_minutes * 60
    return access, refresh, expires_in


def _utc_naive() -> datetime:
    """Naive UTC datetime for DB columns that are TIMESTAMP WITHOUT TIME ZONE."""
    return datetime.now(UTC).replace(tzinfo=None)


async def store_refresh_token(
    session: AsyncSession, operator_id: int, refresh_token: str
) -> None:
    _, jti = decode_refresh_token(refresh_token)
    if not jti:
        return
    expires_at = _utc_naive() + timedelta(days=settings.refresh_token_expire_days)
    session.add(RefreshToken(operator_id=operator_id, jti=jti, expires_at=expires_at))
    await session.flush()


async def _issue(session: AsyncSession, operator: Operator) -> tuple[Operator, str, str, int]:
    access, refresh, expires_in = make_token_pair(operator.id)
    await store_refresh_token(session, operator_id=operator.id, refresh_token=refresh)
    return operator, access, refresh, expires_in


async def login_operator(
    session: AsyncSession, email: str, password: str
) -> tuple[Operator, str, str, int] | None:
    operator = await get_operator_by_email(session, email)
    if not operator or not operator.is_active:
        return None
    if not verify_password(password, operator.hashed_password):
        logger.info("Failed login for operator %s", operator.email)
        return None
    return await _issue(session, operator)


async def signup_operator(
    session: AsyncSession, email: str, password: str, full_name: str | None = None
) -> tuple[Operator, str, str, int] | None:
    """Create an operator account. Only emails on the operator allow-list may sign up."""
    if email.lower() not in settings.operator_emails_list:
        logger.warning("Operator signup refused for %s (not on allow-list)", email)
        return None
    if await get_operator_by_email(session, email):
        return None
    operator = await create_operator(
        session, OperatorCreate(email=email, password=password, full_name=full_name)
    )
    logger.info("Operator %s created", operator.email)
    return await _issue(session, operator)


async def _get_refresh_row(session: AsyncSession, jti: str) -> RefreshToken | None:
    result = await session.execute(select(RefreshToken).where(RefreshToken.jti == jti))
    return result.scalar_one_or_none()


async def revoke_refresh_token(session: AsyncSession, jti: str) -> None:
    row = await _get_refresh_row(session, jti)
    if row and not row.revoked:
        row.revoked = True
        session.add(row)


async def refresh_tokens(
    session: AsyncSession, refresh_token: str
) -> tuple[Operator, str, str, int] | None:
    """Rotate a refresh token: the presented one is revoked, a new pair is issued."""
    operator_id_str, jti = decode_refresh_token(refresh_token)
    if not operator_id_str or not jti:
        return None
    row = await _get_refresh_row(session, jti)
    if row is None or not row.is_usable():
        if row is not None and row.revoked:
            logger.warning("Revoked refresh token presented for operator %s", row.operator_id)
        return None
    operator = await get_operator(session, row.operator_id)
    if not operator or not operator.is_active:
        return None
    row.revoked = True
    session.add(row)
    return await _issue(session, operator)
