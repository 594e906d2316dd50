"""Operator authentication. Clients never log in: they hold an appointment token."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_operator, refresh_header
from app.api.schemas.auth import (
    LoginRequest,
    RefreshRequest,
    SignupRequest,
    TokenPair,
)
from app.core.db import get_session
from app.core.security import decode_refresh_token
from app.models.operator import Operator, OperatorPublic
from app.services.auth_service import (
    login_operator,
    operator_to_public,
    refresh_tokens,
    revoke_refresh_token,
    signup_operator,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_pair(pair: tuple[Operator, str, str, int] | None, status_code: int, detail: str) -> TokenPair:
    if not pair:
        raise HTTPException(status_code=status_code, detail=detail)
    _, access, refresh_token, expires_in = pair
    return TokenPair(access_token=access, refresh_token=refresh_token, expires_in=expires_in)


def _presented_refresh_token(header: str | None, body: RefreshRequest | None) -> str | None:
    return header or (body.refresh_token if body else None)


@router.post("/login", response_model=TokenPair)
async def login(
    body: LoginRequest,
    session: AsyncSession = Depends(get_session),
) -> TokenPair:
    pair = await login_operator(session, body.email, body.password)
    return _token_pair(pair, status.HTTP_401_UNAUTHORIZED, "Invalid email or password")


@router.post("/signup", response_model=TokenPair, status_code=status.HTTP_201_CREATED)
async def signup(
    body: SignupRequest,
    session: AsyncSession = Depends(get_session),
) -> TokenPair:
    """Only addresses listed in OPERATOR_EMAILS can create an account, once."""
    pair = await signup_operator(session, body.email, body.password, body.full_name)
    return _token_pair(pair, status.HTTP_403_FORBIDDEN, "This email cannot create an operator account")


@router.post("/refresh", response_model=TokenPair)
async def refresh(
    session: AsyncSession = Depends(get_session),
    x_refresh_token: str | None = Depends(refresh_header),
    body: RefreshRequest | None = None,
) -> TokenPair:
    token = _presented_refresh_token(x_refresh_token, body)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token required (header X-Refresh-Token or body refresh_token)",
        )
    pair = await refresh_tokens(session, token)
    return _token_pair(pair, status.HTTP_401_UNAUTHORIZED, "Invalid or expired refresh token")


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    session: AsyncSession = Depends(get_session),
    x_refresh_token: str | None = Depends(refresh_header),
    body: RefreshRequest | None = None,
) -> None:
    token = _presented_refresh_token(x_refresh_token, body)
    _, jti = decode_refresh_token(token) if token else (None, None)
    if jti:
        await revoke_refresh_token(session, jti)


@router.get("/me", response_model=OperatorPublic)
async def me(current_operator: Operator = Depends(get_current_operator)) -> OperatorPublic:
    return operator_to_public(current_operator)
