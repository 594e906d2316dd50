"""Shared fixtures and helpers.

Each test gets its own SQLite file database so separate sessions behave like
separate connections, the way concurrent requests do in production.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("OPERATOR_EMAILS", "atelier@example.com")

from datetime import date, datetime, time, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import app.models  # noqa: F401 - register tables
from app.core.db import get_session
from app.core.security import create_access_token, hash_password
from app.main import app as fastapi_app
from app.models.appointment import AppointmentCreate, ServiceType
from app.models.operator import Operator
from app.services import availability_store, conflict_guard, scheduling_service
from app.services.scheduling_service import Actor

OPERATOR_PASSWORD = "s3cret-pass"


def at(day: date, hhmm: str) -> datetime:
    return datetime.combine(day, time.fromisoformat(hhmm))


def booking(day: date, hhmm: str, client_ref: str = "client-1") -> AppointmentCreate:
    return AppointmentCreate(
        client_ref=client_ref,
        vehicle_snapshot={"brand": "Peugeot", "model": "308", "year": 2019},
        service=ServiceType.DIAGNOSTIC,
        description="Bruit au freinage",
        requested_date=at(day, hhmm),
    )


async def offer(session: AsyncSession, day: date, *slots: str) -> None:
    async with conflict_guard.day_transaction(session, day):
        await availability_store.set_offered_slots(session, day, list(slots))


async def booked_slots(session: AsyncSession, day: date) -> list[str]:
    row = await availability_store.get_day(session, day)
    return list(row.booked_slots) if row else []


@pytest.fixture(autouse=True)
def fresh_day_locks(monkeypatch):
    monkeypatch.setattr(conflict_guard, "day_locks", conflict_guard.DayLocks())


@pytest.fixture
def day() -> date:
    return scheduling_service.today() + timedelta(days=7)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def operator(session) -> Operator:
    operator = Operator(
        email="atelier@example.com",
        full_name="Atelier",
        hashed_password=hash_password(OPERATOR_PASSWORD),
    )
    session.add(operator)
    await session.commit()
    return operator


@pytest.fixture
def operator_actor(operator) -> Actor:
    return Actor(operator=operator)


@pytest.fixture
def operator_headers(operator) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(operator.id)}"}


@pytest.fixture
async def client(session_maker):
    async def _session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_session] = _session
    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as c:
        yield c
    fastapi_app.dependency_overrides.clear()
