from datetime import UTC, datetime

from pydantic import NaiveDatetime
from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


def _naive_utc(dt: datetime) -> datetime:
    """For TIMESTAMP WITHOUT TIME ZONE: store as naive UTC."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)
    return dt.replace(tzinfo=None)


class RefreshToken(SQLModel, table=True):
    """One issued operator refresh token, looked up by its JWT ``jti``.

    Refreshing revokes the presented row and stores the new one, so a token
    can be exchanged once.
    """

    __tablename__ = "refresh_tokens"
    id: int | None = Field(default=None, primary_key=True)
    operator_id: int = Field(foreign_key="operators.id", index=True)
    jti: str = Field(unique=True, index=True)
    issued_at: NaiveDatetime = Field(
        default_factory=lambda: _naive_utc(datetime.now(UTC)),
        sa_column=Column(DateTime, nullable=False),
    )
    expires_at: NaiveDatetime = Field(sa_column=Column(DateTime, nullable=False, index=True))
    revoked: bool = False

    def model_post_init(self, __context: object) -> None:
        if self.expires_at is not None:
            self.expires_at = _naive_utc(self.expires_at)

    def is_usable(self, now: datetime | None = None) -> bool:
        now = _naive_utc(now or datetime.now(UTC))
        return not self.revoked and self.expires_at > now
