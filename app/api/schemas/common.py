from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.core.config import settings


class CamelModel(BaseModel):
    """Request/response bodies use camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def to_garage_wall_clock(value: datetime) -> datetime:
    """Naive wall-clock time at the garage. Offset-aware instants are converted first."""
    if value.tzinfo is not None:
        value = value.astimezone(settings.garage_tz)
    return value.replace(tzinfo=None)
