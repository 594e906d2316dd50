from datetime import time, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root so it loads regardless of cwd
_BACKEND_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _BACKEND_ROOT / ".env"


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str

    # JWT (operators)
    secret_key: str
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Comma-separated emails allowed to create an operator account
    operator_emails: str = ""

    # Booking calendar rules. Slots are wall-clock times in garage_timezone.
    garage_timezone: str = "Europe/Paris"
    booking_horizon_months: int = 2
    slot_interval_minutes: int = 30
    # Comma-separated HH:MM-HH:MM windows, end exclusive
    booking_windows: str = "09:00-12:00,14:00-22:00"
    max_slots_per_day: int = 20
    # Upper bound on waiting for another request working on the same day
    day_lock_timeout_seconds: float = 5.0
    # Random bytes behind each appointment self-service token (hex encoded)
    access_token_bytes: int = 32

    # Env
    env: str = "development"

    site_name: str = "Garage Scheduling"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def operator_emails_list(self) -> list[str]:
        return [e.strip().lower() for e in self.operator_emails.split(",") if e.strip()]

    @property
    def garage_tz(self) -> tzinfo:
        return ZoneInfo(self.garage_timezone)

    @property
    def booking_windows_list(self) -> list[tuple[time, time]]:
        windows: list[tuple[time, time]] = []
        for chunk in self.booking_windows.split(","):
            if not chunk.strip():
                continue
            start, end = chunk.split("-")
            windows.append((_parse_hhmm(start), _parse_hhmm(end)))
        return windows


settings = Settings()
