from datetime import date, datetime
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./timesheets.db"
    jwt_secret: str = ""
    jwt_issuer: str = "timesheet-service"
    jwt_audience: str = "timesheet-users"
    access_token_minutes: int = 30
    app_name: str = "TimesheetService"
    cors_allow_origins: str = "http://127.0.0.1:5173,http://localhost:5173"
    timesheet_timezone: str = "Australia/Sydney"
    log_level: str = "INFO"
    schema_guard_strict: bool = True
    annual_leave_entitlement_hours: float = 152.0
    default_full_day_minutes: int = 480
    default_friday_short_day_minutes: int = 360
    default_leave_paid_minutes: int = 480
    default_early_knock_off_paid_as_full_day: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_cors_origins() -> list[str]:
    raw = get_settings().cors_allow_origins
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache
def get_timesheet_timezone() -> ZoneInfo:
    raw_name = (get_settings().timesheet_timezone or "").strip() or "Australia/Sydney"
    try:
        return ZoneInfo(raw_name)
    except Exception:
        return ZoneInfo("Australia/Sydney")


def local_today(now: datetime | None = None) -> date:
    tz = get_timesheet_timezone()
    if now is None:
        return datetime.now(tz).date()
    return now.astimezone(tz).date()
