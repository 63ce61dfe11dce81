from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class DispatchSettings:
    reminder_after_minutes: int = 60
    expire_after_minutes: int = 180
    sweep_interval_seconds: int = 300
    dedupe_window_hours: int = 24
    admin_contact: str = "support"
    default_country_code: str = "1"
    transport_timeout_seconds: int = 5
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None
    twilio_whatsapp_number: Optional[str] = None
    twilio_use_stub: bool = False
    twilio_verify_signatures: bool = False
    cron_secret_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.reminder_after_minutes <= 0:
            raise ValueError("REMINDER_AFTER_MINUTES must be positive")
        if self.expire_after_minutes <= self.reminder_after_minutes:
            raise ValueError("EXPIRE_AFTER_MINUTES must be greater than REMINDER_AFTER_MINUTES")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("ESCALATION_SWEEP_INTERVAL_SECONDS must be positive")

    @property
    def reminder_after(self) -> timedelta:
        return timedelta(minutes=self.reminder_after_minutes)

    @property
    def expire_after(self) -> timedelta:
        return timedelta(minutes=self.expire_after_minutes)

    @property
    def dedupe_window(self) -> timedelta:
        return timedelta(hours=self.dedupe_window_hours)

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)


def load_settings() -> DispatchSettings:
    return DispatchSettings(
        reminder_after_minutes=_env_int("REMINDER_AFTER_MINUTES", 60),
        expire_after_minutes=_env_int("EXPIRE_AFTER_MINUTES", 180),
        sweep_interval_seconds=_env_int("ESCALATION_SWEEP_INTERVAL_SECONDS", 300),
        dedupe_window_hours=_env_int("DEDUPE_WINDOW_HOURS", 24),
        admin_contact=os.getenv("ADMIN_CONTACT") or os.getenv("ADMIN_PHONE") or "support",
        default_country_code=(os.getenv("DEFAULT_COUNTRY_CODE") or "1").lstrip("+"),
        transport_timeout_seconds=_env_int("TRANSPORT_TIMEOUT_SECONDS", 5),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
        twilio_from_number=os.getenv("TWILIO_FROM_NUMBER") or os.getenv("TWILIO_PHONE_NUMBER"),
        twilio_whatsapp_number=os.getenv("TWILIO_WHATSAPP_NUMBER"),
        twilio_use_stub=_env_flag("TWILIO_USE_STUB"),
        twilio_verify_signatures=_env_flag("TWILIO_VERIFY_SIGNATURES"),
        cron_secret_key=os.getenv("CRON_SECRET_KEY"),
    )


@lru_cache(maxsize=1)
def get_settings() -> DispatchSettings:
    return load_settings()


def reset_settings_cache() -> None:
    get_settings.cache_clear()
