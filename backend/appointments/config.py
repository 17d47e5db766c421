# backend/appointments/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repo root


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/appointments.db"
    redis_url: str = "redis://localhost:6379/0"

    # Single fixed zone shared with window editors and customers
    timezone: str = "America/Bogota"

    booking_limit_shipping_per_week: int = 3

    # Comma-separated admin addresses copied on every new appointment
    mail_notify: str = ""

    reminders_enabled: bool = True
    reminder_interval_seconds: int = 60
    reminder_1h_lead_minutes: int = 60
    reminder_30m_lead_minutes: int = 30

    notification_webhook_url: str | None = None
    notification_timeout_seconds: float = 10.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # Relative SQLite paths are anchored at the repo root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url

    @property
    def admin_recipients(self) -> list[str]:
        return [s.strip() for s in self.mail_notify.split(",") if s.strip()]


settings = Settings()
