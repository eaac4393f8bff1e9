from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MYTRAINER_",
        case_sensitive=False,
    )

    # App
    env: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    api_token: str = ""

    # Database
    db_url: str = "sqlite+aiosqlite:///./mytrainer.db"

    # Scheduling
    business_timezone: str = "Australia/Melbourne"
    session_duration_minutes: int = 60
    booking_warning_hours: int = 24
    late_cancellation_hours: int = 24
    max_sessions_per_schedule: int = 200
    max_preferences_per_schedule: int = 10
    recurring_sessions_enabled: bool = True
    pack_restore_attempts: int = 3

    # Email
    email_enabled: bool = False
    email_from: str = ""
    email_resend_api_key: str = ""
    reminder_window_minutes: int = 5


def get_settings() -> Settings:
    return Settings()
