"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the slot reservation service.

    Args loaded from .env file and environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Lease
    lock_ttl_seconds: int = 300
    terminal_retention_seconds: int = 3600

    # Expiry reaper
    reaper_enabled: bool = True
    reaper_interval_seconds: int = 15

    # Slot grid
    slot_minutes: int = 30
    business_windows: list[str] = ["08:00-12:00", "13:30-17:30"]
    allow_past_slots: bool = False

    # Realtime
    snapshot_interval_seconds: int = 30
    subscriber_queue_max: int = 0

    # Postgres journal
    journal_enabled: bool = False
    database_host: str = "127.0.0.1"
    database_port: int = 5432
    database_name: str = "slot_reservation_dev"
    database_user: str = "postgres"
    database_password: str = ""

    # HTTP
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    @property
    def database_url(self) -> str:
        """Build async Postgres connection URL."""
        return (
            f"postgresql+asyncpg://{self.database_user}"
            f":{self.database_password}"
            f"@{self.database_host}:{self.database_port}"
            f"/{self.database_name}"
        )


def get_settings() -> Settings:
    """Return a Settings instance.

    Returns:
        Application settings loaded from env.
    """
    return Settings()
