
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repository root


class Settings(BaseSettings):
    database_url: str
    redis_url: str | None = None

    events_queue: str = "events:p2p"
    lock_timeout_seconds: float = 10.0

    payment_required: bool = True
    payment_poll_interval_seconds: float = 3.0
    payment_poll_timeout_seconds: float = 180.0
    payment_status_url: str | None = None

    reminder_before_hours: int = 24
    reminder_checker_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # relative sqlite path is resolved against the repository root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
