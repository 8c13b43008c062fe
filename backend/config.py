from datetime import UTC, datetime
from pathlib import Path

from pydantic_settings import BaseSettings


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Replaces the deprecated ``datetime.utcnow()`` while keeping datetimes
    naive so they stay compatible with SQLite (which doesn't store tz info).
    """
    return datetime.now(UTC).replace(tzinfo=None)


class Settings(BaseSettings):
    app_name: str = "Phrase SRS"
    database_url: str = f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'data' / 'phrase_srs.db'}"

    # Defaults applied when a member has no (or a corrupt) settings row
    target_retention: float = 0.9
    new_per_day: int = 20
    reviews_per_day: int = 100
    learning_steps: list[str] = ["1m", "10m"]
    relearning_steps: list[str] = ["10m"]
    enable_fuzz: bool = False
    maximum_interval_days: int = 36500

    # Struggle detection
    struggle_consecutive_threshold: int = 5
    struggle_24h_threshold: int = 5
    struggle_7d_threshold: int = 10
    pause_on_struggle: bool = False

    rating_retry_attempts: int = 3
    debug: bool = False

    model_config = {"env_prefix": "PHRASE_SRS_", "env_file": ".env"}


settings = Settings()
