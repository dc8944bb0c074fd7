from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_WELFARE_CATEGORIES = [
    "wedding",
    "training",
    "childbirth",
    "funeral",
    "glasses",
    "dental",
    "medical",
    "fitness",
    "internal_training",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Benefit Flow"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "postgresql+asyncpg://benefit_flow:benefit_flow@db:5432/benefit_flow"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:8000"]
    log_level: str = "INFO"
    port: int = 8000
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # Workflow policy
    special_approval_threshold: Decimal = Decimal("10000")
    special_approval_categories: list[str] = _WELFARE_CATEGORIES
    default_benefit_limits: dict[str, Decimal] = {
        "wedding": Decimal("3000"),
        "training": Decimal("10000"),
        "childbirth": Decimal("8000"),
        "funeral": Decimal("10000"),
        "dental_glasses": Decimal("2000"),
        "medical": Decimal("1000"),
        "fitness": Decimal("300"),
    }
    max_transition_retries: int = 5

    # Event outbox
    outbox_redelivery_interval_seconds: int = 60
    outbox_batch_size: int = 100


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings | None) -> None:
    """Replace the cached settings (tests and embedding callers)."""
    global _settings
    _settings = settings
