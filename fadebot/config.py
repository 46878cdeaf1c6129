from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_range(value: str | tuple[int, int]) -> tuple[int, int]:
    if isinstance(value, (tuple, list)):
        return (int(value[0]), int(value[1]))
    parts = [p.strip() for p in str(value).split(",") if p.strip()]
    if len(parts) != 2:
        raise ValueError("Expected a 'min,max' range string, e.g., '2,5'")
    low, high = int(parts[0]), int(parts[1])
    if low > high:
        low, high = high, low
    return (low, high)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Channel adapter (mock only in this release)
    ADAPTER: str = Field(default="mock")
    DATA_DIR: Path | None = Field(default=None)

    # Persistence
    STORE: str = Field(default="sql")
    DATABASE_URL: str = Field(default="sqlite:///fadebot.db")

    # Selection rules
    REQUIRED_TAG: str = Field(default="The Marked")
    MAX_ROUNDS: int = Field(default=3, gt=0)
    COOLDOWN_DAYS: float = Field(default=7, ge=0)
    NIGHT_START_HOUR: int = Field(default=21, ge=0, le=23)
    NIGHT_END_HOUR: int = Field(default=6, ge=0, le=23)
    ACTIVITY_TIMEZONE: str = Field(default="UTC")
    TESTING_MODE: bool = Field(default=False)

    # Message generation
    GENERATOR: str = Field(default="template")
    DEEPSEEK_API_KEY: str = Field(default="")
    DEEPSEEK_MODEL: str = Field(default="deepseek-chat")
    DEEPSEEK_BASE_URL: str = Field(default="https://api.deepseek.com/v1")

    # Collaborator bounds (seconds)
    GENERATION_TIMEOUT_S: float = Field(default=30.0, gt=0)
    DELIVERY_TIMEOUT_S: float = Field(default=10.0, gt=0)

    # Inbound handling
    TERMINAL_NOTICE: str = Field(default="Error_60_No_API_Service")
    USER_ID_PATTERN: str = Field(default=r"^\d{17,19}$")
    MAX_MESSAGE_LENGTH: int = Field(default=2000, gt=0)

    # Global behavior
    SEED: int = Field(default=12345)
    LOG_JSON: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    SCHEDULE_CRON: str = Field(default="0 * * * *")
    HTTP_HOST: str = Field(default="127.0.0.1")
    HTTP_PORT: int = Field(default=3000)

    # Mock adapter latency in milliseconds (min,max) and failure injection
    MOCK_LATENCY_MS_RANGE: Annotated[tuple[int, int], NoDecode] = Field(default=(0, 0))
    MOCK_DELIVERY_FAILURE_RATE: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("MOCK_LATENCY_MS_RANGE", mode="before")
    @classmethod
    def _validate_latency(cls, v):  # type: ignore[override]
        return _parse_range(v)

    @field_validator("STORE", "GENERATOR", "ADAPTER", mode="before")
    @classmethod
    def _lower(cls, v):  # type: ignore[override]
        return str(v).strip().lower()

    @model_validator(mode="after")
    def _check_generator_credentials(self) -> "Settings":
        if self.GENERATOR == "deepseek" and not self.DEEPSEEK_API_KEY.startswith("sk-"):
            raise ValueError("GENERATOR='deepseek' requires DEEPSEEK_API_KEY starting with 'sk-'")
        return self


def load_settings() -> Settings:
    return Settings()
