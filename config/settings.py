"""Application settings and configuration management."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or defaults."""

    DB_PATH: str = Field(default="data/exam_gate.db")

    EXAM_EVAL_TIMEOUT_S: float = 30.0
    DEFAULT_EVALUATION_CRITERIA: str = "Accept genuine answers, reject generic or off-topic responses."
    DEFAULT_GROUP_TOPIC: str = "general discussion"
    PUBLIC_LINK_BASE: str = "https://t.me/"
    PENDING_REVIEW_TEXT: str = "⏳ Your answers are being reviewed by an admin. Please wait."

    LOG_EVENTS: bool = True

    model_config = SettingsConfigDict(env_file=".env", validate_assignment=True)


settings = Settings()
