from functools import lru_cache
import json
import os
from pathlib import Path
from typing import Annotated

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_CANDIDATES = (
    Path(__file__).resolve().parent.parent.parent / ".env",
    Path(__file__).resolve().parent.parent / ".env",
    Path.cwd() / ".env",
)

for env_path in _ENV_CANDIDATES:
    if env_path.is_file():
        load_dotenv(env_path, override=False)
        break


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    database_url: str = "postgresql+psycopg://postgres:postgres@db:5432/lp_tracker"
    bot_token: str | None = Field(default=None, alias="BOT_TOKEN")
    groq_api_key: str | None = Field(default=None, alias="GROQ_API_KEY")
    ai_base_url: str = "https://api.groq.com/openai/v1"
    text_models: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [
            "llama-3.3-70b-versatile",
            "llama-3.1-8b-instant",
            "qwen/qwen3-32b",
            "allam-2-7b",
        ]
    )
    vision_models: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [
            "llama-3.2-90b-vision-preview",
            "llama-3.2-11b-vision-preview",
        ]
    )
    ai_request_timeout: float = 30.0
    ai_cascade_budget: float = 90.0
    session_ttl_seconds: int = 30 * 60
    claim_threshold: float = 1.0
    timezone: str = "Asia/Jakarta"
    timezone_label: str = "WIB"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=None, populate_by_name=True)

    @field_validator("text_models", "vision_models", mode="before")
    @classmethod
    def parse_model_list(cls, value: object) -> list[str]:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    return json.loads(stripped)
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in stripped.split(",") if item.strip()]
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        raise ValueError("Invalid model list format.")

    @model_validator(mode="after")
    def populate_from_env(self) -> "Settings":
        if not self.bot_token:
            self.bot_token = os.getenv("BOT_TOKEN")
        if not self.groq_api_key:
            self.groq_api_key = os.getenv("GROQ_API_KEY")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""
    return Settings()
