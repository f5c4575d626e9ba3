from __future__ import annotations

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    llm_provider: str = "openai"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None
    llm_max_tokens: int = 2048
    headless: bool = True
    user_data_dir: str = "~/.autofill_agent/profiles/default"
    poll_interval_ms: int = 500
    wait_timeout_ms: int = 5000
    highlight_ms: int = 2000
    diagnostic_limit: int = 10
    log_level: str = "INFO"

def get_settings() -> Settings:
    return Settings()


settings = get_settings()
