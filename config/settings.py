from pathlib import Path
from typing import Optional
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_BASE_URL"
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta", alias="GEMINI_BASE_URL"
    )
    temperature: float = 0.7
    max_tokens: int = 2000
    timeout: int = Field(default=120, alias="LLM_TIMEOUT")


class ProviderSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    openrouter_api_key: Optional[str] = Field(default=None, alias="OPENROUTER_API_KEY")
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")

    def credentials(self) -> dict[str, str]:
        keys = {
            "OpenRouter": self.openrouter_api_key,
            "Google Gemini": self.gemini_api_key,
        }
        return {provider: key for provider, key in keys.items() if key}


class BacktestSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    judge_model: str = Field(default="OpenRouter::google/gemini-2.5-flash", alias="JUDGE_MODEL")
    feedback_limit: int = Field(default=5, ge=0, alias="FEEDBACK_LIMIT")
    max_predictions: int = Field(default=50, ge=1, alias="MAX_PREDICTIONS")
    participation_threshold: float = Field(default=80.0, alias="PARTICIPATION_THRESHOLD")
    max_forecast_attempts: int = Field(default=3, ge=1, alias="MAX_FORECAST_ATTEMPTS")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: Path = Field(default=Path("db/logs"), alias="LOG_DIR")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    llm: LLMSettings = Field(default_factory=LLMSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    backtest: BacktestSettings = Field(default_factory=BacktestSettings)


@lru_cache
def get_settings() -> Settings:
    return Settings()
