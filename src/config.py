from functools import lru_cache
from typing import ClassVar, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Metrics backend (REST API serving /monitor/metrics and per-category endpoints)
    metrics_api_url: str = "http://localhost:8080/api"
    metrics_timeout_seconds: float = 10.0

    # "snapshot" polls the unified endpoint; "categories" polls each section on its own cadence
    polling_mode: Literal["snapshot", "categories"] = "snapshot"

    # Polling cadences in seconds
    poll_interval_seconds: float = 3.0
    cpu_poll_interval_seconds: float = 3.0
    memory_poll_interval_seconds: float = 3.0
    process_poll_interval_seconds: float = 3.0
    alert_poll_interval_seconds: float = 3.0
    disk_poll_interval_seconds: float = 5.0

    # Rolling history capacities (samples per series)
    history_capacity: int = 20
    core_history_capacity: int = 10

    # LLM provider - empty API key for the selected provider means AI analysis is disabled
    llm_provider: Literal["openai", "anthropic"] = "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = ""  # Optional OpenAI-compatible proxy URL
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5"
    llm_temperature: float = 0.2

    # Bound on a single AI call (0 = wait indefinitely)
    ai_timeout_seconds: float = 0.0

    # Batch analysis of high-risk processes
    high_risk_batch_limit: int = 5

    # Periodic system analysis (optional - empty = scheduler disabled)
    analysis_schedule_cron: str = ""  # e.g. "*/15 * * * *"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def ai_enabled(self) -> bool:
        """Whether an API key is configured for the selected LLM provider."""
        if self.llm_provider == "anthropic":
            return bool(self.anthropic_api_key)
        return bool(self.openai_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
