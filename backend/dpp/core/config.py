"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # App
    app_name: str = "dpp-backend"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    # OpenAI upstream
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    upstream_timeout_seconds: float = 120.0

    # Chat defaults
    chat_default_model: str = "gpt-5-nano"
    chat_default_max_tokens: int = 500
    chat_default_reasoning_effort: str = "low"

    # Text-to-speech defaults
    tts_default_model: str = "tts-1"

    # Realtime voice
    realtime_default_model: str = "gpt-realtime-mini"
    realtime_default_voice: str = "alloy"
    realtime_url: str = "wss://api.openai.com/v1/realtime"

    # Where client-side helpers reach this backend
    backend_url: str = "http://localhost:8000"

    # CORS
    cors_origins: list[str] = ["http://localhost:5173"]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
