from functools import lru_cache
from pathlib import Path
from typing import Optional
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MODELS_CONFIG = str(Path(__file__).resolve().parent / "models.yaml")


class Settings(BaseSettings):
    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Logging
    log_level: str = "INFO"

    # Provider catalogue
    models_config_path: str = Field(
        DEFAULT_MODELS_CONFIG,
        validation_alias=AliasChoices("MODELS_CONFIG", "models_config_path"),
    )

    # API Keys (one per provider family; models.yaml names which one applies)
    openai_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None

    # System instruction
    assistant_identity: str = "OlenkaAI, a company based in Shillong"
    default_language: str = "english"

    # Upstream calls
    provider_timeout_s: float = 180.0

    # Gateway throttling (per caller)
    chat_rate_limit: int = 20
    chat_rate_window_s: float = 60.0
    rate_limit_max_keys: int = 10_000

    # Conversations
    title_max_chars: int = 100
    history_limit: int = 100

    # CORS (comma separated)
    cors_allow_origins: str = ""

    # Python client
    gateway_url: str = "http://localhost:8000"
    user_id: Optional[str] = None
    persistence_queue_size: int = 256

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
