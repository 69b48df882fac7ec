from pydantic_settings import BaseSettings
from functools import lru_cache


class ConfigurationError(RuntimeError):
    """Raised at startup when a required credential or backend setting is missing."""


class Settings(BaseSettings):
    # Classifier backend (xAI, OpenAI-compatible)
    xai_api_key: str = ""
    xai_base_url: str = "https://api.x.ai/v1"
    classifier_model: str = "grok-4-1-fast-non-reasoning"
    classifier_temperature: float = 0.3
    classifier_max_tokens: int = 2000
    classifier_batch_size: int = 20
    classifier_batch_delay: float = 1.0  # seconds between batches

    # Price provider
    coingecko_api_key: str = ""  # demo key, optional
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    price_cache_path: str = "data/price_cache.json"
    price_request_delay: float = 2.0  # seconds after each per-ticker resolution
    price_max_attempts: int = 3
    price_backoff_base: float = 2.0
    http_timeout: float = 10.0

    # Stats
    stake_per_call: float = 100.0
    chart_max_points: int = 50

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()
