"""Application configuration using Pydantic Settings."""

from pathlib import Path

from pydantic_settings import BaseSettings

# Repo-level .env is optional; environment variables always win.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    # City input
    default_city: str = "Москва"
    city_query_max_length: int = 80

    # Refresh cadence
    update_interval_sec: float = 30.0
    stale_after_sec: float = 25.0

    # Upstream requests
    fetch_timeout_sec: float = 12.0
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = "ru-RU,ru;q=0.9,en-US;q=0.8,en;q=0.7"

    # Rate limiting (fixed window, per client per scope)
    rate_window_sec: float = 60.0
    rate_limit_api: int = 90
    rate_limit_refresh: int = 30
    rate_limit_stream: int = 45
    trust_forwarded_for: bool = True

    # Event stream
    stream_keepalive_sec: float = 15.0
    stream_retry_ms: int = 4000

    model_config = {"env_prefix": "WXC_", "env_file": str(_ENV_FILE)}

    @property
    def rate_limits(self) -> dict[str, int]:
        return {
            "api": self.rate_limit_api,
            "refresh": self.rate_limit_refresh,
            "stream": self.rate_limit_stream,
        }


settings = Settings()
