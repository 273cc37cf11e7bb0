"""Application configuration via environment variables."""

from typing import Literal, Optional
from urllib.parse import urlparse

from pydantic_settings import BaseSettings


class ConfigurationError(ValueError):
    """Raised when required provider options are missing or malformed."""


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class Settings(BaseSettings):
    # Gateway credentials and URLs
    redirect_url: str = ""
    callback_url: str = "http://localhost:9000"
    client_id: str = ""
    client_secret: str = ""
    client_version: int = 1
    mode: Literal["production", "uat", "test"] = "test"
    salt: Optional[str] = None  # v1 checksum salt, accepted for migration only

    # SDK webhook validation (both required to enable signed-callback checks)
    merchant_username: Optional[str] = None
    merchant_password: Optional[str] = None

    enabled_debug_logging: bool = False
    token_cache_enabled: bool = True
    payment_description: str = "Payment for your order"

    # Resilience tuning
    status_cache_ttl_seconds: float = 5.0
    max_retries: int = 3
    base_delay_ms: int = 1000
    http_timeout_seconds: float = 30.0

    use_mock_gateway: bool = False
    database_url: str = "sqlite+aiosqlite:///./phonepe_adapter.db"
    log_level: str = "INFO"

    model_config = {"env_prefix": "PHONEPE_", "env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def webhook_validation_enabled(self) -> bool:
        return bool(self.merchant_username and self.merchant_password)

    def with_mock_defaults(self) -> "Settings":
        """
        Copy with placeholder credentials and URLs filled in where unset, so
        the mock gateway starts without real PhonePe configuration.
        """
        defaults = {
            "client_id": "MOCK_CLIENT",
            "client_secret": "mock-secret",
            "redirect_url": "http://localhost:8000/checkout/complete",
            "callback_url": "http://localhost:8000/phonepe/hooks",
        }
        return self.model_copy(update={k: v for k, v in defaults.items() if not getattr(self, k)})

    def validate_required(self) -> None:
        """
        Fail fast on missing or malformed provider options.

        Raises:
            ConfigurationError: Naming the first offending option.
        """
        for option in ("client_id", "client_secret", "redirect_url", "callback_url"):
            if not getattr(self, option):
                raise ConfigurationError(f"Required option `{option}` is missing in PhonePe plugin")

        for option in ("redirect_url", "callback_url"):
            if not _is_http_url(getattr(self, option)):
                raise ConfigurationError(f"Option `{option}` is not a valid http(s) URL")


settings = Settings()
