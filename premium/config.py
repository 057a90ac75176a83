from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    XENDIT_API_KEY: str = ""
    XENDIT_BASE_URL: str = "https://api.xendit.co"
    XENDIT_CALLBACK_TOKEN: str = ""
    MERCHANT_NAME: str = "Properti Pro"
    INVOICE_DURATION_SECONDS: int = 86400  # 24 hours
    APP_BASE_URL: str = "http://localhost:5173"
    GATEWAY_TIMEOUT: float = 30.0

    CHECKOUT_POLL_INTERVAL: float = 2.0
    CHECKOUT_MAX_POLL_INTERVAL: float = 15.0
    CHECKOUT_TIMEOUT: float = 900.0
    CHECKOUT_MAX_ATTEMPTS: int = 120

    ANALYTICS_MAX_RETRIES: int = 5

    DATABASE_URL: str = ""
    NEON_HTTP_ENDPOINT: str = ""

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def success_redirect_url(self) -> str:
        return f"{self.APP_BASE_URL.rstrip('/')}/payment/success"

    @property
    def failure_redirect_url(self) -> str:
        return f"{self.APP_BASE_URL.rstrip('/')}/payment/failure"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
