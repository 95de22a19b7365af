from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "cashier"
    version: str = "0.1.0"
    DEBUG: bool = False
    APP_DOMAIN: str = "example.com"
    APP_DATABASE_DSN: str = "sqlite:////tmp/cashier.db"

    # Payment gateway
    gateway_name: str = "braintree"

    # Braintree gateway
    braintree_environment: str = "sandbox"  # "sandbox" or "production"
    braintree_merchant_id: str = ""
    braintree_public_key: str = ""
    braintree_private_key: str = ""

    # Gateway request policy. Only reads are retried.
    gateway_timeout_seconds: float = 30.0
    gateway_read_retries: int = 3
    gateway_retry_backoff_seconds: float = 0.5

    # Label used when callers don't name a subscription
    default_subscription_name: str = "main"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"


settings = Settings()
