from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="KINCARE_"
    )

    # Generative interpreter
    openrouter_api_key: str = ""
    llm_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = "openai/gpt-4o-mini"
    llm_timeout_seconds: float = 8.0
    high_confidence_threshold: float = 0.85

    # Storage
    database_url: str = "sqlite:///kincare.db"
    signup_bonus: int = 10

    # Channels
    telegram_bot_token: str = ""

    # Payments (Dodo)
    dodo_api_key: str = ""
    dodo_environment: str = "test_mode"
    dodo_webhook_secret: str = ""
    dodo_product_try_it_out: str = "prod_try_it_out"
    dodo_product_monthly_care: str = "prod_monthly_care"
    dodo_product_yearly_care: str = "prod_yearly_care"
    dodo_product_care_plus: str = "prod_care_plus_subscription"
    internal_api_key: str = ""
    frontend_url: str = "http://localhost:3000"


@lru_cache
def get_settings() -> Settings:
    return Settings()
