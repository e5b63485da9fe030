from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class ENV(BaseSettings):
    model_config = SettingsConfigDict(validate_default=True, env_file=".env", env_file_encoding="utf-8")

    service_api_token: str

    DEBUG: bool = False

    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_NAME: str = "affiliates"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASS: str = ""
    # sqlite+aiosqlite:///... for local runs and tests
    DATABASE_URL: str | None = None

    redis_url: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    CELERY_TIMEZONE: str = "UTC"

    COMMISSION_RATE: Decimal = Decimal("10")
    MINIMUM_WITHDRAW: Decimal = Decimal("500")
    REFERRAL_CODE_SIZE: int = 8
    AFFILIATE_VIEW_TTL: int = 300

    PAYOUT_SERVICE_URL: str | None = None


class Settings():
    def __init__(self):
        self.env = ENV()

    def generate_postgres_url(self) -> str:
        return f"postgresql+asyncpg://{self.env.POSTGRES_USER}:{self.env.POSTGRES_PASS}@{self.env.POSTGRES_HOST}:{self.env.POSTGRES_PORT}/{self.env.POSTGRES_NAME}"

    def database_url(self) -> str:
        return self.env.DATABASE_URL or self.generate_postgres_url()
