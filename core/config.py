from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    DATABASE_URL: str = Field(..., description="Async SQLAlchemy connection string (postgresql+asyncpg://...)")

    # Redis
    REDIS_URL: str = Field("redis://localhost:6379/0")

    # Identity hashing
    DEVICE_ID_PEPPER: str = Field("", description="Secret appended to device ids before hashing")
    EMAIL_PEPPER: str = Field("", description="Secret appended to emails before hashing")

    # Central account service (auth + rewards ledger)
    CENTRAL_API_URL: str = Field("http://localhost:3005", description="Base URL of the central account service")
    CENTRAL_ADMIN_EMAIL: str = Field("", description="Admin email sent as x-admin-email for account lookups")
    CENTRAL_PLATFORM_CODE: str = "QUIZ"
    CENTRAL_PLATFORM_KEY: str = Field("", description="Platform key sent as x-platform-key for ledger events")
    LEDGER_TIMEOUT_SECONDS: float = 10.0

    # Rewards
    REWARD_COINS: int = 100
    REWARD_XP: int = 50
    REWARD_PERFECT_BONUS_TOKENS: int = 2
    REWARD_MAX_ATTEMPTS: int = 8
    REWARD_BACKOFF_BASE_SECONDS: int = 30
    REWARD_BACKOFF_MAX_SECONDS: int = 3600
    REWARD_RETRY_INTERVAL_SECONDS: int = 30
    REWARD_RETRY_BATCH_SIZE: int = 50
    REWARD_RETRY_JOB_ID: str = "reward_retry"

    # Quiz Settings
    SLUG_MAX_LENGTH: int = 50
    MAX_CHOICES_PER_QUESTION: int = 6
    LEADERBOARD_LIMIT: int = 50
    RECENT_ATTEMPTS_LIMIT: int = 20
    START_RATE_LIMIT_PER_MINUTE: int = 20

    # Auth
    ADMIN_EMAILS: str = Field("", description="Comma separated emails allowed to use the admin API")

    # Environment
    ENV: str = "production"  # development, staging, production
    DEBUG: bool = False
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    @property
    def admin_emails(self) -> List[str]:
        return [e.strip().lower() for e in self.ADMIN_EMAILS.split(",") if e.strip()]

settings = Settings()
