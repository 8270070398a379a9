from pydantic_settings import BaseSettings
from pydantic import field_validator
from decimal import Decimal
from typing import Dict
from functools import lru_cache


class Settings(BaseSettings):
    """Commission engine settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./commissions.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Commission Settings
    DEFAULT_COMMISSION_RATE: Decimal = Decimal("10")  # Percent, used when no rule matches
    COMMISSION_TRIGGER_STATUS: str = "completed"  # Order status that creates commissions
    SKIP_ADMIN_COMMISSIONS: bool = False  # Accepted for compatibility, has no effect

    # Payout Settings
    MINIMUM_PAYOUT: Decimal = Decimal("50")
    PAYOUT_FEE_HANDLING: str = "platform"  # platform: platform absorbs fees, vendor: fee deducted
    PLATFORM_FEE_PERCENT: Decimal = Decimal("0")
    CURRENCY: str = "usd"
    AUTO_PAYOUT_SCHEDULE: str = "disabled"  # Options: disabled, daily, weekly
    PAYOUT_JOB_HOUR: int = 2  # Hour of day the payout job runs
    SCHEDULER_TIMEZONE: str = "UTC"

    # Transfer Provider
    TRANSFER_API_URL: str = ""  # e.g., "https://payments.example.com/v1"
    TRANSFER_API_KEY: str = ""
    TRANSFER_TIMEOUT_SECONDS: float = 30.0
    TRANSFER_DESTINATIONS: Dict[int, str] = {}  # vendor_id -> connected account, JSON in env

    @field_validator('PAYOUT_FEE_HANDLING', mode='before')
    @classmethod
    def parse_fee_handling(cls, v):
        value = str(v).strip().lower()
        if value not in ("platform", "vendor"):
            raise ValueError("PAYOUT_FEE_HANDLING must be 'platform' or 'vendor'")
        return value

    @field_validator('AUTO_PAYOUT_SCHEDULE', mode='before')
    @classmethod
    def parse_payout_schedule(cls, v):
        value = str(v).strip().lower()
        if value not in ("disabled", "daily", "weekly"):
            raise ValueError("AUTO_PAYOUT_SCHEDULE must be 'disabled', 'daily' or 'weekly'")
        return value

    @field_validator('CURRENCY', mode='before')
    @classmethod
    def parse_currency(cls, v):
        return str(v).strip().lower()

    @field_validator('DEFAULT_COMMISSION_RATE', 'MINIMUM_PAYOUT', 'PLATFORM_FEE_PERCENT')
    @classmethod
    def non_negative(cls, v):
        if v < 0:
            raise ValueError("must not be negative")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
