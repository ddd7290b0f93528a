from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    DATABASE_URL: str = "sqlite:///./commissions.db"

    # App Settings
    APP_NAME: str = "Affiliate Commissions API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Commission engine defaults (stores may override maturity days)
    DEFAULT_MATURITY_DAYS: int = 7
    FIXED_DISCOUNT_POLICY: str = "proportional"  # 'proportional' | 'per_item'

    @field_validator("DEFAULT_MATURITY_DAYS")
    @classmethod
    def maturity_in_range(cls, v: int) -> int:
        if not 0 <= v <= 90:
            raise ValueError("DEFAULT_MATURITY_DAYS must be between 0 and 90")
        return v

    @field_validator("FIXED_DISCOUNT_POLICY")
    @classmethod
    def known_policy(cls, v: str) -> str:
        if v not in ("proportional", "per_item"):
            raise ValueError("FIXED_DISCOUNT_POLICY must be 'proportional' or 'per_item'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
