"""
Ledger settings.

Loaded from environment variables (and an optional .env file) using
pydantic-settings.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Business rules and runtime knobs for the referral ledger."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Referral economics (minor currency units)
    commission_per_referral: int = Field(default=250, gt=0)
    min_paid_referrals: int = Field(default=4, ge=0)
    min_withdrawal_amount: int = Field(default=100, gt=0)
    default_payment_amount: int = Field(default=500, gt=0)

    # Approval gate
    admin_ids: str = ""  # Comma-separated list

    # Store
    referral_code_attempts: int = Field(default=5, ge=1)
    store_timeout_seconds: float = Field(default=5.0, gt=0)

    leaderboard_size: int = Field(default=6, ge=1)

    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def admin_id_set(self) -> frozenset[str]:
        return frozenset(i.strip() for i in self.admin_ids.split(",") if i.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings()
