from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env at the project root wins over nothing, loses to real env vars
ENV_PATH = Path(__file__).resolve().parent.parent.parent / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH)

RedemptionMode = Literal["flat", "arbitrary"]


@dataclass(frozen=True)
class PricingConfig:
    """Constants the pricing code needs. Amounts are whole currency units (INR)."""

    free_shipping_threshold: int = 2000
    flat_shipping_fee: int = 150
    cod_surcharge: int = 50
    coin_unit_value: int = 1
    currency_per_coin_earned: int = 100
    redemption_mode: RedemptionMode = "flat"
    flat_redemption: int = 100
    clamp_redemption: bool = True


class Settings(BaseSettings):
    # --- App ---
    APP_NAME: str = "ICL Streetwear"
    LOG_LEVEL: str = "INFO"

    # --- Auth ---
    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    JWT_EXPIRE_DAYS: int = 7
    COOKIE_NAME: str = "icl_token"
    ADMIN_COOKIE_NAME: str = "icl_admin_token"

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./icl_store.db"

    # --- Admin bootstrap ---
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "change-me-too"

    # --- Pricing ---
    FREE_SHIPPING_THRESHOLD: int = 2000
    FLAT_SHIPPING_FEE: int = 150
    COD_SURCHARGE: int = 50

    # --- Coins ---
    COIN_UNIT_VALUE: int = 1
    CURRENCY_PER_COIN_EARNED: int = 100
    COIN_REDEMPTION_MODE: RedemptionMode = "flat"
    COIN_FLAT_REDEMPTION: int = 100
    COIN_CLAMP_REDEMPTION: bool = True

    # --- Checkout retries ---
    CHECKOUT_MAX_ATTEMPTS: int = 3
    CHECKOUT_RETRY_BACKOFF: float = 0.1

    model_config = SettingsConfigDict(
        env_file=ENV_PATH,
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def pricing(self) -> PricingConfig:
        return PricingConfig(
            free_shipping_threshold=self.FREE_SHIPPING_THRESHOLD,
            flat_shipping_fee=self.FLAT_SHIPPING_FEE,
            cod_surcharge=self.COD_SURCHARGE,
            coin_unit_value=self.COIN_UNIT_VALUE,
            currency_per_coin_earned=self.CURRENCY_PER_COIN_EARNED,
            redemption_mode=self.COIN_REDEMPTION_MODE,
            flat_redemption=self.COIN_FLAT_REDEMPTION,
            clamp_redemption=self.COIN_CLAMP_REDEMPTION,
        )

settings = Settings()
