# settings.py
from __future__ import annotations

import json
from decimal import Decimal
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(default="postgresql://localhost:5432/chainpay")
    DB_POOL_MIN: int = 1
    DB_POOL_MAX: int = 10
    DB_STATEMENT_TIMEOUT_MS: int = 5000
    DB_IDLE_TX_TIMEOUT_MS: int = 15000

    # -----------------------
    # JWT (caller identity only)
    # -----------------------
    JWT_SECRET: str = Field(default="dev-secret-change-me", min_length=16)
    JWT_ALG: str = Field(default="HS256")
    JWT_ACCESS_MINUTES: int = Field(default=60)

    # -----------------------
    # Circle (custody provider)
    # -----------------------
    CIRCLE_ENVIRONMENT: Literal["testnet", "mainnet"] = "testnet"
    CIRCLE_API_KEY: str = ""
    CIRCLE_API_BASE_URL: str = "https://api.circle.com/v1/w3s"
    CIRCLE_HTTP_TIMEOUT_S: float = 30.0
    CIRCLE_ENTITY_SECRET: str = ""
    CIRCLE_PUBLIC_KEY_TTL_S: int = 3600

    # -----------------------
    # Webhooks
    # -----------------------
    CIRCLE_WEBHOOK_SECRET: str = ""
    WEBHOOK_ALLOW_UNSIGNED: bool = False  # dev only
    WEBHOOK_TOLERANCE_S: int = 300  # 0 disables the timestamp window

    # -----------------------
    # Service fee
    # -----------------------
    FEE_ENABLED: bool = True
    FEE_PERCENTAGE: Decimal = Decimal("0.5")
    FEE_MIN_USDC: Decimal = Decimal("0.0625")
    FEE_COLLECTION_WALLETS: dict[str, str] = Field(default_factory=dict)
    FEE_CONFIG_TTL_S: int = 60

    # -----------------------
    # Fee retry worker
    # -----------------------
    FEE_RETRY_MAX_RETRIES: int = 3
    FEE_RETRY_BATCH_SIZE: int = 50
    FEE_RETRY_INTERVAL_S: int = 300

    # -----------------------
    # CCTP
    # -----------------------
    CCTP_RELAYER_WALLETS: dict[str, str] = Field(default_factory=dict)
    CCTP_SOURCE_GAS_FEE_USDC: Decimal = Decimal("0.50")
    CCTP_FAST_ATTESTATION_FEE_USDC: Decimal = Decimal("1.00")
    ATTESTATION_API_URL: str = "https://iris-api-sandbox.circle.com"
    ATTESTATION_HTTP_TIMEOUT_S: float = 15.0
    ATTESTATION_SWEEP_BATCH_SIZE: int = 50

    # -----------------------
    # Alerts
    # -----------------------
    ALERT_WEBHOOK_URL: str = ""

    @field_validator("FEE_COLLECTION_WALLETS", "CCTP_RELAYER_WALLETS", mode="before")
    @classmethod
    def _parse_chain_mapping(cls, value):
        # accept a JSON string from the environment as well as a dict
        if value is None or value == "":
            return {}
        if isinstance(value, str):
            value = json.loads(value)
        return {str(k).strip().upper(): str(v).strip() for k, v in dict(value).items()}


settings = Settings()
