# app/fees/policy.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Optional

from app.errors import ValidationFailed
from app.fees import config_repository as config_repo
from app.providers.circle.config import normalize_chain
from db import get_conn
from services.ttl_cache import TTLCache
from settings import settings


logger = logging.getLogger("chainpay.fees")

FEE_CONFIG_KEY = "CIRCLE_FEE_CONFIG"
USDC_QUANTUM = Decimal("0.000001")


def quantize_usdc(value: Decimal) -> Decimal:
    return value.quantize(USDC_QUANTUM, rounding=ROUND_HALF_UP)


def require_usdc_amount(value: Any) -> Decimal:
    """Positive amount with at most 6 decimal places."""
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationFailed("Invalid amount", code="INVALID_AMOUNT") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationFailed("Amount must be greater than zero", code="INVALID_AMOUNT")
    if amount != amount.quantize(USDC_QUANTUM):
        raise ValidationFailed("Amount supports at most 6 decimal places", code="INVALID_AMOUNT")
    return amount


@dataclass(frozen=True)
class FeeConfig:
    enabled: bool
    percentage: Decimal
    min_fee_usdc: Decimal
    collection_wallets: dict[str, str] = field(default_factory=dict)

    @classmethod
    def defaults(cls) -> "FeeConfig":
        return cls(
            enabled=bool(settings.FEE_ENABLED),
            percentage=Decimal(str(settings.FEE_PERCENTAGE)),
            min_fee_usdc=Decimal(str(settings.FEE_MIN_USDC)),
            collection_wallets=dict(settings.FEE_COLLECTION_WALLETS),
        )

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> "FeeConfig":
        base = cls.defaults()
        wallets = raw.get("collectionWallets")
        return cls(
            enabled=bool(raw.get("enabled", base.enabled)),
            percentage=Decimal(str(raw.get("percentage", base.percentage))),
            min_fee_usdc=Decimal(str(raw.get("minFeeUsdc", base.min_fee_usdc))),
            collection_wallets={normalize_chain(k): str(v or "") for k, v in (wallets or {}).items()}
            if wallets is not None
            else base.collection_wallets,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "percentage": str(self.percentage),
            "minFeeUsdc": str(self.min_fee_usdc),
            "collectionWallets": dict(self.collection_wallets),
        }


class FeePolicy:
    """Service fee calculation and collection destinations, cached with a short TTL."""

    def __init__(self, *, connect: Callable = get_conn, ttl_s: Optional[int] = None):
        self._connect = connect
        ttl = ttl_s if ttl_s is not None else settings.FEE_CONFIG_TTL_S
        self._cache: TTLCache[FeeConfig] = TTLCache(self._load, ttl, name="fee_config")

    def _load(self) -> FeeConfig:
        # errors propagate so the cache keeps serving the last good config
        with self._connect() as conn:
            raw = config_repo.get_system_config(conn, FEE_CONFIG_KEY)
            if raw is None:
                logger.info("fee config not found, initializing with defaults")
                raw = config_repo.insert_system_config_if_missing(
                    conn, FEE_CONFIG_KEY, FeeConfig.defaults().to_json()
                )
        return FeeConfig.from_json(raw)

    def get_config(self) -> FeeConfig:
        try:
            return self._cache.get()
        except Exception:
            # nothing cached yet; defaults are returned but never cached
            logger.exception("failed to load fee config; using defaults")
            return FeeConfig.defaults()

    def calculate_fee(self, amount: Decimal) -> Decimal:
        if amount <= 0:
            return Decimal("0")
        config = self.get_config()
        if not config.enabled:
            return Decimal("0")
        fee = max(amount * config.percentage / Decimal(100), config.min_fee_usdc)
        return quantize_usdc(fee)

    def collection_wallet(self, chain: str) -> Optional[str]:
        wallet = self.get_config().collection_wallets.get(normalize_chain(chain))
        if not wallet or not wallet.strip():
            logger.warning("no fee collection wallet configured for chain=%s", chain)
            return None
        return wallet.strip()

    def validate_collection_wallets(self, chains: list[str]) -> dict[str, Any]:
        wallets = self.get_config().collection_wallets
        missing = [c for c in chains if not (wallets.get(normalize_chain(c)) or "").strip()]
        return {"valid": not missing, "missing": missing}

    def update_config(self, changes: dict[str, Any], *, updated_by: Optional[str] = None) -> FeeConfig:
        current = self.get_config()
        try:
            updated = replace(
                current,
                enabled=bool(changes["enabled"]) if changes.get("enabled") is not None else current.enabled,
                percentage=Decimal(str(changes["percentage"]))
                if changes.get("percentage") is not None
                else current.percentage,
                min_fee_usdc=Decimal(str(changes["min_fee_usdc"]))
                if changes.get("min_fee_usdc") is not None
                else current.min_fee_usdc,
                collection_wallets={
                    **current.collection_wallets,
                    **{normalize_chain(k): str(v or "").strip() for k, v in (changes.get("collection_wallets") or {}).items()},
                },
            )
        except InvalidOperation as exc:
            raise ValidationFailed("Fee values must be numeric", code="INVALID_FEE_CONFIG") from exc

        if updated.percentage < 0 or updated.percentage > 100:
            raise ValidationFailed("Fee percentage must be between 0 and 100", code="INVALID_FEE_CONFIG")
        if updated.min_fee_usdc < 0:
            raise ValidationFailed("Minimum fee cannot be negative", code="INVALID_FEE_CONFIG")

        with self._connect() as conn:
            config_repo.upsert_system_config(conn, FEE_CONFIG_KEY, updated.to_json(), updated_by=updated_by)

        self._cache.set(updated)
        logger.info("fee config updated: %s%%, min %s USDC", updated.percentage, updated.min_fee_usdc)
        return updated

    def clear_cache(self) -> None:
        self._cache.clear()
