# app/providers/circle/config.py
from __future__ import annotations

from settings import settings


TESTNET_CHAINS = (
    "MATIC-AMOY",
    "ETH-SEPOLIA",
    "AVAX-FUJI",
    "ARB-SEPOLIA",
    "BASE-SEPOLIA",
    "OP-SEPOLIA",
)

MAINNET_CHAINS = ("MATIC", "ETH", "AVAX", "ARB", "BASE", "OP")

USDC_TOKEN_ADDRESSES: dict[str, str] = {
    # mainnet
    "MATIC": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
    "ETH": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    "ARB": "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
    "BASE": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    "OP": "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
    "AVAX": "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
    # testnet
    "MATIC-AMOY": "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582",
    "ETH-SEPOLIA": "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
    "ARB-SEPOLIA": "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
    "BASE-SEPOLIA": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    "OP-SEPOLIA": "0x5fd84259d66Cd46123540766Be93DFE6D43130D7",
    "AVAX-FUJI": "0x5425890298aed601595a70AB815c96711a31Bc65",
}


def normalize_chain(value: str | None) -> str:
    return (value or "").strip().upper().replace("_", "-")


def circle_environment() -> str:
    return (settings.CIRCLE_ENVIRONMENT or "testnet").strip().lower()


def supported_chains() -> tuple[str, ...]:
    if circle_environment() == "mainnet":
        return MAINNET_CHAINS
    return TESTNET_CHAINS


def is_supported_chain(chain: str | None) -> bool:
    return normalize_chain(chain) in supported_chains()


def usdc_token_address(chain: str | None) -> str | None:
    return USDC_TOKEN_ADDRESSES.get(normalize_chain(chain))


def missing_config() -> list[str]:
    missing: list[str] = []
    if not settings.CIRCLE_API_KEY:
        missing.append("CIRCLE_API_KEY")
    if not settings.CIRCLE_ENTITY_SECRET:
        missing.append("CIRCLE_ENTITY_SECRET")
    return missing
