# app/cctp/chains.py
from __future__ import annotations

from app.providers.circle.config import normalize_chain, supported_chains


DOMAINS: dict[str, int] = {
    "ETH": 0,
    "ETH-SEPOLIA": 0,
    "AVAX": 1,
    "AVAX-FUJI": 1,
    "OP": 2,
    "OP-SEPOLIA": 2,
    "ARB": 3,
    "ARB-SEPOLIA": 3,
    "BASE": 6,
    "BASE-SEPOLIA": 6,
    "MATIC": 7,
    "MATIC-AMOY": 7,
}

# MessageTransmitterV2 is deployed at the same address on every chain of a network
MESSAGE_TRANSMITTER = {
    "testnet": "0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275",
    "mainnet": "0x81D40F21F12A8F0E3252Bccb954D722d4c464B64",
}

RECEIVE_MESSAGE_SIGNATURE = "receiveMessage(bytes,bytes)"


def cctp_chains(domains: dict[str, int] | None = None) -> list[str]:
    mapping = DOMAINS if domains is None else domains
    return [c for c in supported_chains() if normalize_chain(c) in mapping]
