# app/cctp/state_machine.py
from __future__ import annotations

from typing import Optional

from app.errors import InvalidTransition


ALLOWED = {
    "INITIATED": {"BURN_PENDING", "FAILED", "CANCELLED"},
    "BURN_PENDING": {"BURN_CONFIRMED", "ATTESTATION_RECEIVED", "FAILED", "CANCELLED"},
    "BURN_CONFIRMED": {"ATTESTATION_RECEIVED", "FAILED"},
    "ATTESTATION_RECEIVED": {"COMPLETED", "FAILED"},
    "COMPLETED": set(),
    "FAILED": set(),
    "CANCELLED": set(),
}

TERMINAL = frozenset({"COMPLETED", "FAILED", "CANCELLED"})
CANCELLABLE = frozenset({"INITIATED", "BURN_PENDING"})


def can_transition(old: str, new: str) -> bool:
    return new in ALLOWED.get(old, set())


def assert_transition(old: str, new: str) -> None:
    if not can_transition(old, new):
        raise InvalidTransition(f"Illegal CCTP transition: {old} -> {new}")


def sources_for(new: str) -> tuple[str, ...]:
    """States from which `new` is reachable; used as the database-side guard."""
    return tuple(sorted(s for s, targets in ALLOWED.items() if new in targets))


def assert_completed_invariant(new_state: str, mint_tx_hash: Optional[str]) -> None:
    """
    Invariant: a COMPLETED transfer MUST carry the mint transaction hash.
    """
    if new_state == "COMPLETED" and not mint_tx_hash:
        raise ValueError("Invariant violation: state=COMPLETED requires mint_tx_hash")
