# app/transfers/state_machine.py
from __future__ import annotations

from typing import Optional

from app.errors import InvalidTransition


STATES = (
    "INITIATED",
    "QUEUED",
    "SENT",
    "CONFIRMED",
    "COMPLETE",
    "FAILED",
    "CANCELLED",
    "DENIED",
    "STUCK",
    "CLEARED",
)

TERMINAL = frozenset({"COMPLETE", "FAILED", "CANCELLED", "DENIED"})

# provider progression; equal rank means the states may alternate
_RANK = {
    "INITIATED": 0,
    "CLEARED": 1,
    "QUEUED": 2,
    "SENT": 3,
    "STUCK": 3,
    "CONFIRMED": 4,
    "COMPLETE": 5,
    "FAILED": 5,
    "CANCELLED": 5,
    "DENIED": 5,
}

EVENT_STATES = {
    "transactions.complete": "COMPLETE",
    "transactions.failed": "FAILED",
    "transactions.denied": "DENIED",
    "transactions.cancelled": "CANCELLED",
    "transactions.confirmed": "CONFIRMED",
}


def map_event(event_type: str, notification_state: Optional[str]) -> Optional[str]:
    """
    Internal state for a provider callback, or None when the event carries
    nothing this service acts on.
    """
    event_type = (event_type or "").strip().lower()
    reported = (notification_state or "").strip().upper()

    if event_type == "transactions.inbound":
        # deposits into our wallets are not transfers this service started
        return None
    if event_type in EVENT_STATES:
        return EVENT_STATES[event_type]
    if event_type == "transactions.created":
        return reported if reported in ("INITIATED", "QUEUED") else "INITIATED"
    if event_type.startswith("transactions.") and reported in _RANK:
        return reported
    return None


def is_terminal(state: str) -> bool:
    return state in TERMINAL


def can_transition(old: str, new: str) -> bool:
    if old in TERMINAL or old == new:
        return False
    if old not in _RANK or new not in _RANK:
        return False
    return _RANK[new] >= _RANK[old]


def assert_transition(old: str, new: str) -> None:
    if not can_transition(old, new):
        raise InvalidTransition(f"Illegal transfer transition: {old} -> {new}")


def assert_fee_invariant(fee_collected: bool, fee_transfer_id: Optional[str]) -> None:
    """
    Invariant: a collected fee MUST reference its own provider transaction.
    """
    if fee_collected and not fee_transfer_id:
        raise ValueError("Invariant violation: fee_collected requires fee_transfer_id")
