import pytest

from app.cctp import state_machine as cctp_sm
from app.errors import InvalidTransition
from app.transfers import state_machine as transfer_sm


@pytest.mark.parametrize(
    "event_type, reported, expected",
    [
        ("transactions.complete", None, "COMPLETE"),
        ("transactions.failed", "SENT", "FAILED"),
        ("transactions.denied", None, "DENIED"),
        ("transactions.cancelled", None, "CANCELLED"),
        ("transactions.created", "QUEUED", "QUEUED"),
        ("transactions.created", None, "INITIATED"),
        ("transactions.updated", "confirmed", "CONFIRMED"),
        ("transactions.updated", "WEIRD", None),
        ("transactions.confirmed", None, "CONFIRMED"),
        ("transactions.inbound", "COMPLETE", None),
        ("wallets.created", "COMPLETE", None),
        ("", None, None),
    ],
)
def test_map_event(event_type, reported, expected):
    assert transfer_sm.map_event(event_type, reported) == expected


def test_transfer_progression_is_forward_only():
    assert transfer_sm.can_transition("INITIATED", "SENT")
    assert transfer_sm.can_transition("SENT", "STUCK")
    assert transfer_sm.can_transition("STUCK", "SENT")
    assert not transfer_sm.can_transition("CONFIRMED", "QUEUED")
    assert not transfer_sm.can_transition("SENT", "SENT")


@pytest.mark.parametrize("terminal", sorted(transfer_sm.TERMINAL))
def test_terminal_transfer_states_never_move(terminal):
    for target in transfer_sm.STATES:
        assert not transfer_sm.can_transition(terminal, target)
    with pytest.raises(InvalidTransition):
        transfer_sm.assert_transition(terminal, "SENT")


def test_fee_invariant():
    transfer_sm.assert_fee_invariant(False, None)
    transfer_sm.assert_fee_invariant(True, "ptx-1")
    with pytest.raises(ValueError):
        transfer_sm.assert_fee_invariant(True, None)


def test_cctp_transitions():
    assert cctp_sm.can_transition("INITIATED", "BURN_PENDING")
    assert cctp_sm.can_transition("BURN_CONFIRMED", "ATTESTATION_RECEIVED")
    assert not cctp_sm.can_transition("BURN_CONFIRMED", "CANCELLED")
    assert not cctp_sm.can_transition("COMPLETED", "FAILED")
    with pytest.raises(InvalidTransition):
        cctp_sm.assert_transition("INITIATED", "COMPLETED")


def test_cctp_sources_and_cancellable():
    assert cctp_sm.sources_for("CANCELLED") == ("BURN_PENDING", "INITIATED")
    assert cctp_sm.sources_for("COMPLETED") == ("ATTESTATION_RECEIVED",)
    assert cctp_sm.CANCELLABLE == {"INITIATED", "BURN_PENDING"}


def test_completed_requires_mint_hash():
    cctp_sm.assert_completed_invariant("COMPLETED", "0xabc")
    cctp_sm.assert_completed_invariant("FAILED", None)
    with pytest.raises(ValueError):
        cctp_sm.assert_completed_invariant("COMPLETED", None)
