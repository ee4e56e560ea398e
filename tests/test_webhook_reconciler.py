from __future__ import annotations

import time

import pytest

from app.errors import NotFound, ValidationFailed
from app.webhooks.signing import compute_signature, verify_signature
from services import metrics
from tests.webhook_helpers import deliver, notification_body


@pytest.fixture()
def transfer(services, wallet, user_id):
    result = services.transfers.create_transfer(
        user_id=user_id,
        wallet_id=wallet["id"],
        destination_address="0x" + "12" * 20,
        amount="50",
    )
    (row,) = services.store.transfers.values()
    return row


def _event(services, event_id):
    return services.store.events[event_id]


# ---------------------------
# Signatures
# ---------------------------

def test_signature_roundtrip_and_prefix():
    raw = b'{"a":1}'
    ts = "1700000000"
    sig = compute_signature("s3cret", ts, raw)
    now = lambda: 1700000010.0

    assert verify_signature(raw=raw, signature_header=sig, timestamp_header=ts, secret="s3cret", now=now) == (True, None)
    assert verify_signature(
        raw=raw, signature_header=f"sha256={sig}", timestamp_header=ts, secret="s3cret", now=now
    ) == (True, None)
    # millisecond timestamps are accepted
    ts_ms = "1700000000000"
    sig_ms = compute_signature("s3cret", ts_ms, raw)
    assert verify_signature(raw=raw, signature_header=sig_ms, timestamp_header=ts_ms, secret="s3cret", now=now)[0]


@pytest.mark.parametrize(
    "kw, reason",
    [
        ({"secret": ""}, "WEBHOOK_SECRET_NOT_CONFIGURED"),
        ({"signature_header": None}, "MISSING_SIGNATURE"),
        ({"timestamp_header": ""}, "MISSING_TIMESTAMP"),
        ({"timestamp_header": "yesterday"}, "INVALID_TIMESTAMP"),
        ({"timestamp_header": "1699999000"}, "STALE_TIMESTAMP"),
        ({"signature_header": "00" * 32}, "INVALID_SIGNATURE"),
    ],
)
def test_signature_failures(kw, reason):
    raw = b'{"a":1}'
    ts = "1700000000"
    args = {
        "raw": raw,
        "signature_header": compute_signature("s3cret", ts, raw),
        "timestamp_header": ts,
        "secret": "s3cret",
        "now": lambda: 1700000010.0,
        **kw,
    }
    assert verify_signature(**args) == (False, reason)


def test_invalid_signature_is_logged_but_not_applied(services, transfer):
    raw = notification_body("transactions.complete", transfer["provider_tx_id"], txHash="0xabc")

    result = deliver(services.reconciler, raw, secret="wrong-secret")

    assert result["ok"] is True
    assert result["outcome"] == "INVALID_SIGNATURE"
    event = _event(services, result["event_id"])
    assert event["signature_valid"] is False
    assert event["processed"] is False
    assert event["body_raw"] == raw.decode("utf-8")
    assert services.store.transfers[str(transfer["id"])]["state"] == "INITIATED"


def test_stale_timestamp_is_rejected(services, transfer):
    raw = notification_body("transactions.complete", transfer["provider_tx_id"])

    result = deliver(services.reconciler, raw, timestamp=str(int(time.time()) - 3600))

    assert result["outcome"] == "INVALID_SIGNATURE"
    assert _event(services, result["event_id"])["signature_error"] == "STALE_TIMESTAMP"


def test_unparseable_body_is_logged(services):
    result = deliver(services.reconciler, b"not json")
    assert result["outcome"] == "INVALID_PAYLOAD"
    assert _event(services, result["event_id"])["payload"] is None


# ---------------------------
# Transfer legs
# ---------------------------

def test_complete_event_applies_state_and_chain_data(services, transfer):
    raw = notification_body(
        "transactions.complete",
        transfer["provider_tx_id"],
        state="COMPLETE",
        txHash="0xhash",
        blockHeight=123,
        networkFee="0.0001",
    )

    result = deliver(services.reconciler, raw)

    assert result["outcome"] == "APPLIED"
    row = services.store.transfers[str(transfer["id"])]
    assert row["state"] == "COMPLETE"
    assert row["tx_hash"] == "0xhash"
    assert row["block_height"] == 123
    assert row["completed_at"] is not None
    event = _event(services, result["event_id"])
    assert event["processed"] is True
    assert metrics.counter_value(
        "webhook_events_total", type="transactions.complete", signature_valid="true", result="APPLIED"
    ) == 1


def test_intermediate_states_progress_forward_only(services, transfer):
    tx = transfer["provider_tx_id"]
    assert deliver(services.reconciler, notification_body("transactions.updated", tx, state="SENT"))["outcome"] == "APPLIED"
    assert deliver(services.reconciler, notification_body("transactions.updated", tx, state="QUEUED"))["outcome"] == "NOOP"
    assert services.store.transfers[str(transfer["id"])]["state"] == "SENT"


def test_failed_event_records_reason(services, transfer):
    raw = notification_body("transactions.failed", transfer["provider_tx_id"], errorReason="INSUFFICIENT_NATIVE_TOKEN")
    assert deliver(services.reconciler, raw)["outcome"] == "APPLIED"
    row = services.store.transfers[str(transfer["id"])]
    assert row["state"] == "FAILED"
    assert row["error_reason"] == "INSUFFICIENT_NATIVE_TOKEN"


def test_duplicate_notification_is_already_processed(services, transfer):
    raw = notification_body("transactions.complete", transfer["provider_tx_id"], notification_id="n-1", txHash="0x1")

    first = deliver(services.reconciler, raw)
    second = deliver(services.reconciler, raw)

    assert first["outcome"] == "APPLIED"
    assert second["outcome"] == "ALREADY_PROCESSED"
    assert len(services.store.events) == 2


def test_conflicting_terminal_event_is_recorded_not_applied(services, transfer):
    tx = transfer["provider_tx_id"]
    deliver(services.reconciler, notification_body("transactions.complete", tx, txHash="0x1"))

    result = deliver(services.reconciler, notification_body("transactions.failed", tx))

    assert result["outcome"] == "TERMINAL_CONFLICT"
    assert services.store.transfers[str(transfer["id"])]["state"] == "COMPLETE"


def test_orphan_event_stays_replayable(services, wallet, user_id):
    raw = notification_body("transactions.complete", "ptx-unknown", txHash="0x1")

    result = deliver(services.reconciler, raw)

    assert result["outcome"] == "ORPHAN"
    event = _event(services, result["event_id"])
    assert event["processed"] is False

    # the leg shows up later; replay applies it
    row = services.store.insert_transfer(
        None,
        reference="CIR-late",
        user_id=user_id,
        wallet_id=wallet["id"],
        provider_wallet_id=wallet["provider_wallet_id"],
        provider_tx_id="ptx-unknown",
        destination_address="0xdest",
        amount=1,
        blockchain="BASE-SEPOLIA",
        token_address=None,
        fee_level="MEDIUM",
        state="SENT",
        fee=0,
        fee_collected=False,
        fee_transfer_id=None,
    )
    services.store.insert_leg(None, provider_tx_id="ptx-unknown", kind="TRANSFER", record_id=row["id"])

    replayed = services.reconciler.replay(result["event_id"])

    assert replayed == {"event_id": result["event_id"], "outcome": "APPLIED"}
    assert services.store.transfers[str(row["id"])]["state"] == "COMPLETE"
    assert _event(services, result["event_id"])["retry_count"] == 1
    assert _event(services, result["event_id"])["processed"] is True


def test_unknown_event_type_is_ignored(services, transfer):
    raw = notification_body("wallets.created", transfer["provider_tx_id"])
    result = deliver(services.reconciler, raw)
    assert result["outcome"] == "IGNORED"
    assert _event(services, result["event_id"])["processed"] is True


def test_processing_error_is_recorded(services, transfer, monkeypatch):
    from app.transfers import repository as transfer_repo

    def broken(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(transfer_repo, "get_transfer_by_id", broken)
    raw = notification_body("transactions.complete", transfer["provider_tx_id"])

    result = deliver(services.reconciler, raw)

    assert result["ok"] is True
    assert result["outcome"] == "ERROR"
    event = _event(services, result["event_id"])
    assert event["processed"] is False
    assert "connection reset" in event["error"]


# ---------------------------
# Fee legs
# ---------------------------

def test_fee_leg_failure_requeues_fee(services, transfer):
    fee_tx = transfer["fee_transfer_id"]

    result = deliver(services.reconciler, notification_body("transactions.failed", fee_tx))

    assert result["outcome"] == "FEE_REQUEUED"
    row = services.store.transfers[str(transfer["id"])]
    assert row["fee_collected"] is False
    assert row["state"] == "INITIATED"
    (item,) = services.store.retry_items.values()
    assert item["transfer_id"] == transfer["id"]

    # redelivery of a different notification for the same leg does not double-queue
    again = deliver(services.reconciler, notification_body("transactions.failed", fee_tx))
    assert again["outcome"] == "NOOP"
    assert len(services.store.retry_items) == 1


def test_fee_leg_complete_is_acknowledged(services, transfer):
    result = deliver(services.reconciler, notification_body("transactions.complete", transfer["fee_transfer_id"]))
    assert result["outcome"] == "FEE_CONFIRMED"
    assert services.store.transfers[str(transfer["id"])]["fee_collected"] is True


# ---------------------------
# Replay
# ---------------------------

def test_replay_rules(services, transfer):
    applied = deliver(services.reconciler, notification_body("transactions.complete", transfer["provider_tx_id"]))
    unsigned = deliver(
        services.reconciler,
        notification_body("transactions.complete", transfer["provider_tx_id"]),
        secret="wrong",
    )

    with pytest.raises(NotFound):
        services.reconciler.replay(999)
    with pytest.raises(ValidationFailed) as exc:
        services.reconciler.replay(applied["event_id"])
    assert exc.value.code == "ALREADY_PROCESSED"
    with pytest.raises(ValidationFailed) as exc:
        services.reconciler.replay(unsigned["event_id"])
    assert exc.value.code == "INVALID_SIGNATURE"


def test_list_events_filters(services, transfer):
    deliver(services.reconciler, notification_body("transactions.complete", transfer["provider_tx_id"]))
    deliver(services.reconciler, notification_body("transactions.complete", "ptx-unknown"))

    assert len(services.reconciler.list_events()) == 2
    (pending,) = services.reconciler.list_events(processed=False)
    assert pending["outcome"] == "ORPHAN"
