from __future__ import annotations

import uuid

from tests.conftest import auth_headers
from tests.webhook_helpers import notification_body, signed_headers


def _create_transfer(client, wallet, user_id, **overrides):
    body = {
        "wallet_id": str(wallet["id"]),
        "destination_address": "0x" + "12" * 20,
        "amount": "50",
        **overrides,
    }
    return client.post("/v1/transfers", json=body, headers=auth_headers(user_id))


# ---------------------------
# Auth
# ---------------------------

def test_transfers_require_bearer_token(client):
    r = client.get("/v1/transfers")
    assert r.status_code == 401

    r = client.get("/v1/transfers", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_admin_routes_require_admin_role(client, user_id):
    r = client.get("/v1/admin/fees/config", headers=auth_headers(user_id))
    assert r.status_code == 403
    assert r.json()["detail"] == "ADMIN_REQUIRED"

    r = client.get("/v1/admin/fees/config", headers=auth_headers(user_id, role="ADMIN"))
    assert r.status_code == 200


# ---------------------------
# Transfers
# ---------------------------

def test_create_and_read_transfer(client, wallet, user_id):
    r = _create_transfer(client, wallet, user_id)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["fee"] == "0.250000"
    assert body["fee_collected"] is True
    assert r.headers.get("X-Request-Id")

    r = client.get(f"/v1/transfers/{body['reference']}", headers=auth_headers(user_id))
    assert r.status_code == 200
    assert r.json()["state"] == "INITIATED"
    assert "provider_tx_id" not in r.json()

    r = client.get("/v1/transfers", headers=auth_headers(user_id))
    assert [t["reference"] for t in r.json()["items"]] == [body["reference"]]


def test_other_users_transfer_is_not_found(client, wallet, user_id):
    reference = _create_transfer(client, wallet, user_id).json()["reference"]
    r = client.get(f"/v1/transfers/{reference}", headers=auth_headers(uuid.uuid4()))
    assert r.status_code == 404
    assert r.json()["detail"]["error"] == "TRANSFER_NOT_FOUND"


def test_cancel_transfer_route(client, services, wallet, user_id):
    reference = _create_transfer(client, wallet, user_id).json()["reference"]

    r = client.post(f"/v1/transfers/{reference}/cancel", headers=auth_headers(uuid.uuid4()))
    assert r.status_code == 404

    r = client.post(f"/v1/transfers/{reference}/cancel", headers=auth_headers(user_id))
    assert r.status_code == 202, r.text
    assert r.json()["cancel_requested"] is True
    assert r.json()["state"] == "INITIATED"

    (row,) = services.store.transfers.values()
    services.circle.tx_states[row["provider_tx_id"]] = "CONFIRMED"
    r = client.post(f"/v1/transfers/{reference}/cancel", headers=auth_headers(user_id))
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "NOT_CANCELLABLE"


def test_validation_errors_map_to_400(client, services, wallet, user_id):
    services.circle.balance = "1"
    r = _create_transfer(client, wallet, user_id)
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "INSUFFICIENT_BALANCE"

    r = _create_transfer(client, wallet, user_id, amount="-1")
    assert r.status_code == 422


def test_provider_rejection_is_surfaced(client, services, wallet, user_id):
    services.circle.fail_when = lambda body: (400, {"code": 155201, "message": "insufficient native token"})

    r = _create_transfer(client, wallet, user_id)

    assert r.status_code == 400
    detail = r.json()["detail"]
    assert detail["error"] == "PROVIDER_ERROR"
    assert detail["code"] == 155201
    assert services.store.transfers == {}


# ---------------------------
# CCTP
# ---------------------------

def test_cctp_endpoints(client, wallet, user_id):
    r = client.get("/v1/cctp/chains")
    assert r.status_code == 200
    assert {"chain": "BASE-SEPOLIA", "domain": 6} in r.json()["chains"]

    r = client.post(
        "/v1/cctp/estimate-fee",
        json={"source_chain": "BASE-SEPOLIA", "destination_chain": "ARB-SEPOLIA", "transfer_type": "FAST"},
    )
    assert r.status_code == 200
    assert r.json()["total_fee"] == "1.50"

    r = client.post(
        "/v1/cctp/transfers",
        json={
            "wallet_id": str(wallet["id"]),
            "destination_chain": "ARB-SEPOLIA",
            "destination_address": "0x" + "34" * 20,
            "amount": "10",
        },
        headers=auth_headers(user_id),
    )
    assert r.status_code == 201, r.text
    reference = r.json()["reference"]
    assert r.json()["state"] == "BURN_PENDING"

    r = client.post(f"/v1/cctp/transfers/{reference}/cancel", headers=auth_headers(user_id))
    assert r.status_code == 200
    assert r.json()["state"] == "CANCELLED"

    r = client.post(f"/v1/cctp/transfers/{reference}/cancel", headers=auth_headers(user_id))
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "NOT_CANCELLABLE"

    r = client.get("/v1/cctp/transfers", headers=auth_headers(user_id))
    assert len(r.json()["items"]) == 1


# ---------------------------
# Webhooks
# ---------------------------

def test_webhook_always_returns_200(client, services, wallet, user_id):
    reference = _create_transfer(client, wallet, user_id).json()["reference"]
    (row,) = services.store.transfers.values()

    raw = notification_body("transactions.complete", row["provider_tx_id"], txHash="0xabc")
    r = client.post("/v1/webhooks/circle", content=raw, headers=signed_headers(raw))
    assert r.status_code == 200
    assert r.json()["outcome"] == "APPLIED"

    r = client.post("/v1/webhooks/circle", content=raw, headers={"X-Circle-Signature": "bad", "X-Circle-Timestamp": "1"})
    assert r.status_code == 200
    assert r.json()["outcome"] == "INVALID_SIGNATURE"

    r = client.get(f"/v1/transfers/{reference}", headers=auth_headers(user_id))
    assert r.json()["state"] == "COMPLETE"


def test_admin_webhook_events_and_replay(client, services, user_id):
    raw = notification_body("transactions.complete", "ptx-unknown", signature="do-not-leak")
    r = client.post(
        "/v1/webhooks/circle",
        content=raw,
        headers={**signed_headers(raw), "X-Request-Id": "req-42"},
    )
    event_id = r.json()["event_id"]
    admin = auth_headers(user_id, role="ADMIN")

    r = client.get("/v1/admin/webhooks/events", params={"processed": "false"}, headers=admin)
    assert r.status_code == 200
    (item,) = r.json()["items"]
    assert item["id"] == event_id
    assert item["request_id"] == "req-42"
    assert item["payload"]["notification"]["signature"] == "[REDACTED]"

    r = client.post(f"/v1/admin/webhooks/events/{event_id}/replay", headers=admin)
    assert r.status_code == 200
    assert r.json() == {"event_id": event_id, "outcome": "ORPHAN"}

    r = client.post("/v1/admin/webhooks/events/999/replay", headers=admin)
    assert r.status_code == 404


# ---------------------------
# Admin fees
# ---------------------------

def test_admin_fee_config_update(client, user_id):
    admin = auth_headers(user_id, role="ADMIN")

    r = client.put("/v1/admin/fees/config", json={"percentage": "1.0", "min_fee_usdc": "0.1"}, headers=admin)
    assert r.status_code == 200
    assert r.json()["percentage"] == "1.0"

    r = client.put("/v1/admin/fees/config", json={"percentage": "150"}, headers=admin)
    assert r.status_code == 422


def test_admin_fee_retry_endpoints(client, services, wallet, user_id):
    services.circle.fail_when = lambda body: (500, {"message": "x"}) if body["refId"].endswith("-FEE") else None
    _create_transfer(client, wallet, user_id)
    admin = auth_headers(user_id, role="ADMIN")

    r = client.get("/v1/admin/fees/retries/stats", headers=admin)
    assert r.json() == {"pending": 1, "failed": 0, "total_queued": 1}

    (item_id,) = services.store.retry_items.keys()
    services.circle.fail_when = lambda body: None
    r = client.post(f"/v1/admin/fees/retries/{item_id}/retry", headers=admin)
    assert r.status_code == 200
    assert r.json() == {"item_id": item_id, "success": True}

    r = client.post(f"/v1/admin/fees/retries/{uuid.uuid4()}/retry", headers=admin)
    assert r.status_code == 404

    r = client.get("/v1/admin/fees/retries/failed", headers=admin)
    assert r.json() == {"items": []}


# ---------------------------
# Ops
# ---------------------------

def test_health_and_metrics(client, wallet, user_id):
    assert client.get("/health").json()["ok"] is True

    _create_transfer(client, wallet, user_id)
    r = client.get("/metrics")
    assert r.status_code == 200
    assert 'transfers_total{kind="TRANSFER",result="ok"} 1' in r.text
    assert "http_requests_total" in r.text
