from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from app.errors import ProviderError
from app.providers.circle.client import CircleClient
from app.providers.circle.config import USDC_TOKEN_ADDRESSES
from services import metrics


def _client(handler) -> CircleClient:
    return CircleClient(
        base_url="https://api.circle.test/v1/w3s",
        api_key="TEST_API_KEY:abc:def",
        transport=httpx.MockTransport(handler),
    )


def test_post_injects_idempotency_key_and_credential():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"data": {"id": "tx-1", "state": "INITIATED"}})

    data = _client(handler).create_transfer(
        wallet_id="w-1",
        destination_address="0xdest",
        amount="10",
        token_address="0xtoken",
        blockchain="BASE-SEPOLIA",
        fee_level="MEDIUM",
        ref_id="CIR-1",
        idempotency_key="idem-1",
        sealed_credential="sealed",
    )

    assert data["id"] == "tx-1"
    assert seen["auth"] == "Bearer TEST_API_KEY:abc:def"
    assert seen["body"]["idempotencyKey"] == "idem-1"
    assert seen["body"]["entitySecretCiphertext"] == "sealed"
    assert seen["body"]["amounts"] == ["10"]
    assert seen["body"]["refId"] == "CIR-1"


def test_provider_error_carries_status_and_code():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": 155201, "message": "insufficient native token"})

    with pytest.raises(ProviderError) as exc:
        _client(handler).get("/wallets/w-1/balances")

    assert exc.value.status == 400
    assert exc.value.provider_code == 155201
    assert exc.value.http_status == 400
    assert metrics.counter_value(
        "provider_calls_total", method="GET", route="/wallets/:id/balances", result="400"
    ) == 1


def test_server_error_maps_to_bad_gateway():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(ProviderError) as exc:
        _client(handler).get("/config/entity/publicKey")
    assert exc.value.status == 503
    assert exc.value.http_status == 502


@pytest.mark.parametrize("status", [401, 403])
def test_provider_auth_failure_maps_to_bad_gateway(status):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"code": 2, "message": "invalid api key"})

    with pytest.raises(ProviderError) as exc:
        _client(handler).get("/wallets/w-1/balances")
    assert exc.value.status == status
    assert exc.value.http_status == 502


def test_transport_error_is_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProviderError) as exc:
        _client(handler).get("/config/entity/publicKey")
    assert exc.value.status == 503


def test_usdc_balance_matches_token_address():
    token = USDC_TOKEN_ADDRESSES["BASE-SEPOLIA"]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "data": {
                    "tokenBalances": [
                        {"token": {"symbol": "ETH", "tokenAddress": None}, "amount": "3"},
                        {"token": {"symbol": "USDC", "tokenAddress": token.lower()}, "amount": "42.5"},
                    ]
                }
            },
        )

    client = _client(handler)
    assert client.get_usdc_balance("w-1", token) == Decimal("42.5")
    assert client.get_usdc_balance("w-1", "0xother") == Decimal("0")


def test_accepted_transfer_without_id_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"data": {"state": "INITIATED"}})

    with pytest.raises(ProviderError):
        _client(handler).create_transfer(
            wallet_id="w-1",
            destination_address="0xdest",
            amount="1",
            token_address=None,
            blockchain="BASE-SEPOLIA",
            fee_level="LOW",
            ref_id="CIR-2",
            idempotency_key="idem-2",
            sealed_credential="sealed",
        )
