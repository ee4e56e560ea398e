# app/providers/circle/client.py
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from app.errors import ProviderError
from services.metrics import increment_provider_call
from services.redaction import redact_text
from settings import settings


logger = logging.getLogger("chainpay.circle")


class CircleClient:
    """
    Thin authenticated request/response client for the custody provider.

    It injects idempotency keys and sealed credentials into mutating calls and
    surfaces provider failures as ProviderError without interpreting them.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.CIRCLE_API_BASE_URL).rstrip("/")
        key = api_key if api_key is not None else settings.CIRCLE_API_KEY
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout_s or settings.CIRCLE_HTTP_TIMEOUT_S,
            headers={
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Generic boundary
    # ------------------------------------------------------------------

    def post(
        self,
        path: str,
        body: dict[str, Any],
        *,
        idempotency_key: Optional[str] = None,
        sealed_credential: Optional[str] = None,
    ) -> dict[str, Any]:
        payload = dict(body)
        if idempotency_key:
            payload["idempotencyKey"] = idempotency_key
        if sealed_credential:
            payload["entitySecretCiphertext"] = sealed_credential
        return self._request("POST", path, json_body=payload)

    def get(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        return self._request("GET", path, params=params)

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        try:
            r = self._client.request(method, path, json=json_body, params=params)
        except httpx.HTTPError as exc:
            increment_provider_call(method, path, "transport_error")
            logger.warning("circle %s %s transport error err=%s", method, path, exc)
            raise ProviderError(f"Provider unreachable: {exc}", status=503) from exc

        payload = _safe_json(r)
        if r.status_code >= 400:
            increment_provider_call(method, path, str(r.status_code))
            code = payload.get("code") if isinstance(payload, dict) else None
            message = (payload.get("message") if isinstance(payload, dict) else None) or r.text or "Provider error"
            logger.error(
                "circle %s %s failed status=%s code=%s message=%s",
                method,
                path,
                r.status_code,
                code,
                redact_text(str(message)),
            )
            raise ProviderError(str(message), status=r.status_code, provider_code=code)

        increment_provider_call(method, path, "ok")
        logger.debug("circle %s %s status=%s", method, path, r.status_code)
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            return payload["data"]
        return payload if isinstance(payload, dict) else {}

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    def get_entity_public_key(self) -> str:
        data = self.get("/config/entity/publicKey")
        key = data.get("publicKey")
        if not key:
            raise ProviderError("Provider returned no public key", status=502)
        return str(key)

    def get_usdc_balance(self, wallet_id: str, token_address: Optional[str]) -> Decimal:
        """Live balance read; never cached."""
        data = self.get(f"/wallets/{wallet_id}/balances")
        for item in data.get("tokenBalances") or []:
            token = item.get("token") or {}
            address = (token.get("tokenAddress") or "").lower()
            symbol = (token.get("symbol") or "").upper()
            if (token_address and address == token_address.lower()) or (not token_address and symbol == "USDC"):
                try:
                    return Decimal(str(item.get("amount") or "0"))
                except InvalidOperation:
                    return Decimal("0")
        return Decimal("0")

    def create_transfer(
        self,
        *,
        wallet_id: str,
        destination_address: str,
        amount: str,
        token_address: Optional[str],
        blockchain: str,
        fee_level: str,
        ref_id: str,
        idempotency_key: str,
        sealed_credential: str,
        extra: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "walletId": wallet_id,
            "destinationAddress": destination_address,
            "amounts": [amount],
            "tokenAddress": token_address,
            "blockchain": blockchain,
            "feeLevel": fee_level,
            "refId": ref_id,
        }
        if extra:
            body.update(extra)
        data = self.post(
            "/developer/transactions/transfer",
            body,
            idempotency_key=idempotency_key,
            sealed_credential=sealed_credential,
        )
        if not data.get("id"):
            raise ProviderError("Provider accepted transfer without an id", status=502)
        return data

    def create_contract_execution(
        self,
        *,
        wallet_id: str,
        contract_address: str,
        abi_function_signature: str,
        abi_parameters: list[Any],
        fee_level: str,
        ref_id: str,
        idempotency_key: str,
        sealed_credential: str,
    ) -> dict[str, Any]:
        data = self.post(
            "/developer/transactions/contractExecution",
            {
                "walletId": wallet_id,
                "contractAddress": contract_address,
                "abiFunctionSignature": abi_function_signature,
                "abiParameters": abi_parameters,
                "feeLevel": fee_level,
                "refId": ref_id,
            },
            idempotency_key=idempotency_key,
            sealed_credential=sealed_credential,
        )
        if not data.get("id"):
            raise ProviderError("Provider accepted contract execution without an id", status=502)
        return data

    def get_transaction(self, transaction_id: str) -> dict[str, Any]:
        data = self.get(f"/transactions/{transaction_id}")
        return data.get("transaction") or data

    def cancel_transaction(self, transaction_id: str, *, idempotency_key: str, sealed_credential: str) -> dict[str, Any]:
        """Ask the provider to cancel; the outcome arrives later as a notification."""
        return self.post(
            f"/transactions/{transaction_id}/cancel",
            {},
            idempotency_key=idempotency_key,
            sealed_credential=sealed_credential,
        )


def _safe_json(r: httpx.Response) -> Any:
    try:
        return r.json()
    except Exception:
        return None
