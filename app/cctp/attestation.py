# app/cctp/attestation.py
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from app.errors import ProviderError
from settings import settings


logger = logging.getLogger("chainpay.cctp")


@dataclass(frozen=True)
class Attestation:
    message: str
    attestation: str

    @property
    def digest(self) -> str:
        raw = self.attestation[2:] if self.attestation.startswith("0x") else self.attestation
        return "0x" + hashlib.sha256(bytes.fromhex(raw)).hexdigest()


class AttestationClient:
    """
    Read-only client for the burn-message attestation service.

    fetch() returns None while the attestation is still pending; transport
    and unexpected HTTP failures raise ProviderError.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.ATTESTATION_API_URL).rstrip("/")
        self.timeout_s = timeout_s or settings.ATTESTATION_HTTP_TIMEOUT_S
        self._session = session or requests.Session()

    def fetch(self, source_domain: int, burn_tx_hash: str) -> Optional[Attestation]:
        url = f"{self.base_url}/v2/messages/{source_domain}"
        try:
            resp = self._session.get(
                url,
                params={"transactionHash": burn_tx_hash},
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"Attestation service unreachable: {exc}", status=503) from exc

        if resp.status_code == 404:
            # message not indexed yet
            return None
        if resp.status_code >= 400:
            raise ProviderError(
                f"Attestation service error: {resp.text[:200]}",
                status=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise ProviderError("Attestation service returned invalid JSON") from exc

        for msg in body.get("messages") or []:
            status = (msg.get("status") or "").lower()
            attestation = msg.get("attestation")
            message = msg.get("message")
            if status == "complete" and attestation and attestation != "PENDING" and message:
                return Attestation(message=message, attestation=attestation)

        logger.info("attestation pending domain=%s tx_hash=%s", source_domain, burn_tx_hash)
        return None
