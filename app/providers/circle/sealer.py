# app/providers/circle/sealer.py
from __future__ import annotations

import base64
import logging
import re
import uuid
from typing import Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from app.errors import ChainPayError
from app.providers.circle.client import CircleClient
from services.ttl_cache import TTLCache
from settings import settings


logger = logging.getLogger("chainpay.circle")

_HEX_64 = re.compile(r"^[0-9a-fA-F]{64}$")


class SealerError(ChainPayError):
    http_status = 503
    code = "SEALER_ERROR"


def new_idempotency_key() -> str:
    return str(uuid.uuid4())


class EntitySecretSealer:
    """
    Produces the single-use encrypted entity secret that every mutating
    provider call carries.

    RSA-OAEP is randomized, so each call returns a different ciphertext for the
    same secret. The provider public key is cached for CIRCLE_PUBLIC_KEY_TTL_S.
    """

    def __init__(
        self,
        client: CircleClient,
        *,
        entity_secret: Optional[str] = None,
        public_key_ttl_s: Optional[int] = None,
    ):
        self._client = client
        self._entity_secret = (
            entity_secret if entity_secret is not None else settings.CIRCLE_ENTITY_SECRET
        ).strip()
        ttl = public_key_ttl_s if public_key_ttl_s is not None else settings.CIRCLE_PUBLIC_KEY_TTL_S
        self._public_key = TTLCache(self._fetch_public_key, ttl, name="circle_public_key")

    def _fetch_public_key(self) -> str:
        key = self._client.get_entity_public_key()
        logger.info("fetched provider entity public key")
        return key

    def public_key_pem(self) -> str:
        return self._public_key.get()

    def generate_sealed_credential(self) -> str:
        secret = self._entity_secret
        if not secret:
            raise SealerError("Entity secret is not configured")
        if not _HEX_64.match(secret):
            raise SealerError("Entity secret must be 32 bytes (64 hex characters)")

        pem = self.public_key_pem()
        public_key = serialization.load_pem_public_key(pem.encode("utf-8"))
        ciphertext = public_key.encrypt(
            bytes.fromhex(secret),
            padding.OAEP(
                mgf=padding.MGF1(algorithm=hashes.SHA256()),
                algorithm=hashes.SHA256(),
                label=None,
            ),
        )
        return base64.b64encode(ciphertext).decode("ascii")

    def clear_public_key_cache(self) -> None:
        self._public_key.clear()
        logger.info("entity public key cache cleared")
