from __future__ import annotations

import base64

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from app.providers.circle.sealer import EntitySecretSealer, SealerError, new_idempotency_key
from tests.conftest import ENTITY_SECRET


def _decrypt(rsa_key, credential: str) -> bytes:
    return rsa_key.decrypt(
        base64.b64decode(credential),
        padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
    )


def test_sealed_credential_decrypts_to_entity_secret(services, rsa_key):
    credential = services.sealer.generate_sealed_credential()
    assert _decrypt(rsa_key, credential) == bytes.fromhex(ENTITY_SECRET)


def test_each_credential_is_unique(services):
    first = services.sealer.generate_sealed_credential()
    second = services.sealer.generate_sealed_credential()
    assert first != second


def test_public_key_is_fetched_once_and_refetched_after_clear(services):
    sealer, circle = services.sealer, services.circle

    sealer.generate_sealed_credential()
    sealer.generate_sealed_credential()
    fetches = [r for r in circle.requests if r[1].endswith("/config/entity/publicKey")]
    assert len(fetches) == 1

    sealer.clear_public_key_cache()
    sealer.generate_sealed_credential()
    fetches = [r for r in circle.requests if r[1].endswith("/config/entity/publicKey")]
    assert len(fetches) == 2


@pytest.mark.parametrize("secret", ["", "abc", "zz" * 32, "ab" * 31])
def test_invalid_entity_secret_is_rejected(circle, secret):
    sealer = EntitySecretSealer(circle.client(), entity_secret=secret)
    with pytest.raises(SealerError):
        sealer.generate_sealed_credential()
    # nothing is fetched for a secret that cannot be sealed
    assert circle.requests == []


def test_idempotency_keys_are_unique():
    keys = {new_idempotency_key() for _ in range(100)}
    assert len(keys) == 100
