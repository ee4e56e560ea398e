# deps/services.py
from __future__ import annotations

from functools import lru_cache

from app.cctp.attestation import AttestationClient
from app.cctp.orchestrator import CCTPOrchestrator
from app.fees.policy import FeePolicy
from app.fees.retry_queue import FeeRetryQueue
from app.providers.circle.client import CircleClient
from app.providers.circle.sealer import EntitySecretSealer
from app.transfers.orchestrator import TransferOrchestrator
from app.webhooks.reconciler import WebhookReconciler


# Process-wide singletons. Tests replace the route-level providers through
# app.dependency_overrides.

@lru_cache(maxsize=1)
def get_circle_client() -> CircleClient:
    return CircleClient()


@lru_cache(maxsize=1)
def get_sealer() -> EntitySecretSealer:
    return EntitySecretSealer(get_circle_client())


@lru_cache(maxsize=1)
def get_fee_policy() -> FeePolicy:
    return FeePolicy()


@lru_cache(maxsize=1)
def get_fee_retry_queue() -> FeeRetryQueue:
    return FeeRetryQueue(get_circle_client(), get_sealer())


@lru_cache(maxsize=1)
def get_transfer_orchestrator() -> TransferOrchestrator:
    return TransferOrchestrator(get_circle_client(), get_sealer(), get_fee_policy(), get_fee_retry_queue())


@lru_cache(maxsize=1)
def get_cctp_orchestrator() -> CCTPOrchestrator:
    return CCTPOrchestrator(get_circle_client(), get_sealer(), AttestationClient())


@lru_cache(maxsize=1)
def get_reconciler() -> WebhookReconciler:
    return WebhookReconciler(get_cctp_orchestrator(), get_fee_retry_queue(), get_fee_policy())
