# tests/conftest.py

import uuid
from dataclasses import dataclass
from typing import Dict

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from app.cctp.orchestrator import CCTPOrchestrator
from app.fees.policy import FEE_CONFIG_KEY, FeePolicy
from app.fees.retry_queue import FeeRetryQueue
from app.providers.circle.client import CircleClient
from app.providers.circle.sealer import EntitySecretSealer
from app.transfers.orchestrator import TransferOrchestrator
from app.webhooks.reconciler import WebhookReconciler
from deps import services as service_deps
from main import app
from security import create_access_token
from services import metrics
from tests.fakes import AlertRecorder, FakeAttestation, FakeCircle, MemoryStore


WEBHOOK_SECRET = "whsec_test"
ENTITY_SECRET = "ab" * 32
FEE_WALLET = "0x" + "fe" * 20
RELAYER_WALLET = "relayer-wallet-1"


@dataclass
class Services:
    store: MemoryStore
    circle: FakeCircle
    client: CircleClient
    sealer: EntitySecretSealer
    fee_policy: FeePolicy
    retry_queue: FeeRetryQueue
    transfers: TransferOrchestrator
    cctp: CCTPOrchestrator
    reconciler: WebhookReconciler
    attestation: FakeAttestation
    alerts: AlertRecorder


# ---------------------------
# Core fakes
# ---------------------------

@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_key_pem(rsa_key) -> str:
    return rsa_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture()
def store(monkeypatch) -> MemoryStore:
    s = MemoryStore()
    s.install(monkeypatch)
    s.config[FEE_CONFIG_KEY] = {
        "enabled": True,
        "percentage": "0.5",
        "minFeeUsdc": "0.0625",
        "collectionWallets": {"BASE-SEPOLIA": FEE_WALLET, "ARB-SEPOLIA": FEE_WALLET},
    }
    return s


@pytest.fixture()
def circle(public_key_pem) -> FakeCircle:
    return FakeCircle(public_key_pem=public_key_pem)


@pytest.fixture()
def services(store, circle) -> Services:
    client = circle.client()
    sealer = EntitySecretSealer(client, entity_secret=ENTITY_SECRET, public_key_ttl_s=3600)
    fee_policy = FeePolicy(connect=store.connect, ttl_s=60)
    alerts = AlertRecorder()
    retry_queue = FeeRetryQueue(client, sealer, connect=store.connect, max_retries=3, batch_size=50, escalate=alerts)
    attestation = FakeAttestation()
    cctp = CCTPOrchestrator(
        client,
        sealer,
        attestation,
        connect=store.connect,
        relayer_wallets={"ARB-SEPOLIA": RELAYER_WALLET, "BASE-SEPOLIA": RELAYER_WALLET},
        escalate=alerts,
    )
    return Services(
        store=store,
        circle=circle,
        client=client,
        sealer=sealer,
        fee_policy=fee_policy,
        retry_queue=retry_queue,
        transfers=TransferOrchestrator(client, sealer, fee_policy, retry_queue, connect=store.connect),
        cctp=cctp,
        reconciler=WebhookReconciler(
            cctp,
            retry_queue,
            fee_policy,
            connect=store.connect,
            secret=WEBHOOK_SECRET,
            allow_unsigned=False,
            tolerance_s=300,
        ),
        attestation=attestation,
        alerts=alerts,
    )


# ---------------------------
# Client + Auth Helpers
# ---------------------------

@pytest.fixture()
def client(services) -> TestClient:
    app.dependency_overrides[service_deps.get_fee_policy] = lambda: services.fee_policy
    app.dependency_overrides[service_deps.get_fee_retry_queue] = lambda: services.retry_queue
    app.dependency_overrides[service_deps.get_transfer_orchestrator] = lambda: services.transfers
    app.dependency_overrides[service_deps.get_cctp_orchestrator] = lambda: services.cctp
    app.dependency_overrides[service_deps.get_reconciler] = lambda: services.reconciler
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def auth_headers(user_id: uuid.UUID, role: str | None = None) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user_id), role=role)}"}


@pytest.fixture()
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def wallet(store, user_id) -> dict:
    return store.add_wallet(user_id=user_id, blockchain="BASE-SEPOLIA")
