import logging
from contextlib import contextmanager

import httpx

from services import alerts, metrics


@contextmanager
def _fake_conn():
    yield object()


def test_escalate_persists_redacted_payload(monkeypatch, caplog):
    stored = []
    monkeypatch.setattr(alerts, "insert_alert", lambda conn, *, kind, payload: stored.append((kind, payload)))
    monkeypatch.setattr(alerts.settings, "ALERT_WEBHOOK_URL", "")

    # the "chainpay" logger does not propagate to the root capture handler
    alert_logger = logging.getLogger("chainpay.alerts")
    alert_logger.addHandler(caplog.handler)
    try:
        alerts.escalate("FEE_RETRY_EXHAUSTED", {"reference": "CIR-1", "api_key": "k"}, connect=_fake_conn)
    finally:
        alert_logger.removeHandler(caplog.handler)

    assert stored == [("FEE_RETRY_EXHAUSTED", {"reference": "CIR-1", "api_key": "[REDACTED]"})]
    assert "ADMIN ALERT kind=FEE_RETRY_EXHAUSTED" in caplog.text
    assert metrics.counter_value("admin_alerts_total", kind="FEE_RETRY_EXHAUSTED") == 1


def test_escalate_survives_storage_and_delivery_failures(monkeypatch):
    def broken_conn():
        raise RuntimeError("db down")

    def broken_post(*args, **kwargs):
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(alerts.settings, "ALERT_WEBHOOK_URL", "https://alerts.example.test/hook")
    monkeypatch.setattr(alerts.httpx, "post", broken_post)

    alerts.escalate("CCTP_MINT_FAILED", {"reference": "CCTP-1"}, connect=broken_conn)

    assert metrics.counter_value("admin_alerts_total", kind="CCTP_MINT_FAILED") == 1
