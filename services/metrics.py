from __future__ import annotations

from threading import Lock
from typing import Tuple


_lock = Lock()
_counters: dict[str, dict[Tuple[Tuple[str, str], ...], int]] = {}


def _inc(name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        series = _counters.setdefault(name, {})
        series[key] = int(series.get(key, 0)) + int(value)


def increment_http_requests(route: str, status: int) -> None:
    _inc("http_requests_total", {"route": route, "status": str(status)})


def increment_provider_call(method: str, path: str, result: str) -> None:
    # collapse ids so the label set stays bounded
    segments = path.strip("/").split("/")
    route = "/" + "/".join(s if not any(ch.isdigit() for ch in s) else ":id" for s in segments)
    _inc("provider_calls_total", {"method": method, "route": route, "result": result})


def increment_transfer(kind: str, result: str) -> None:
    _inc("transfers_total", {"kind": kind, "result": result})


def increment_webhook_event(event_type: str, signature_valid: bool, result: str) -> None:
    _inc(
        "webhook_events_total",
        {
            "type": event_type or "unknown",
            "signature_valid": str(signature_valid).lower(),
            "result": result,
        },
    )


def increment_fee_retry(result: str) -> None:
    _inc("fee_retry_attempts_total", {"result": result})


def increment_admin_alert(kind: str) -> None:
    _inc("admin_alerts_total", {"kind": kind})


def counter_value(name: str, **labels: str) -> int:
    key = tuple(sorted(labels.items()))
    with _lock:
        return int(_counters.get(name, {}).get(key, 0))


def reset() -> None:
    with _lock:
        _counters.clear()


def render_prometheus() -> str:
    lines: list[str] = []
    with _lock:
        for name, series in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for labels, value in sorted(series.items()):
                if labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in labels)
                    lines.append(f"{name}{{{label_str}}} {value}")
                else:
                    lines.append(f"{name} {value}")
    return "\n".join(lines) + ("\n" if lines else "")
