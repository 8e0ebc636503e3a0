from __future__ import annotations

import threading
from collections import Counter
from typing import Dict

from prometheus_client import Counter as PromCounter
from prometheus_client import Histogram

# Requests counters (HTTP-level)
_REQUESTS = Counter()

# Named counters (custom)
_NAMED = Counter()

_LOCK = threading.Lock()

PROVIDER_CALLS_TOTAL = PromCounter(
    "stackapply_provider_calls_total",
    "Provider operations issued",
    ["provider", "operation", "outcome"],
)

PROVIDER_CALL_DURATION_SECONDS = Histogram(
    "stackapply_provider_call_duration_seconds",
    "Provider operation duration in seconds",
    ["provider", "operation"],
)

NODE_OUTCOMES_TOTAL = PromCounter(
    "stackapply_node_outcomes_total",
    "Per-resource outcomes of apply and destroy runs",
    ["action", "status"],
)

RUNS_TOTAL = PromCounter(
    "stackapply_runs_total",
    "Apply/destroy runs by final state",
    ["operation", "state"],
)


def reset_metrics() -> None:
    """
    Test helper: clears in-process counters to avoid cross-test leakage.
    Prometheus collectors are process-wide and are not reset.
    """
    with _LOCK:
        _REQUESTS.clear()
        _NAMED.clear()


def inc_http(method: str, path: str, status) -> None:
    m = (method or "UNKNOWN").upper()
    with _LOCK:
        _REQUESTS["requests_total"] += 1
        _REQUESTS[f"requests_{m}"] += 1
        _REQUESTS[f"path_{path or '/'}|{status}"] += 1


def inc_named(name: str, value: int = 1) -> None:
    if not name:
        return
    with _LOCK:
        _NAMED[name] += int(value)


def record_provider_call(provider: str, operation: str, outcome: str, seconds: float) -> None:
    PROVIDER_CALLS_TOTAL.labels(provider=provider, operation=operation, outcome=outcome).inc()
    PROVIDER_CALL_DURATION_SECONDS.labels(provider=provider, operation=operation).observe(seconds)
    inc_named(f"provider_{operation}_{outcome}")


def record_node_outcome(action: str, status: str) -> None:
    NODE_OUTCOMES_TOTAL.labels(action=action, status=status).inc()
    inc_named(f"node_{status.lower()}")


def record_run(operation: str, state: str) -> None:
    RUNS_TOTAL.labels(operation=operation, state=state).inc()
    inc_named(f"runs_{operation}_{state.lower()}")


def snapshot_requests() -> Dict[str, int]:
    with _LOCK:
        return dict(_REQUESTS)


def snapshot_named() -> Dict[str, int]:
    with _LOCK:
        return dict(_NAMED)
