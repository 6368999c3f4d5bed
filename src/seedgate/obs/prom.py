"""Prometheus instrumentation for the seed service.

Labels stay low-cardinality: a result, the numeric status code, and for
enforcement misses the check name and whether it was enforced.
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    generate_latest,
)

REGISTRY = CollectorRegistry()

SEED_REQUESTS = Counter(
    "seedgate_seed_requests_total",
    "Seed requests handled, by outcome.",
    ["result", "code"],
    registry=REGISTRY,
)
SIGN_REQUESTS = Counter(
    "seedgate_sign_requests_total",
    "Sign requests handled, by outcome.",
    ["result", "code"],
    registry=REGISTRY,
)
ENFORCEMENT_MISSES = Counter(
    "seedgate_enforcement_misses_total",
    "Checks that failed, whether or not the failure was enforced.",
    ["check", "enforced"],
    registry=REGISTRY,
)


def observe_seed(code: int) -> None:
    SEED_REQUESTS.labels(result="ok" if code == 0 else "fail", code=str(int(code))).inc()


def observe_sign(code: int) -> None:
    SIGN_REQUESTS.labels(result="ok" if code == 0 else "fail", code=str(int(code))).inc()


def record_enforcement_miss(check: str, enforced: bool) -> None:
    ENFORCEMENT_MISSES.labels(check=check, enforced=str(enforced).lower()).inc()


def prometheus_latest() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
