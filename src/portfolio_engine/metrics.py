"""Prometheus metrics recorded by :class:`portfolio_engine.engine.PortfolioEngine`."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

_LOGGER = logging.getLogger(__name__)


@dataclass
class _MetricsState:
    registry: CollectorRegistry
    analyses_started: Counter
    analyses_succeeded: Counter
    analyses_failed: Counter
    price_fetch_failures: Counter
    analysis_duration_seconds: Histogram


def _build_state() -> _MetricsState:
    registry = CollectorRegistry()
    analyses_started = Counter(
        "analyses_started_total",
        "Number of analysis requests accepted for processing.",
        ["kind"],
        registry=registry,
    )
    analyses_succeeded = Counter(
        "analyses_succeeded_total",
        "Number of analysis requests that produced a result.",
        ["kind"],
        registry=registry,
    )
    analyses_failed = Counter(
        "analyses_failed_total",
        "Number of analysis requests that raised an error.",
        ["kind", "error"],
        registry=registry,
    )
    price_fetch_failures = Counter(
        "price_fetch_failures_total",
        "Number of tickers whose price history could not be fetched.",
        registry=registry,
    )
    analysis_duration_seconds = Histogram(
        "analysis_duration_seconds",
        "Observed end-to-end duration of analysis requests.",
        ["kind"],
        registry=registry,
    )
    return _MetricsState(
        registry=registry,
        analyses_started=analyses_started,
        analyses_succeeded=analyses_succeeded,
        analyses_failed=analyses_failed,
        price_fetch_failures=price_fetch_failures,
        analysis_duration_seconds=analysis_duration_seconds,
    )


_STATE: _MetricsState = _build_state()


def reset_metrics() -> None:
    """Reset the metrics registry for deterministic testing."""

    global _STATE
    _STATE = _build_state()


def registry() -> CollectorRegistry:
    return _STATE.registry


def mark_analysis_started(kind: str) -> None:
    _STATE.analyses_started.labels(kind=kind).inc()


def mark_analysis_succeeded(kind: str) -> None:
    _STATE.analyses_succeeded.labels(kind=kind).inc()


def mark_analysis_failed(kind: str, error: str) -> None:
    _STATE.analyses_failed.labels(kind=kind, error=error).inc()


def mark_fetch_failures(count: int) -> None:
    if count > 0:
        _STATE.price_fetch_failures.inc(count)


def observe_duration(kind: str, duration: float) -> None:
    if duration >= 0:
        _STATE.analysis_duration_seconds.labels(kind=kind).observe(duration)
    else:
        _LOGGER.debug("Ignoring negative duration %.6f for %s", duration, kind)


def render_latest() -> bytes:
    return generate_latest(_STATE.registry)


__all__: Final = [
    "CONTENT_TYPE_LATEST",
    "mark_analysis_failed",
    "mark_analysis_started",
    "mark_analysis_succeeded",
    "mark_fetch_failures",
    "observe_duration",
    "registry",
    "render_latest",
    "reset_metrics",
]
