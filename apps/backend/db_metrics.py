"""
db_metrics.py

Query-timing helpers for the PostgreSQL layer.

- Slow queries are logged as warnings with machine-parseable fields.
- An optional histogram emitter hook lets a deployment forward timings to a
  metrics backend without this package depending on one.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager

from infra.config import get_settings

_LOGGER = logging.getLogger(__name__)
_HISTOGRAM_NAME = "db_query_duration_ms"
_METRIC_EMITTER: Callable[[str, float, Sequence[str]], None] | None = None


def query_metrics_enabled() -> bool:
    """Return whether DB query instrumentation is enabled."""
    return get_settings().db_metrics.metrics_enabled


def slow_query_threshold_ms() -> float:
    """Return the slow-query warning threshold in milliseconds."""
    return get_settings().db_metrics.slow_query_threshold_ms


def register_histogram_emitter(emitter: Callable[[str, float, Sequence[str]], None] | None) -> None:
    """Register a histogram emitter callback.

    The callback receives the metric name, the observed value in milliseconds
    and tags such as ``["query:fetch_all_dict_conn:select"]``.
    """
    global _METRIC_EMITTER
    _METRIC_EMITTER = emitter


def _emit_histogram(name: str, value: float, tags: Sequence[str]) -> None:
    if _METRIC_EMITTER is None:
        return
    try:
        _METRIC_EMITTER(name, value, tags)
    except (TypeError, ValueError, RuntimeError) as exc:
        _LOGGER.debug("db metric emitter failed: %s", exc)


@contextmanager
def measure_query(name: str) -> Iterator[None]:
    """Time the wrapped query, warn when slow, and emit a histogram sample."""
    if not query_metrics_enabled():
        yield
        return

    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = round((time.perf_counter() - start) * 1000.0, 2)
        if duration_ms >= slow_query_threshold_ms():
            _LOGGER.warning("slow_query query_name=%s duration_ms=%.2f", name, duration_ms)
        _emit_histogram(_HISTOGRAM_NAME, duration_ms, [f"query:{name}"])
