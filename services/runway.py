"""Runway projection engine.

Pure functions over already-fetched snapshots: nothing here touches the
database, and the only wall-clock dependency is the display date attached to
forecast points (injectable through ``start_date``).

Contracts
---------
- Net daily rate is the sum of ``impact_rate_gb_per_day`` over *active*
  pipelines. Failed and paused pipelines contribute zero; there is no extra
  penalty for a failed pipeline.
- Runway days are truncated (``math.floor``), never rounded.
- A non-positive net rate means the runway is unbounded (``runway_days=None``).
- What-if scenarios remove exactly one pipeline's contribution each. Scenarios
  are independent and never compound.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime, timedelta

from contracts.capacity import (
    ForecastPoint,
    Pipeline,
    RunwayEstimate,
    Scenario,
    StorageSystem,
    UsageSample,
    WarningLevel,
)
from contracts.errors import ValidationError

_LOGGER = logging.getLogger(__name__)

DEFAULT_HORIZON_DAYS = 30
DEFAULT_CRITICAL_DAYS = 3
DEFAULT_WARNING_DAYS = 7

USED_EXCEEDS_TOTAL = "used_exceeds_total"
NEGATIVE_USED = "negative_used"


def net_rate(pipelines: Iterable[Pipeline]) -> float:
    """Sum of daily impact rates over active pipelines (0.0 for none)."""
    return float(sum(p.impact_rate_gb_per_day for p in pipelines if p.is_active))


def contribution(pipeline: Pipeline) -> float:
    """Rate a pipeline currently adds to the net rate."""
    return pipeline.impact_rate_gb_per_day if pipeline.is_active else 0.0


def pipelines_for_system(system_id: int, pipelines: Iterable[Pipeline]) -> list[Pipeline]:
    """Pipelines writing to ``system_id``; unattached pipelines apply everywhere."""
    return [p for p in pipelines if p.storage_system_id is None or p.storage_system_id == system_id]


def remaining_capacity(system: StorageSystem) -> tuple[float, tuple[str, ...]]:
    """Return ``(remaining_gb, data_quality_warnings)`` with remaining clamped at 0."""
    warnings: list[str] = []
    if system.used_capacity_gb < 0:
        warnings.append(NEGATIVE_USED)
    if system.used_capacity_gb > system.total_capacity_gb:
        warnings.append(USED_EXCEEDS_TOTAL)
    if warnings:
        _LOGGER.warning(
            "capacity_snapshot_inconsistent system_id=%s used_gb=%s total_gb=%s warnings=%s",
            system.id,
            system.used_capacity_gb,
            system.total_capacity_gb,
            ",".join(warnings),
        )
    return max(0.0, system.total_capacity_gb - system.used_capacity_gb), tuple(warnings)


def runway_days(remaining_gb: float, rate_gb_per_day: float) -> int | None:
    """Whole days until full, or None when the rate never fills the system."""
    if rate_gb_per_day <= 0:
        return None
    days = max(0.0, remaining_gb) / rate_gb_per_day
    if not math.isfinite(days):
        return None
    return int(math.floor(days))


def warning_level(
    days: int | None,
    *,
    critical_days: int = DEFAULT_CRITICAL_DAYS,
    warning_days: int = DEFAULT_WARNING_DAYS,
) -> WarningLevel:
    if days is None:
        return WarningLevel.OK
    if days <= critical_days:
        return WarningLevel.CRITICAL
    if days <= warning_days:
        return WarningLevel.WARNING
    return WarningLevel.OK


def estimate_runway(
    system: StorageSystem,
    pipelines: Iterable[Pipeline],
    *,
    rate_override: float | None = None,
    critical_days: int = DEFAULT_CRITICAL_DAYS,
    warning_days: int = DEFAULT_WARNING_DAYS,
) -> RunwayEstimate:
    """Compute the runway estimate for one system.

    Args:
        system: Current capacity snapshot.
        pipelines: Pipelines relevant to the system (see ``pipelines_for_system``).
        rate_override: Use this net rate instead of deriving it (what-if scenarios).
        critical_days: Runway at or below this is ``critical``.
        warning_days: Runway at or below this is ``warning``.
    """
    rate = net_rate(pipelines) if rate_override is None else float(rate_override)
    remaining, warnings = remaining_capacity(system)
    days = runway_days(remaining, rate)
    return RunwayEstimate(
        storage_system_id=system.id,
        total_capacity_gb=system.total_capacity_gb,
        used_capacity_gb=system.used_capacity_gb,
        remaining_capacity_gb=remaining,
        net_rate_gb_per_day=rate,
        runway_days=days,
        warning_level=warning_level(days, critical_days=critical_days, warning_days=warning_days),
        data_quality_warnings=warnings,
    )


def what_if_scenarios(
    system: StorageSystem,
    pipelines: Sequence[Pipeline],
    *,
    critical_days: int = DEFAULT_CRITICAL_DAYS,
    warning_days: int = DEFAULT_WARNING_DAYS,
) -> list[Scenario]:
    """One independent scenario per pipeline, in input order."""
    baseline = net_rate(pipelines)
    scenarios: list[Scenario] = []
    for pipeline in pipelines:
        rate = baseline - contribution(pipeline)
        scenarios.append(
            Scenario(
                pipeline_id=pipeline.id,
                pipeline_name=pipeline.name,
                net_rate_gb_per_day=rate,
                runway=estimate_runway(
                    system,
                    pipelines,
                    rate_override=rate,
                    critical_days=critical_days,
                    warning_days=warning_days,
                ),
            )
        )
    return scenarios


def _clamp(value: float, total: float) -> float:
    return min(max(value, 0.0), max(total, 0.0))


def project_usage(used_gb: float, total_gb: float, rate_gb_per_day: float, day: int) -> float:
    """Projected usage ``day`` days out, clamped to ``[0, total]``."""
    return _clamp(used_gb + day * rate_gb_per_day, total_gb)


def forecast(
    system: StorageSystem,
    pipelines: Sequence[Pipeline],
    *,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
    start_date: date | None = None,
) -> list[ForecastPoint]:
    """Day-indexed forecast for ``day`` in ``1..horizon_days``.

    Each point carries the baseline projection and, per pipeline id, the
    projection with that pipeline's contribution removed.
    """
    if horizon_days < 1:
        raise ValidationError("horizon must be >= 1 day")

    origin = start_date or datetime.now(UTC).date()
    baseline = net_rate(pipelines)
    scenario_rates = {p.id: baseline - contribution(p) for p in pipelines}
    used = system.used_capacity_gb
    total = system.total_capacity_gb

    points: list[ForecastPoint] = []
    for day in range(1, horizon_days + 1):
        points.append(
            ForecastPoint(
                day=day,
                forecast_date=origin + timedelta(days=day),
                baseline_gb=project_usage(used, total, baseline, day),
                scenarios_gb={
                    pid: project_usage(used, total, rate, day) for pid, rate in scenario_rates.items()
                },
            )
        )
    return points


def observed_daily_growth(samples: Sequence[UsageSample], *, window: int = 7) -> float | None:
    """Average daily growth over the most recent ``window`` samples.

    Computed as ``(max - min) / (count - 1)`` over the window, which matches
    the dashboard's historical "daily growth" figure. Returns None with fewer
    than two samples.
    """
    if window < 2:
        raise ValidationError("growth window must be >= 2 samples")
    recent = sorted(samples, key=lambda s: s.recorded_at)[-window:]
    if len(recent) < 2:
        return None
    values = [s.used_capacity_gb for s in recent]
    return (max(values) - min(values)) / (len(recent) - 1)
