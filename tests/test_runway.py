"""Unit tests for the runway projection engine."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from contracts.capacity import PipelineStatus, UsageSample, WarningLevel
from contracts.errors import ValidationError
from services import runway
from tests.factories import make_pipeline, make_system


def test_basic_runway_is_remaining_over_net_rate() -> None:
    """500 GB total, 450 used, +10 GB/day active: 50 GB left lasts 5 days."""
    est = runway.estimate_runway(make_system(), [make_pipeline()])

    assert est.remaining_capacity_gb == 50.0
    assert est.net_rate_gb_per_day == 10.0
    assert est.runway_days == 5
    assert est.unbounded is False
    assert est.warning_level is WarningLevel.WARNING
    assert est.data_quality_warnings == ()


def test_runway_days_are_truncated() -> None:
    assert runway.runway_days(50.0, 15.0) == 3
    assert runway.runway_days(59.9, 10.0) == 5


def test_failed_pipeline_makes_runway_unbounded() -> None:
    est = runway.estimate_runway(make_system(), [make_pipeline(status="failed")])

    assert est.net_rate_gb_per_day == 0.0
    assert est.runway_days is None
    assert est.unbounded is True
    assert est.warning_level is WarningLevel.OK
    assert est.to_dict()["runway_unbounded"] is True


def test_paused_pipeline_contributes_zero() -> None:
    pipelines = [
        make_pipeline(id=1, impact_rate_gb_per_day=10.0),
        make_pipeline(id=2, name="pipeline-b", status=PipelineStatus.PAUSED, impact_rate_gb_per_day=40.0),
    ]
    assert runway.net_rate(pipelines) == 10.0


def test_no_pipelines_is_unbounded() -> None:
    est = runway.estimate_runway(make_system(), [])
    assert est.net_rate_gb_per_day == 0.0
    assert est.runway_days is None


def test_negative_net_rate_is_unbounded() -> None:
    pipelines = [
        make_pipeline(id=1, impact_rate_gb_per_day=10.0),
        make_pipeline(id=2, name="compaction", impact_rate_gb_per_day=-25.0),
    ]
    est = runway.estimate_runway(make_system(), pipelines)
    assert est.net_rate_gb_per_day == -15.0
    assert est.unbounded is True


def test_used_above_total_clamps_remaining_and_warns(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("WARNING")
    est = runway.estimate_runway(make_system(used_capacity_gb=600.0), [make_pipeline()])

    assert est.remaining_capacity_gb == 0.0
    assert est.runway_days == 0
    assert est.warning_level is WarningLevel.CRITICAL
    assert est.data_quality_warnings == (runway.USED_EXCEEDS_TOTAL,)
    assert any("capacity_snapshot_inconsistent" in r.getMessage() for r in caplog.records)


def test_negative_used_is_flagged() -> None:
    remaining, warnings = runway.remaining_capacity(make_system(used_capacity_gb=-5.0))
    assert remaining == 505.0
    assert warnings == (runway.NEGATIVE_USED,)


@pytest.mark.parametrize(
    ("days", "expected"),
    [
        (None, WarningLevel.OK),
        (0, WarningLevel.CRITICAL),
        (3, WarningLevel.CRITICAL),
        (4, WarningLevel.WARNING),
        (7, WarningLevel.WARNING),
        (8, WarningLevel.OK),
    ],
)
def test_warning_level_thresholds(days: int | None, expected: WarningLevel) -> None:
    assert runway.warning_level(days) is expected


def test_warning_level_custom_thresholds() -> None:
    assert runway.warning_level(10, critical_days=10, warning_days=30) is WarningLevel.CRITICAL
    assert runway.warning_level(20, critical_days=10, warning_days=30) is WarningLevel.WARNING


def test_pipelines_for_system_includes_unattached() -> None:
    pipelines = [
        make_pipeline(id=1, storage_system_id=1),
        make_pipeline(id=2, storage_system_id=2),
        make_pipeline(id=3, storage_system_id=None),
    ]
    assert [p.id for p in runway.pipelines_for_system(1, pipelines)] == [1, 3]


def test_what_if_scenarios_are_independent() -> None:
    pipelines = [
        make_pipeline(id=1, name="pipeline-a", impact_rate_gb_per_day=10.0),
        make_pipeline(id=2, name="pipeline-b", impact_rate_gb_per_day=15.0),
        make_pipeline(id=3, name="stalled", status="failed", impact_rate_gb_per_day=99.0),
    ]
    scenarios = runway.what_if_scenarios(make_system(), pipelines)

    assert [s.pipeline_id for s in scenarios] == [1, 2, 3]
    by_id = {s.pipeline_id: s for s in scenarios}
    # Baseline is 25 GB/day; each scenario removes exactly one contribution.
    assert by_id[1].net_rate_gb_per_day == 15.0
    assert by_id[1].runway.runway_days == 3
    assert by_id[2].net_rate_gb_per_day == 10.0
    assert by_id[2].runway.runway_days == 5
    assert by_id[3].net_rate_gb_per_day == 25.0
    assert by_id[3].runway.runway_days == 2


def test_removing_only_pipeline_is_unbounded() -> None:
    (scenario,) = runway.what_if_scenarios(make_system(), [make_pipeline()])
    assert scenario.net_rate_gb_per_day == 0.0
    assert scenario.to_dict()["runway_unbounded"] is True
    assert scenario.to_dict()["runway_days"] is None


def test_forecast_points_baseline_and_scenarios() -> None:
    pipelines = [
        make_pipeline(id=1, impact_rate_gb_per_day=10.0),
        make_pipeline(id=2, name="pipeline-b", impact_rate_gb_per_day=5.0),
    ]
    start = date(2026, 1, 1)
    points = runway.forecast(make_system(used_capacity_gb=400.0), pipelines, horizon_days=10, start_date=start)

    assert [p.day for p in points] == list(range(1, 11))
    assert points[0].forecast_date == date(2026, 1, 2)
    assert points[0].baseline_gb == 415.0
    assert points[0].scenarios_gb == {1: 405.0, 2: 410.0}
    # 400 + 10 * 15 = 550, clamped to the 500 GB total.
    assert points[-1].baseline_gb == 500.0
    assert points[-1].scenarios_gb[1] == 450.0


def test_forecast_clamps_at_zero_for_shrinking_usage() -> None:
    points = runway.forecast(
        make_system(used_capacity_gb=20.0),
        [make_pipeline(impact_rate_gb_per_day=-15.0)],
        horizon_days=3,
        start_date=date(2026, 1, 1),
    )
    assert [p.baseline_gb for p in points] == [5.0, 0.0, 0.0]


def test_forecast_point_serializes_date_and_string_keys() -> None:
    (point,) = runway.forecast(make_system(), [make_pipeline(id=7)], horizon_days=1, start_date=date(2026, 3, 1))
    payload = point.to_dict()
    assert payload["date"] == "2026-03-02"
    assert payload["scenarios_gb"] == {"7": 450.0}


def test_forecast_rejects_non_positive_horizon() -> None:
    with pytest.raises(ValidationError):
        runway.forecast(make_system(), [], horizon_days=0)


def _samples(values: list[float]) -> list[UsageSample]:
    base = datetime(2026, 1, 1, tzinfo=UTC)
    return [
        UsageSample(storage_system_id=1, recorded_at=base + timedelta(days=i), used_capacity_gb=v)
        for i, v in enumerate(values)
    ]


def test_observed_daily_growth_uses_recent_window() -> None:
    # Only the last 7 samples count: 100..160 over 6 intervals.
    values = [0.0, 50.0] + [100.0 + 10.0 * i for i in range(7)]
    assert runway.observed_daily_growth(_samples(values)) == 10.0


def test_observed_daily_growth_is_order_independent() -> None:
    samples = _samples([10.0, 20.0, 30.0])
    assert runway.observed_daily_growth(list(reversed(samples))) == 10.0


def test_observed_daily_growth_needs_two_samples() -> None:
    assert runway.observed_daily_growth([]) is None
    assert runway.observed_daily_growth(_samples([42.0])) is None


def test_observed_daily_growth_rejects_tiny_window() -> None:
    with pytest.raises(ValidationError):
        runway.observed_daily_growth(_samples([1.0, 2.0]), window=1)
