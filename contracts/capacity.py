"""Capacity domain records.

Units: capacities are gigabytes, rates are gigabytes per day. Rows read from
Postgres arrive as dicts (``fetch_all_dict_conn``); the ``from_row`` helpers
normalize NUMERIC/Decimal columns to float and status text to
``PipelineStatus``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping

from contracts.errors import ValidationError


class PipelineStatus(str, Enum):
    ACTIVE = "active"
    FAILED = "failed"
    PAUSED = "paused"

    @classmethod
    def parse(cls, value: Any) -> PipelineStatus:
        """Parse user/DB input, raising ValidationError for unknown values.

        Matching is exact: ``"Active"`` or ``" active"`` are rejected.
        """
        if isinstance(value, PipelineStatus):
            return value
        try:
            return cls(value)
        except (TypeError, ValueError) as exc:
            allowed = ", ".join(s.value for s in cls)
            raise ValidationError(f"status must be one of: {allowed} (got {value!r})") from exc


class WarningLevel(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


def _as_float(value: Any, *, field_name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a number (got {value!r})") from exc


def _iso(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


@dataclass(frozen=True)
class StorageSystem:
    id: int
    name: str
    total_capacity_gb: float
    used_capacity_gb: float
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> StorageSystem:
        return cls(
            id=int(row["id"]),
            name=str(row.get("name") or ""),
            total_capacity_gb=_as_float(row.get("total_capacity_gb"), field_name="total_capacity_gb"),
            used_capacity_gb=_as_float(row.get("used_capacity_gb"), field_name="used_capacity_gb"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "total_capacity_gb": self.total_capacity_gb,
            "used_capacity_gb": self.used_capacity_gb,
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class Pipeline:
    id: int
    name: str
    status: PipelineStatus
    impact_rate_gb_per_day: float
    description: str = ""
    storage_system_id: int | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is PipelineStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Pipeline:
        system_id = row.get("storage_system_id")
        return cls(
            id=int(row["id"]),
            name=str(row.get("name") or ""),
            status=PipelineStatus.parse(row.get("status")),
            impact_rate_gb_per_day=_as_float(
                row.get("impact_rate_gb_per_day"), field_name="impact_rate_gb_per_day"
            ),
            description=str(row.get("description") or ""),
            storage_system_id=int(system_id) if system_id is not None else None,
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "impact_rate_gb_per_day": self.impact_rate_gb_per_day,
            "description": self.description,
            "storage_system_id": self.storage_system_id,
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class UsageSample:
    storage_system_id: int
    recorded_at: datetime
    used_capacity_gb: float

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> UsageSample:
        return cls(
            storage_system_id=int(row["storage_system_id"]),
            recorded_at=row["recorded_at"],
            used_capacity_gb=_as_float(row.get("used_capacity_gb"), field_name="used_capacity_gb"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "storage_system_id": self.storage_system_id,
            "recorded_at": _iso(self.recorded_at),
            "used_capacity_gb": self.used_capacity_gb,
        }


@dataclass(frozen=True)
class RunwayEstimate:
    """Runway for one system. ``runway_days is None`` means unbounded."""

    storage_system_id: int
    total_capacity_gb: float
    used_capacity_gb: float
    remaining_capacity_gb: float
    net_rate_gb_per_day: float
    runway_days: int | None
    warning_level: WarningLevel = WarningLevel.OK
    data_quality_warnings: tuple[str, ...] = ()

    @property
    def unbounded(self) -> bool:
        return self.runway_days is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "storage_system_id": self.storage_system_id,
            "total_capacity_gb": self.total_capacity_gb,
            "used_capacity_gb": self.used_capacity_gb,
            "remaining_capacity_gb": self.remaining_capacity_gb,
            "net_rate_gb_per_day": self.net_rate_gb_per_day,
            "runway_days": self.runway_days,
            "runway_unbounded": self.unbounded,
            "warning_level": self.warning_level.value,
            "data_quality_warnings": list(self.data_quality_warnings),
        }


@dataclass(frozen=True)
class Scenario:
    """What-if: the named pipeline's contribution removed from the net rate."""

    pipeline_id: int
    pipeline_name: str
    net_rate_gb_per_day: float
    runway: RunwayEstimate

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_id": self.pipeline_id,
            "pipeline_name": self.pipeline_name,
            "net_rate_gb_per_day": self.net_rate_gb_per_day,
            "runway_days": self.runway.runway_days,
            "runway_unbounded": self.runway.unbounded,
            "warning_level": self.runway.warning_level.value,
        }


@dataclass(frozen=True)
class ForecastPoint:
    day: int
    forecast_date: date
    baseline_gb: float
    scenarios_gb: dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day,
            "date": self.forecast_date.isoformat(),
            "baseline_gb": self.baseline_gb,
            # JSON object keys are strings
            "scenarios_gb": {str(k): v for k, v in self.scenarios_gb.items()},
        }


__all__ = [
    "ForecastPoint",
    "Pipeline",
    "PipelineStatus",
    "RunwayEstimate",
    "Scenario",
    "StorageSystem",
    "UsageSample",
    "WarningLevel",
]
