"""Shared lightweight factories and fakes for tests.

These helpers keep capacity fixtures small and deterministic without pulling in
an external factory library.
"""

from __future__ import annotations

from typing import Any

from contracts.capacity import Pipeline, PipelineStatus, StorageSystem


def make_system(**overrides: Any) -> StorageSystem:
    """Build a StorageSystem (500 GB total, 450 GB used by default)."""
    data: dict[str, Any] = {
        "id": 1,
        "name": "primary-array",
        "total_capacity_gb": 500.0,
        "used_capacity_gb": 450.0,
    }
    data.update(overrides)
    return StorageSystem(**data)


def make_pipeline(**overrides: Any) -> Pipeline:
    """Build an active Pipeline growing usage by 10 GB/day by default."""
    data: dict[str, Any] = {
        "id": 1,
        "name": "pipeline-a",
        "status": PipelineStatus.ACTIVE,
        "impact_rate_gb_per_day": 10.0,
        "description": "",
        "storage_system_id": None,
    }
    data.update(overrides)
    if isinstance(data["status"], str):
        data["status"] = PipelineStatus.parse(data["status"])
    return Pipeline(**data)


class FakeSnapshotStore:
    """In-memory SnapshotStoreProtocol implementation."""

    def __init__(
        self,
        *,
        systems: list[dict[str, Any]] | None = None,
        pipelines: list[dict[str, Any]] | None = None,
        history: list[dict[str, Any]] | None = None,
    ) -> None:
        self.systems = systems if systems is not None else [{"id": 1, "name": "primary-array"}]
        self.pipelines = pipelines if pipelines is not None else [{"id": 1, "status": "active"}]
        self.history = history if history is not None else [{"storage_system_id": 1, "used_capacity_gb": 1.0}]
        self.fail_with: Exception | None = None
        self.pipeline_calls = 0

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def storage_systems_snapshot(self) -> list[dict[str, Any]]:
        self._check()
        return list(self.systems)

    def pipelines_snapshot(self) -> list[dict[str, Any]]:
        self._check()
        self.pipeline_calls += 1
        return list(self.pipelines)

    def usage_history_snapshot(self) -> list[dict[str, Any]]:
        self._check()
        return list(self.history)


class RecordingObserver:
    """Observer that records every frame it is sent."""

    def __init__(self, name: str = "obs", *, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.closed = False
        self.frames: list[str] = []

    def send(self, message: str) -> None:
        if self.fail:
            raise ConnectionError(f"{self.name} is gone")
        self.frames.append(message)

    def __repr__(self) -> str:
        return f"RecordingObserver({self.name})"


class FakeNotifier:
    """NotifierProtocol fake that lets tests push notifications by hand."""

    def __init__(self) -> None:
        self.callback = None
        self.started = 0
        self.stopped = 0

    def start(self, callback) -> None:  # type: ignore[no-untyped-def]
        self.callback = callback
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def emit(self, channel: str, payload: str) -> None:
        assert self.callback is not None, "notifier not started"
        self.callback(channel, payload)
