"""Contracts shared across the API, the live feed and the engine.

The contracts package defines:
- capacity records (storage systems, pipelines, usage samples, runway results)
- the error taxonomy mapped to API error envelopes
- Protocol definitions for the snapshot store, notifier and observers
"""

from contracts import capacity, errors

# Explicit re-exports to satisfy ruff F401
__all__ = [
    "CapacityError",
    "NotFoundError",
    "Pipeline",
    "PipelineStatus",
    "RunwayEstimate",
    "StorageSystem",
    "UsageSample",
    "ValidationError",
]

CapacityError = errors.CapacityError
NotFoundError = errors.NotFoundError
ValidationError = errors.ValidationError

Pipeline = capacity.Pipeline
PipelineStatus = capacity.PipelineStatus
RunwayEstimate = capacity.RunwayEstimate
StorageSystem = capacity.StorageSystem
UsageSample = capacity.UsageSample
