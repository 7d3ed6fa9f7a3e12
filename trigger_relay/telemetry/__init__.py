"""Telemetry: metrics snapshots and the periodic recorder."""

from trigger_relay.telemetry.metrics import (
    HealthSnapshot,
    MetricsOwner,
    PerformanceMetrics,
    SnapshotChannel,
    compute_is_healthy,
)
from trigger_relay.telemetry.recorder import SystemSampler, TelemetryRecorder

__all__ = [
    "HealthSnapshot",
    "MetricsOwner",
    "PerformanceMetrics",
    "SnapshotChannel",
    "SystemSampler",
    "TelemetryRecorder",
    "compute_is_healthy",
]
