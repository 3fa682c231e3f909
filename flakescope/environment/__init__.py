"""Environment variable and system metrics correlation across runs."""

from flakescope.environment.metrics import (
    EnvironmentCorrelation,
    MetricDelta,
    MetricsRun,
    SystemMetrics,
    VariableCorrelation,
    correlate_environment,
    load_system_metrics,
    parse_system_metrics,
)

__all__ = [
    "EnvironmentCorrelation",
    "MetricDelta",
    "MetricsRun",
    "SystemMetrics",
    "VariableCorrelation",
    "correlate_environment",
    "load_system_metrics",
    "parse_system_metrics",
]
