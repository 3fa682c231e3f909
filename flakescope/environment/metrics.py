"""Environment and system metrics correlation.

A metrics file records the environment and resource usage of repeated
runs of the same tests::

    {"runs": [{"id": "run-1", "success": false,
               "environment": {"TEST_ENV": "ci"},
               "metrics": {"cpu_usage": 91.5, "memory_usage": 1800}}],
     "environment": [{"name": "MEMORY_LIMIT",
                      "values": {"run-1": "512m", "run-2": "2g"}}]}

Variables may be given per run, in the top-level ``environment`` list
keyed by run id, or both.  Failed and successful runs are then compared
variable by variable and metric by metric.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from flakescope.errors import EmptyInputError, MalformedInputError, MissingInputError
from flakescope.experiments.correlation import NOT_AVAILABLE

# Correlation scores for a variable whose failed-run values do or do not
# differ from its successful-run values
DIFFERS_SCORE = 80
SAME_SCORE = 10


@dataclass
class MetricsRun:
    """Environment and resource usage recorded for one run."""

    id: str
    success: bool
    environment: dict[str, str] = field(default_factory=dict)
    metrics: dict[str, float] = field(default_factory=dict)


@dataclass
class SystemMetrics:
    """All runs of a metrics file."""

    runs: list[MetricsRun] = field(default_factory=list)
    variables: list[str] = field(default_factory=list)  # first-appearance order
    warnings: list[str] = field(default_factory=list)

    def run(self, run_id: str) -> MetricsRun | None:
        for run in self.runs:
            if run.id == run_id:
                return run
        return None


@dataclass(frozen=True)
class VariableCorrelation:
    """Values of one environment variable in failed and successful runs."""

    name: str
    failed_values: tuple[str, ...]
    passed_values: tuple[str, ...]
    score: int | str  # DIFFERS_SCORE, SAME_SCORE, or N/A

    @property
    def differs(self) -> bool:
        return self.score == DIFFERS_SCORE


@dataclass(frozen=True)
class MetricDelta:
    """Average of one metric in failed and successful runs."""

    metric: str
    failed_average: float | str
    passed_average: float | str
    difference: float | str


@dataclass
class EnvironmentCorrelation:
    """Failed-versus-successful comparison of a metrics file."""

    total: int = 0
    failed: int = 0
    variables: list[VariableCorrelation] = field(default_factory=list)
    metrics: list[MetricDelta] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return self.total - self.failed

    @property
    def success_rate(self) -> float | str:
        if self.total == 0:
            return NOT_AVAILABLE
        return round(self.passed * 100.0 / self.total, 1)

    def variable(self, name: str) -> VariableCorrelation | None:
        for variable in self.variables:
            if variable.name == name:
                return variable
        return None

    def metric(self, name: str) -> MetricDelta | None:
        for delta in self.metrics:
            if delta.metric == name:
                return delta
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "variables": [
                {
                    "name": v.name,
                    "failed_values": list(v.failed_values),
                    "passed_values": list(v.passed_values),
                    "score": v.score,
                }
                for v in self.variables
            ],
            "metrics": [
                {
                    "metric": m.metric,
                    "failed_average": m.failed_average,
                    "passed_average": m.passed_average,
                    "difference": m.difference,
                }
                for m in self.metrics
            ],
            "warnings": list(self.warnings),
        }


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _note_variable(metrics: SystemMetrics, name: str) -> None:
    if name not in metrics.variables:
        metrics.variables.append(name)


def _parse_run(entry: Any, index: int, metrics: SystemMetrics) -> MetricsRun | None:
    """Parse one ``runs`` entry; returns None if it cannot be classified."""
    if not isinstance(entry, dict):
        metrics.warnings.append(f"runs[{index}]: not an object, ignored")
        return None
    success = entry.get("success")
    if not isinstance(success, bool):
        metrics.warnings.append(f"runs[{index}]: 'success' must be true or false, ignored")
        return None

    run_id = entry.get("id")
    if run_id is None or isinstance(run_id, (dict, list)):
        run_id = f"run-{index + 1}"
        metrics.warnings.append(f"runs[{index}]: missing id, using {run_id}")
    run = MetricsRun(id=str(run_id), success=success)

    environment = entry.get("environment") or {}
    if isinstance(environment, dict):
        for name, value in environment.items():
            run.environment[str(name)] = str(value)
            _note_variable(metrics, str(name))
    else:
        metrics.warnings.append(f"runs[{index}]: 'environment' is not an object, ignored")

    values = entry.get("metrics") or {}
    if not isinstance(values, dict):
        metrics.warnings.append(f"runs[{index}]: 'metrics' is not an object, ignored")
        return run
    for name, value in values.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            metrics.warnings.append(f"runs[{index}]: metric {name} is not numeric, ignored")
            continue
        run.metrics[str(name)] = float(value)
    return run


def _merge_environment(entries: Any, metrics: SystemMetrics) -> None:
    """Merge the top-level per-variable ``environment`` list into the runs."""
    if not isinstance(entries, list):
        metrics.warnings.append("'environment' is not an array, ignored")
        return
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or "name" not in entry:
            metrics.warnings.append(f"environment[{index}]: missing 'name', ignored")
            continue
        name = str(entry["name"])
        values = entry.get("values")
        if not isinstance(values, dict):
            metrics.warnings.append(f"environment[{index}]: 'values' is not an object, ignored")
            continue
        _note_variable(metrics, name)
        for run_id, value in values.items():
            run = metrics.run(str(run_id))
            if run is None:
                metrics.warnings.append(f"environment[{index}]: unknown run {run_id}")
                continue
            run.environment.setdefault(name, str(value))


def parse_system_metrics(
    data: str | dict[str, Any], source: str | Path | None = None,
) -> SystemMetrics:
    """Parse a metrics document.

    Args:
        data: JSON text or an already decoded document.
        source: Path used in error messages.

    Raises:
        MalformedInputError: If the JSON is invalid or ``runs`` is not an
            array.
    """
    label = str(source) if source is not None else "<metrics>"
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedInputError(source, f"Invalid metrics JSON in {label}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("runs"), list):
        raise MalformedInputError(source, f"Metrics file {label} has no 'runs' array")

    metrics = SystemMetrics()
    for index, entry in enumerate(data["runs"]):
        run = _parse_run(entry, index, metrics)
        if run is None:
            continue
        if metrics.run(run.id) is not None:
            metrics.warnings.append(f"runs[{index}]: duplicate id {run.id}, ignored")
            continue
        metrics.runs.append(run)

    if "environment" in data:
        _merge_environment(data["environment"], metrics)
    return metrics


def load_system_metrics(path: str | Path) -> SystemMetrics:
    """Read and parse a metrics file.

    Raises:
        MissingInputError: If the file does not exist.
        EmptyInputError: If the file is empty.
        MalformedInputError: If the document lacks a ``runs`` array.
    """
    metrics_path = Path(path)
    if not metrics_path.is_file():
        raise MissingInputError(metrics_path, "expected a system metrics JSON file")
    text = metrics_path.read_text(encoding="utf-8", errors="replace")
    if not text.strip():
        raise EmptyInputError(metrics_path, f"Metrics file is empty: {metrics_path}")
    return parse_system_metrics(text, metrics_path)


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


def _distinct(values: list[str]) -> tuple[str, ...]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)


def _average(values: list[float]) -> float | str:
    if not values:
        return NOT_AVAILABLE
    return round(sum(values) / len(values), 2)


def _compare_variable(
    name: str, failed: list[MetricsRun], passed: list[MetricsRun],
) -> VariableCorrelation:
    failed_values = _distinct([r.environment[name] for r in failed if name in r.environment])
    passed_values = _distinct([r.environment[name] for r in passed if name in r.environment])
    if not failed_values or not passed_values:
        score: int | str = NOT_AVAILABLE
    elif set(failed_values) != set(passed_values):
        score = DIFFERS_SCORE
    else:
        score = SAME_SCORE
    return VariableCorrelation(name, failed_values, passed_values, score)


def _compare_metric(
    name: str, failed: list[MetricsRun], passed: list[MetricsRun],
) -> MetricDelta:
    failed_average = _average([r.metrics[name] for r in failed if name in r.metrics])
    passed_average = _average([r.metrics[name] for r in passed if name in r.metrics])
    if isinstance(failed_average, str) or isinstance(passed_average, str):
        difference: float | str = NOT_AVAILABLE
    else:
        difference = round(failed_average - passed_average, 2)
    return MetricDelta(name, failed_average, passed_average, difference)


def correlate_environment(metrics: SystemMetrics) -> EnvironmentCorrelation:
    """Compare the environment and resource usage of failed and successful runs.

    Variables keep their first-appearance order; metrics are sorted by
    name.  A comparison with an empty side reports ``N/A``.
    """
    failed = [r for r in metrics.runs if not r.success]
    passed = [r for r in metrics.runs if r.success]

    report = EnvironmentCorrelation(
        total=len(metrics.runs),
        failed=len(failed),
        warnings=list(metrics.warnings),
    )
    if metrics.runs and not failed:
        report.warnings.append("no failed runs in metrics, nothing to compare")
    elif metrics.runs and not passed:
        report.warnings.append("no successful runs in metrics, nothing to compare")

    report.variables = [_compare_variable(n, failed, passed) for n in metrics.variables]
    names = sorted({name for run in metrics.runs for name in run.metrics})
    report.metrics = [_compare_metric(n, failed, passed) for n in names]
    return report
