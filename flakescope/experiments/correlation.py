"""Correlation of executed experiment results with their factors."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from flakescope.experiments.pairwise import (
    BASELINE,
    Category,
    Configuration,
    ExecutionResult,
    Level,
)
from flakescope.flakiness.categories import classify

# Placeholder for statistics over zero runs
NOT_AVAILABLE = "N/A"

DEFAULT_TOP_N = 5


@dataclass
class LevelStats:
    """Results of every run that set one category to one level."""

    level: str
    runs: int
    passed: int
    success_rate: float | str
    avg_duration: float | str

    @property
    def failed(self) -> int:
        return self.runs - self.passed


@dataclass
class CategoryImpact:
    """Aggregate effect of perturbing one category."""

    category: str
    runs: int  # runs with a non-baseline level of this category
    success_rate: float | str  # percent, one decimal, or N/A
    avg_duration: float | str  # seconds, two decimals, or N/A
    most_common_failure: str | None
    levels: list[LevelStats] = field(default_factory=list)


@dataclass
class FailurePattern:
    """Failed runs sharing the same set of perturbed levels."""

    pattern: tuple[tuple[str, str], ...]
    count: int

    @property
    def label(self) -> str:
        if not self.pattern:
            return "baseline"
        return ", ".join(f"{c}={lvl}" for c, lvl in self.pattern)


@dataclass
class SlowConfiguration:
    configuration_id: int
    duration_seconds: float
    exit_status: int
    description: str


@dataclass
class CorrelationReport:
    """Everything derived from one results table."""

    total: int = 0
    passed: int = 0
    impacts: list[CategoryImpact] = field(default_factory=list)
    slowest: list[SlowConfiguration] = field(default_factory=list)
    failure_patterns: list[FailurePattern] = field(default_factory=list)
    note_categories: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def pass_rate(self) -> float | str:
        return _rate(self.passed, self.total)

    def impact(self, category: str) -> CategoryImpact | None:
        for impact in self.impacts:
            if impact.category == category:
                return impact
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "pass_rate": self.pass_rate,
            "categories": [
                {
                    "category": i.category,
                    "runs": i.runs,
                    "success_rate": i.success_rate,
                    "avg_duration": i.avg_duration,
                    "most_common_failure": i.most_common_failure,
                    "levels": [
                        {
                            "level": s.level,
                            "runs": s.runs,
                            "passed": s.passed,
                            "success_rate": s.success_rate,
                            "avg_duration": s.avg_duration,
                        }
                        for s in i.levels
                    ],
                }
                for i in self.impacts
            ],
            "slowest": [
                {
                    "id": s.configuration_id,
                    "duration_seconds": s.duration_seconds,
                    "status": s.exit_status,
                    "configuration": s.description,
                }
                for s in self.slowest
            ],
            "failure_patterns": [
                {"pattern": p.label, "count": p.count} for p in self.failure_patterns
            ],
            "note_categories": dict(self.note_categories),
            "warnings": list(self.warnings),
        }


def _rate(passed: int, runs: int) -> float | str:
    if runs == 0:
        return NOT_AVAILABLE
    return round(passed * 100.0 / runs, 1)


def _average(total: float, runs: int) -> float | str:
    if runs == 0:
        return NOT_AVAILABLE
    return round(total / runs, 2)


def infer_categories(configurations: Sequence[Configuration]) -> list[Category]:
    """Recover category level order from generated configurations.

    Pairwise rows enumerate levels in declaration order, so first
    appearance order matches the declared table.
    """
    order: dict[str, list[Level]] = {}
    for config in configurations:
        for name, level in config.levels:
            levels = order.setdefault(name, [BASELINE])
            if level not in levels:
                levels.append(level)
    return [Category(name=name, levels=tuple(levels)) for name, levels in order.items()]


def _category_impact(
    category: Category,
    joined: list[tuple[Configuration, ExecutionResult]],
) -> CategoryImpact:
    stats: list[LevelStats] = []
    total_runs = total_passed = 0
    total_duration = 0.0
    worst: str | None = None
    worst_failures = 0

    for level in category.perturbations:
        runs = passed = 0
        duration = 0.0
        for config, result in joined:
            if config.level_of(category.name) == level:
                runs += 1
                passed += result.passed
                duration += result.duration_seconds
        stats.append(LevelStats(
            level=level.name,
            runs=runs,
            passed=passed,
            success_rate=_rate(passed, runs),
            avg_duration=_average(duration, runs),
        ))
        total_runs += runs
        total_passed += passed
        total_duration += duration
        # Strictly greater keeps the earliest declared level on ties
        if runs - passed > worst_failures:
            worst = level.name
            worst_failures = runs - passed

    return CategoryImpact(
        category=category.name,
        runs=total_runs,
        success_rate=_rate(total_passed, total_runs),
        avg_duration=_average(total_duration, total_runs),
        most_common_failure=worst,
        levels=stats,
    )


def correlate(
    configurations: Sequence[Configuration],
    results: Sequence[ExecutionResult],
    top_n: int = DEFAULT_TOP_N,
    categories: Sequence[Category] | None = None,
) -> CorrelationReport:
    """Correlate executed results with the factors of their configurations.

    Args:
        configurations: The experiment matrix.
        results: Executed results, joined to configurations by id.
        top_n: Number of slowest configurations and failure patterns kept.
        categories: Category table giving level declaration order;
            inferred from the configurations when omitted.

    Returns:
        A CorrelationReport.  Results without a configuration and
        configurations without a result are noted in ``warnings``.
    """
    if categories is None:
        categories = infer_categories(configurations)

    report = CorrelationReport()
    by_id = {c.id: c for c in configurations}
    joined: list[tuple[Configuration, ExecutionResult]] = []
    executed: set[int] = set()
    for result in results:
        config = by_id.get(result.configuration_id)
        if config is None:
            report.warnings.append(
                f"result for unknown configuration {result.configuration_id} ignored"
            )
            continue
        if result.configuration_id in executed:
            report.warnings.append(
                f"duplicate result for configuration {result.configuration_id} ignored"
            )
            continue
        executed.add(result.configuration_id)
        joined.append((config, result))

    missing = [c.id for c in configurations if c.id not in executed]
    if missing:
        report.warnings.append(
            f"{len(missing)} configuration(s) not executed: "
            + ", ".join(str(i) for i in missing)
        )

    report.total = len(joined)
    report.passed = sum(1 for _, r in joined if r.passed)
    report.impacts = [_category_impact(c, joined) for c in categories]

    slowest = sorted(joined, key=lambda pair: (-pair[1].duration_seconds, pair[0].id))
    report.slowest = [
        SlowConfiguration(
            configuration_id=config.id,
            duration_seconds=result.duration_seconds,
            exit_status=result.exit_status,
            description=config.describe(),
        )
        for config, result in slowest[:top_n]
    ]

    patterns: Counter[tuple[tuple[str, str], ...]] = Counter()
    for config, result in joined:
        if not result.passed:
            patterns[tuple((c, lvl.name) for c, lvl in config.active_levels)] += 1
    ranked = [FailurePattern(pattern=p, count=n) for p, n in patterns.items()]
    ranked.sort(key=lambda p: (-p.count, p.label))
    report.failure_patterns = ranked[:top_n]

    note_counts: Counter[str] = Counter()
    for _, result in joined:
        if not result.passed and result.extracted_notes:
            note_counts[classify(result.extracted_notes).value] += 1
    report.note_categories = {
        name: note_counts[name]
        for name in sorted(note_counts, key=lambda n: (-note_counts[n], n))
    }
    return report
