"""Cross-run flakiness aggregation.

Scores every test observed in at least two runs and assigns it a likely
root-cause category from the signatures of its failing runs.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from flakescope.flakiness.categories import (
    RULES,
    CategoryRule,
    FlakinessCategory,
    classify,
    matching_categories,
)
from flakescope.ingestion.directory import TestOutcomeHistory
from flakescope.ingestion.run_log import (
    FAILING_OUTCOMES,
    IngestResult,
    Outcome,
    class_of_test,
    same_test_name,
)

# Score placeholder for tests observed in fewer than two runs
NOT_APPLICABLE = "not_applicable"

MIN_RUNS = 2

_OUTCOME_ORDER = (Outcome.PASS, Outcome.FAIL, Outcome.ERROR, Outcome.SKIP)


@dataclass
class FlakinessVerdict:
    """Flakiness score and likely root cause of one test."""

    test_name: str
    flakiness_score: float  # 1 - (max outcome count / runs)
    category: FlakinessCategory
    runs: int = 0
    outcome_counts: dict[str, int] = field(default_factory=dict)
    failure_rate: float = 0.0  # FAIL+ERROR runs / runs
    matched_categories: list[FlakinessCategory] = field(default_factory=list)
    signatures: list[str] = field(default_factory=list)

    @property
    def is_flaky(self) -> bool:
        return self.flakiness_score > 0.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "test_name": self.test_name,
            "flakiness_score": round(self.flakiness_score, 6),
            "category": self.category.value,
            "runs": self.runs,
            "outcome_counts": dict(self.outcome_counts),
            "failure_rate": round(self.failure_rate, 6),
            "matched_categories": [c.value for c in self.matched_categories],
            "signatures": list(self.signatures),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlakinessVerdict:
        """Rebuild a verdict from :meth:`to_dict` output."""
        return cls(
            test_name=data["test_name"],
            flakiness_score=float(data["flakiness_score"]),
            category=FlakinessCategory(data["category"]),
            runs=int(data.get("runs", 0)),
            outcome_counts={
                k: int(v) for k, v in data.get("outcome_counts", {}).items()
            },
            failure_rate=float(data.get("failure_rate", 0.0)),
            matched_categories=[
                FlakinessCategory(c) for c in data.get("matched_categories", [])
            ],
            signatures=list(data.get("signatures", [])),
        )


@dataclass
class AggregationResult:
    """Verdicts for scored tests plus the tests that could not be scored."""

    verdicts: list[FlakinessVerdict] = field(default_factory=list)
    insufficient_data: list[str] = field(default_factory=list)

    @property
    def flaky(self) -> list[FlakinessVerdict]:
        return [v for v in self.verdicts if v.is_flaky]

    def by_category(self) -> dict[FlakinessCategory, list[FlakinessVerdict]]:
        """Group flaky verdicts by category, in category declaration order."""
        groups: dict[FlakinessCategory, list[FlakinessVerdict]] = {}
        for category in FlakinessCategory:
            members = [v for v in self.flaky if v.category == category]
            if members:
                groups[category] = members
        return groups


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def score_history(history: TestOutcomeHistory) -> float | str:
    """Compute the flakiness score of one history.

    Returns:
        ``1 - max_count / runs`` rounded to six places, or
        ``NOT_APPLICABLE`` when fewer than two runs observed the test.
    """
    if history.runs < MIN_RUNS:
        return NOT_APPLICABLE
    counts = Counter(history.outcomes)
    return round(1.0 - max(counts.values()) / history.runs, 6)


def _distinct(items: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


def build_verdict(
    history: TestOutcomeHistory,
    rules: tuple[CategoryRule, ...] = RULES,
) -> FlakinessVerdict | None:
    """Build the verdict of one history, or None if it cannot be scored."""
    score = score_history(history)
    if score == NOT_APPLICABLE:
        return None

    counts = Counter(history.outcomes)
    signatures = history.failing_signatures
    failing = sum(counts[o] for o in FAILING_OUTCOMES)
    return FlakinessVerdict(
        test_name=history.test_name,
        flakiness_score=float(score),
        category=classify(signatures, rules),
        runs=history.runs,
        outcome_counts={o.value: counts[o] for o in _OUTCOME_ORDER if counts[o]},
        failure_rate=round(failing / history.runs, 6),
        matched_categories=matching_categories(signatures, rules),
        signatures=_distinct(signatures),
    )


def aggregate(
    histories: dict[str, TestOutcomeHistory],
    rules: tuple[CategoryRule, ...] = RULES,
) -> AggregationResult:
    """Score and categorize every test history.

    Args:
        histories: Test name to cross-run history.
        rules: Category rule table, highest priority first.

    Returns:
        Verdicts sorted by score descending then test name ascending, and
        the sorted names of tests seen in fewer than two runs.
    """
    result = AggregationResult()
    for name, history in histories.items():
        verdict = build_verdict(history, rules)
        if verdict is None:
            result.insufficient_data.append(name)
        else:
            result.verdicts.append(verdict)

    result.verdicts.sort(key=lambda v: (-v.flakiness_score, v.test_name))
    result.insufficient_data.sort()
    return result


# ---------------------------------------------------------------------------
# Two-run comparison
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunDifference:
    """A test whose outcome differs between two runs."""

    test_name: str
    first: Outcome | None  # None when the test did not run
    second: Outcome | None


@dataclass
class RunComparison:
    """Per-test outcome differences between two runs."""

    first_run: str
    second_run: str
    differences: list[RunDifference] = field(default_factory=list)
    tests_compared: int = 0

    @property
    def identical(self) -> bool:
        return not self.differences


def _outcome_in(ingest: IngestResult, test_name: str) -> Outcome | None:
    for record in ingest.records:
        if same_test_name(record.test_name, test_name):
            return record.outcome
    class_name = class_of_test(test_name)
    summary = ingest.class_summary_for(class_name) if class_name else None
    if summary is None:
        return None
    return Outcome.SKIP if summary.all_skipped else Outcome.PASS


def compare_runs(first: IngestResult, second: IngestResult) -> RunComparison:
    """Compare per-test outcomes of two runs.

    Tests named in only one run are looked up in the other run's class
    summaries before being reported as absent.
    """
    names = _distinct(
        [r.test_name for r in first.records] + [r.test_name for r in second.records]
    )
    comparison = RunComparison(
        first_run=first.run_id,
        second_run=second.run_id,
        tests_compared=len(names),
    )
    for name in sorted(names):
        a = _outcome_in(first, name)
        b = _outcome_in(second, name)
        if a != b:
            comparison.differences.append(RunDifference(name, a, b))
    return comparison
