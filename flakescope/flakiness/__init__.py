"""Flakiness scoring and root-cause categorization."""

from flakescope.flakiness.aggregator import (
    NOT_APPLICABLE,
    AggregationResult,
    FlakinessVerdict,
    RunComparison,
    aggregate,
    compare_runs,
    score_history,
)
from flakescope.flakiness.categories import RULES, FlakinessCategory, classify

__all__ = [
    "NOT_APPLICABLE",
    "RULES",
    "AggregationResult",
    "FlakinessCategory",
    "FlakinessVerdict",
    "RunComparison",
    "aggregate",
    "classify",
    "compare_runs",
    "score_history",
]
