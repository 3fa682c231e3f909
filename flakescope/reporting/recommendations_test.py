"""Tests for recommendation selection."""

from __future__ import annotations

from flakescope.environment.metrics import correlate_environment, parse_system_metrics
from flakescope.experiments.correlation import correlate
from flakescope.experiments.pairwise import ExecutionResult, build_matrix
from flakescope.flakiness.aggregator import AggregationResult, FlakinessVerdict
from flakescope.flakiness.categories import FlakinessCategory
from flakescope.reporting.recommendations import (
    NEXT_STEPS,
    for_correlation,
    for_environment,
    for_flakiness,
    for_threads,
    recommend,
)
from flakescope.threads.dump import parse_thread_dump
from flakescope.threads.wait_for import analyze_thread_dump


def _verdict(name, score, category):
    return FlakinessVerdict(test_name=name, flakiness_score=score, category=category, runs=4)


class TestForFlakiness:
    """Tests for flakiness advice."""

    def test_one_block_per_flaky_category(self):
        """Each category with a flaky test gets its advice, then next steps."""
        result = AggregationResult(verdicts=[
            _verdict("a", 0.5, FlakinessCategory.TIMING),
            _verdict("b", 0.25, FlakinessCategory.THREAD_SAFETY),
            _verdict("c", 0.25, FlakinessCategory.TIMING),
        ])
        titles = [r.title for r in for_flakiness(result)]
        assert titles == [
            "For Thread Safety Issues",
            "For Timing-Related Issues",
            "Next Steps",
        ]

    def test_stable_tests_get_no_advice(self):
        """Zero-score verdicts are not flaky."""
        result = AggregationResult(verdicts=[_verdict("a", 0.0, FlakinessCategory.UNKNOWN)])
        assert for_flakiness(result) == []

    def test_unknown_category_gets_next_steps_only(self):
        """UNKNOWN has no dedicated advice."""
        result = AggregationResult(verdicts=[_verdict("a", 0.5, FlakinessCategory.UNKNOWN)])
        recs = for_flakiness(result)
        assert len(recs) == 1
        assert recs[0].steps == NEXT_STEPS


class TestForThreads:
    """Tests for thread-dump advice."""

    def test_deadlock_advice(self):
        """Deadlocks ask for consistent lock ordering."""
        dump = parse_thread_dump({"threads": [
            {"id": 1, "state": "BLOCKED", "locks_held": ["a"], "locks_waiting": ["b"]},
            {"id": 2, "state": "BLOCKED", "locks_held": ["b"], "locks_waiting": ["a"]},
        ]})
        recs = for_threads(analyze_thread_dump(dump))
        assert len(recs) == 1
        assert recs[0].title == "Resolve 1 deadlock cycle(s)"
        assert "lock ordering" in recs[0].steps[0]

    def test_contention_advice_names_top_hub(self):
        """Without deadlocks the busiest lock is named."""
        dump = parse_thread_dump({"threads": [
            {"id": 1, "state": "RUNNABLE", "locks_held": ["pool"]},
            {"id": 2, "state": "BLOCKED", "locks_waiting": ["pool"]},
            {"id": 3, "state": "BLOCKED", "locks_waiting": ["pool"]},
        ]})
        recs = for_threads(analyze_thread_dump(dump))
        assert recs[0].title == "Reduce contention on pool (2 waiting)"

    def test_quiet_dump(self):
        """A dump without locks has nothing to advise."""
        dump = parse_thread_dump({"threads": [{"id": 1, "state": "RUNNABLE"}]})
        assert for_threads(analyze_thread_dump(dump)) == []


class TestForCorrelation:
    """Tests for experiment advice."""

    def test_low_success_rate_flagged(self):
        """Known categories below the threshold get advice."""
        matrix = build_matrix({"cpu": ["high"], "network": ["loss"]}, triples=())
        results = [ExecutionResult(1, 0, 1.0), ExecutionResult(2, 1, 1.0)]
        recs = for_correlation(correlate(matrix.configurations, results))
        assert [r.title.split(":")[0] for r in recs] == ["CPU Management", "Network Resilience"]
        assert all(r.source == "correlation" for r in recs)

    def test_high_success_rate_not_flagged(self):
        """Passing perturbed runs need no advice."""
        matrix = build_matrix({"cpu": ["high"], "memory": ["low"]}, triples=())
        results = [ExecutionResult(2, 0, 1.0)]
        assert for_correlation(correlate(matrix.configurations, results)) == []

    def test_not_available_not_flagged(self):
        """Categories never perturbed have no rate to judge."""
        matrix = build_matrix({"cpu": ["high"], "memory": ["low"]}, triples=())
        results = [ExecutionResult(1, 1, 1.0)]
        assert for_correlation(correlate(matrix.configurations, results)) == []


class TestForEnvironment:
    """Tests for environment variable advice."""

    def test_known_variables_advised(self):
        """Each recorded known variable gets its advice in record order."""
        metrics = parse_system_metrics({"runs": [
            {"id": "a", "success": False,
             "environment": {"MAX_CONNECTIONS": "10", "LANG": "C", "TEST_ENV": "ci"}},
            {"id": "b", "success": True,
             "environment": {"MAX_CONNECTIONS": "50", "LANG": "C", "TEST_ENV": "ci"}},
        ]})
        recs = for_environment(correlate_environment(metrics))
        assert [r.title for r in recs] == [
            "Increase Connection Limits",
            "Standardize Test Environment",
        ]
        assert all(r.source == "environment" for r in recs)

    def test_unknown_variables_ignored(self):
        """Variables without advice produce nothing."""
        metrics = parse_system_metrics({"runs": [
            {"id": "a", "success": False, "environment": {"LANG": "C"}},
        ]})
        assert for_environment(correlate_environment(metrics)) == []


class TestRecommend:
    """Tests for the combined advice list."""

    def test_no_inputs(self):
        """Nothing analyzed means nothing recommended."""
        assert recommend() == []

    def test_section_order(self):
        """Flakiness advice comes before thread advice."""
        result = AggregationResult(verdicts=[_verdict("a", 0.5, FlakinessCategory.TIMING)])
        dump = parse_thread_dump({"threads": [
            {"id": 1, "locks_held": ["x"]},
            {"id": 2, "locks_waiting": ["x"]},
        ]})
        recs = recommend(result, analyze_thread_dump(dump))
        assert [r.source for r in recs] == ["flakiness", "flakiness", "threads"]

    def test_environment_advice_last(self):
        """Environment advice follows every other section."""
        result = AggregationResult(verdicts=[_verdict("a", 0.5, FlakinessCategory.TIMING)])
        metrics = parse_system_metrics({"runs": [
            {"id": "a", "success": False, "environment": {"ASYNC_TIMEOUT": "5"}},
        ]})
        recs = recommend(result, environment=correlate_environment(metrics))
        assert [r.source for r in recs] == ["flakiness", "flakiness", "environment"]
        assert recs[-1].title == "Adjust Timeouts"
