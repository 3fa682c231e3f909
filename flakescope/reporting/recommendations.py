"""Remediation advice derived from analysis findings.

Each finding kind maps to a fixed block of advice.  Blocks are emitted in
a stable order so the same inputs always give the same report.
"""

from __future__ import annotations

from dataclasses import dataclass

from flakescope.environment.metrics import EnvironmentCorrelation
from flakescope.experiments.correlation import CorrelationReport
from flakescope.flakiness.aggregator import AggregationResult
from flakescope.flakiness.categories import FlakinessCategory
from flakescope.threads.wait_for import ThreadDumpAnalysis

# Categories whose perturbed success rate is below this get advice
SUCCESS_THRESHOLD = 70.0


@dataclass(frozen=True)
class Recommendation:
    """A titled list of remediation steps."""

    title: str
    steps: tuple[str, ...]
    source: str  # "flakiness", "threads", "correlation" or "environment"

    def to_dict(self) -> dict[str, object]:
        return {"title": self.title, "steps": list(self.steps), "source": self.source}


FLAKINESS_ADVICE: dict[FlakinessCategory, tuple[str, tuple[str, ...]]] = {
    FlakinessCategory.THREAD_SAFETY: ("For Thread Safety Issues", (
        "**Use thread-safe collections**: Replace standard collections with concurrent versions",
        "**Add synchronization**: Add proper synchronization to shared resources",
        "**Avoid shared state**: Redesign tests to minimize shared state",
        "**Use atomics**: Replace primitive counters with atomic variables",
    )),
    FlakinessCategory.RESOURCE_CONTENTION: ("For Resource Contention", (
        "**Increase resource limits**: Configure larger connection pools or memory limits",
        "**Improve resource cleanup**: Ensure resources are properly closed after use",
        "**Implement better pooling**: Use connection pooling with appropriate sizing",
        "**Isolate tests**: Run resource-intensive tests in isolation",
    )),
    FlakinessCategory.TIMING: ("For Timing-Related Issues", (
        "**Avoid fixed wait times**: Replace `Thread.sleep()` with proper synchronization",
        "**Use wait conditions**: Implement explicit waiting with polling or conditions",
        "**Increase timeouts**: Consider increasing timeouts for asynchronous operations",
        "**Consider retry mechanisms**: Add retry logic for operations that may occasionally time out",
    )),
    FlakinessCategory.EXTERNAL_DEPENDENCY: ("For External Dependencies", (
        "**Mock external dependencies**: Use mocks or local fakes instead of real services",
        "**Add timeouts and retries**: Bound every remote call and retry transient failures",
    )),
    FlakinessCategory.ENVIRONMENT_DEPENDENCY: ("For Environment Dependencies", (
        "**Standardize environments**: Ensure consistent configuration across all environments",
        "**Explicitly set properties**: Don't rely on default or environment-specific settings",
        "**Mock external dependencies**: Use mocks instead of real external systems",
        "**Document requirements**: Clearly document required environment configurations",
    )),
    FlakinessCategory.ASSERTION_SENSITIVITY: ("For Assertion Sensitivity", (
        "**Relax exact comparisons**: Compare with tolerances or order-insensitive matchers",
        "**Control inputs**: Fix seeds, clocks and iteration order the assertion depends on",
    )),
}

NEXT_STEPS = (
    "Run a more detailed analysis on the identified flaky tests",
    "Implement fixes for the most frequently failing tests first",
    "Add monitoring to verify fixes are effective",
    "Set up continuous flaky test detection in your CI pipeline",
)

DEADLOCK_ADVICE = (
    "**Review lock ordering**: Ensure consistent lock acquisition order",
    "**Minimize lock scope**: Reduce the time locks are held",
)

CONTENTION_ADVICE = (
    "**Minimize lock scope**: Reduce the time locks are held",
    "**Implement proper waiting**: Use CountDownLatch or CompletableFuture instead of sleep",
)

# Keyed by experiment category name
CORRELATION_ADVICE: dict[str, tuple[str, tuple[str, ...]]] = {
    "cpu": ("CPU Management: Tests are sensitive to CPU constraints", (
        "Adding CPU resource guarantees in container environments",
        "Implementing adaptive thread counts based on available CPU",
        "Adding timeouts to prevent test hangs under CPU pressure",
    )),
    "memory": ("Memory Management: Tests show sensitivity to memory constraints", (
        "Adding memory limits to JVM to prevent OOM issues",
        "Implementing memory usage monitoring during tests",
        "Breaking down large tests into smaller units",
    )),
    "network": ("Network Resilience: Tests are affected by network issues", (
        "Implementing retry mechanisms for network operations",
        "Adding proper timeouts to network calls",
        "Creating fallback mechanisms for critical network dependencies",
    )),
    "thread": ("Thread Safety: Tests exhibit thread safety issues", (
        "Reviewing shared state in test fixtures",
        "Adding synchronization to shared resources",
        "Implementing test isolation patterns",
    )),
}

# Keyed by environment variable name
ENVIRONMENT_ADVICE: dict[str, tuple[str, tuple[str, ...]]] = {
    "TEST_ENV": ("Standardize Test Environment", (
        "Ensure tests run in a consistent environment",
    )),
    "MEMORY_LIMIT": ("Increase Memory Limits", (
        "Tests may require more memory to run reliably",
    )),
    "ASYNC_TIMEOUT": ("Adjust Timeouts", (
        "Increase timeouts for asynchronous operations",
    )),
    "MAX_CONNECTIONS": ("Increase Connection Limits", (
        "Tests may be hitting connection pool limits",
    )),
}


def for_flakiness(result: AggregationResult) -> list[Recommendation]:
    """Advice for each category that has at least one flaky test."""
    recommendations = []
    for category in result.by_category():
        advice = FLAKINESS_ADVICE.get(category)
        if advice is not None:
            title, steps = advice
            recommendations.append(Recommendation(title, steps, "flakiness"))
    if result.flaky:
        recommendations.append(Recommendation("Next Steps", NEXT_STEPS, "flakiness"))
    return recommendations


def for_threads(analysis: ThreadDumpAnalysis) -> list[Recommendation]:
    recommendations = []
    if analysis.has_deadlock:
        recommendations.append(Recommendation(
            f"Resolve {len(analysis.deadlocks)} deadlock cycle(s)",
            DEADLOCK_ADVICE,
            "threads",
        ))
    elif analysis.hubs:
        top = analysis.hubs[0]
        recommendations.append(Recommendation(
            f"Reduce contention on {top.lock} ({top.waiting_count} waiting)",
            CONTENTION_ADVICE,
            "threads",
        ))
    return recommendations


def for_correlation(report: CorrelationReport) -> list[Recommendation]:
    """Advice for known categories whose perturbed success rate is low.

    Categories without a numeric success rate are never flagged.
    """
    recommendations = []
    for impact in report.impacts:
        advice = CORRELATION_ADVICE.get(impact.category.lower())
        if advice is None or isinstance(impact.success_rate, str):
            continue
        if impact.success_rate < SUCCESS_THRESHOLD:
            title, steps = advice
            recommendations.append(Recommendation(title, steps, "correlation"))
    return recommendations


def for_environment(report: EnvironmentCorrelation) -> list[Recommendation]:
    """Advice for each known variable recorded in the metrics, in record order."""
    recommendations = []
    for variable in report.variables:
        advice = ENVIRONMENT_ADVICE.get(variable.name)
        if advice is not None:
            title, steps = advice
            recommendations.append(Recommendation(title, steps, "environment"))
    return recommendations


def recommend(
    flakiness: AggregationResult | None = None,
    threads: ThreadDumpAnalysis | None = None,
    correlation: CorrelationReport | None = None,
    environment: EnvironmentCorrelation | None = None,
) -> list[Recommendation]:
    """Collect advice for every available analysis, in section order."""
    recommendations: list[Recommendation] = []
    if flakiness is not None:
        recommendations.extend(for_flakiness(flakiness))
    if threads is not None:
        recommendations.extend(for_threads(threads))
    if correlation is not None:
        recommendations.extend(for_correlation(correlation))
    if environment is not None:
        recommendations.extend(for_environment(environment))
    return recommendations
