"""Markdown rendering of a generated report.

Renders from the plain report dict produced by ``Reporter.generate_report()``,
the same data the JSON and YAML reports serialize.
"""

from __future__ import annotations

from typing import Any

NO_THREAD_DUMP = "No thread dump available"
NO_RESULTS = "No experiment results available"
NO_METRICS = "No system metrics available"


def _cell(value: Any) -> str:
    """Make a value safe to place in a table cell."""
    if value is None:
        return "-"
    return str(value).replace("|", "\\|").replace("\n", " ")


def _percent(value: Any) -> str:
    return f"{value}%" if isinstance(value, (int, float)) else str(value)


def _seconds(value: Any) -> str:
    return f"{value}s" if isinstance(value, (int, float)) else str(value)


def _table(headers: list[str], rows: list[list[Any]]) -> list[str]:
    lines = [
        "| " + " | ".join(headers) + " |",
        "|" + "|".join("---" for _ in headers) + "|",
    ]
    for row in rows:
        lines.append("| " + " | ".join(_cell(v) for v in row) + " |")
    lines.append("")
    return lines


def generate_markdown_report(report_data: dict[str, Any]) -> str:
    """Generate a Markdown report from report data.

    Args:
        report_data: Report dict (as produced by Reporter.generate_report()).
                     Expected structure: {"report": {...}}.

    Returns:
        Complete Markdown document.
    """
    report = report_data.get("report", {})
    parts: list[str] = ["# Flaky Test Analysis Report", ""]

    parts.extend(_render_summary(report.get("summary", {}), report.get("runs", [])))
    parts.extend(_render_flakiness(report.get("flakiness") or {}))
    if report.get("comparison"):
        parts.extend(_render_comparison(report["comparison"]))
    parts.extend(_render_threads(report.get("thread_analysis")))
    parts.extend(_render_correlation(report.get("correlation")))
    parts.extend(_render_environment(report.get("environment")))
    parts.extend(_render_recommendations(report.get("recommendations", [])))

    warnings = report.get("warnings", [])
    if warnings:
        parts.append("## Warnings")
        parts.append("")
        parts.extend(f"* {w}" for w in warnings)
        parts.append("")

    return "\n".join(parts).rstrip("\n") + "\n"


def generate_correlation_markdown(
    correlation: dict[str, Any], recommendations: list[dict[str, Any]],
) -> str:
    """Generate a Markdown document for an experiment correlation alone."""
    parts = ["# Experiment Correlation Report", ""]
    parts.extend(_render_correlation(correlation))
    parts.extend(_render_recommendations(recommendations))
    return "\n".join(parts).rstrip("\n") + "\n"


def _render_summary(summary: dict[str, Any], runs: list[str]) -> list[str]:
    lines = ["## Summary", ""]
    lines.append(f"* Runs analyzed: {summary.get('runs', len(runs))}")
    lines.append(f"* Tests scored: {summary.get('tests_scored', 0)}")
    lines.append(f"* Flaky tests: {summary.get('flaky_tests', 0)}")
    lines.append(f"* Tests with insufficient data: {summary.get('insufficient_data', 0)}")
    if "deadlocks" in summary:
        lines.append(f"* Threads: {summary['threads']}, deadlock cycles: {summary['deadlocks']}")
    if "configurations_executed" in summary:
        lines.append(
            f"* Configurations executed: {summary['configurations_executed']}"
            f" (pass rate {_percent(summary['configuration_pass_rate'])})"
        )
    if "metrics_runs" in summary:
        lines.append(
            f"* Metrics runs: {summary['metrics_runs']}"
            f" ({summary['metrics_failed_runs']} failed)"
        )
    lines.append("")
    return lines


def _render_flakiness(flakiness: dict[str, Any]) -> list[str]:
    lines = ["## Flakiness Summary", ""]
    verdicts = flakiness.get("verdicts", [])
    if verdicts:
        lines.extend(_table(
            ["Test", "Flakiness Score", "Category", "Runs", "Failure Rate"],
            [
                [
                    v["test_name"],
                    f"{v['flakiness_score']:.2f}",
                    v["category"],
                    v["runs"],
                    f"{v['failure_rate'] * 100:.1f}%",
                ]
                for v in verdicts
            ],
        ))
    else:
        lines.append("No test was observed in two or more runs.")
        lines.append("")

    flaky = [v for v in verdicts if v["flakiness_score"] > 0]
    if verdicts and not flaky:
        lines.append("No flaky tests detected: every test had the same outcome in every run.")
        lines.append("")
    for v in flaky:
        if not v.get("signatures"):
            continue
        lines.append(f"### {v['test_name']}")
        lines.append("")
        lines.extend(f"* `{s}`" for s in v["signatures"])
        lines.append("")

    insufficient = flakiness.get("insufficient_data", [])
    if insufficient:
        lines.append("### Insufficient Data")
        lines.append("")
        lines.append("Observed in fewer than two runs:")
        lines.append("")
        lines.extend(f"* {name}" for name in insufficient)
        lines.append("")
    return lines


def _render_comparison(comparison: dict[str, Any]) -> list[str]:
    lines = [
        "## Run Comparison",
        "",
        f"Comparing {comparison['first_run']} with {comparison['second_run']}"
        f" ({comparison['tests_compared']} tests).",
        "",
    ]
    differences = comparison.get("differences", [])
    if not differences:
        lines.append("Both runs produced identical outcomes.")
        lines.append("")
        return lines
    lines.extend(_table(
        ["Test", comparison["first_run"], comparison["second_run"]],
        [
            [d["test_name"], d["first"] or "not run", d["second"] or "not run"]
            for d in differences
        ],
    ))
    return lines


def _render_threads(analysis: dict[str, Any] | None) -> list[str]:
    lines = ["## Thread Contention", ""]
    if analysis is None:
        lines.append(NO_THREAD_DUMP)
        lines.append("")
        return lines

    lines.append(f"Threads in dump: {analysis['thread_count']}")
    lines.append("")
    states = analysis.get("state_summary", {})
    if states:
        lines.extend(_table(["State", "Threads"], [[s, n] for s, n in states.items()]))

    deadlocks = analysis.get("deadlocks", [])
    lines.append("### Deadlocks")
    lines.append("")
    if deadlocks:
        for cycle in deadlocks:
            threads = cycle["threads"]
            locks = cycle["locks"]
            steps = [
                f"{threads[i]} waits for {locks[i]} held by {threads[i + 1]}"
                for i in range(len(locks))
            ]
            lines.append(f"* {' -> '.join(threads)}: {'; '.join(steps)}")
        if analysis.get("truncated"):
            lines.append("* (cycle list truncated)")
    else:
        lines.append("No deadlock detected.")
    lines.append("")

    hubs = analysis.get("contention_hubs", [])
    if hubs:
        lines.append("### Contention Hubs")
        lines.append("")
        lines.extend(_table(
            ["Lock", "Waiting Threads", "Held By"],
            [[h["lock"], h["waiting_count"], ", ".join(h["holders"]) or "-"] for h in hubs],
        ))

    blocked = analysis.get("blocked_threads", [])
    if blocked:
        lines.append(f"Blocked threads: {', '.join(blocked)}")
        lines.append("")

    diagram = analysis.get("diagram")
    if diagram:
        lines.append("### Wait-For Graph")
        lines.append("")
        lines.append("```mermaid")
        lines.append(diagram.rstrip("\n"))
        lines.append("```")
        lines.append("")
    return lines


def _render_correlation(correlation: dict[str, Any] | None) -> list[str]:
    lines = ["## Environment Correlation", ""]
    if correlation is None:
        lines.append(NO_RESULTS)
        lines.append("")
        return lines

    lines.append(
        f"Executed configurations: {correlation['total']}"
        f" ({correlation['passed']} passed, {correlation['failed']} failed,"
        f" pass rate {_percent(correlation['pass_rate'])})"
    )
    lines.append("")

    categories = correlation.get("categories", [])
    if categories:
        lines.append("### Impact by Category")
        lines.append("")
        lines.extend(_table(
            ["Category", "Runs", "Success Rate", "Avg Duration", "Most Common Failure"],
            [
                [
                    c["category"],
                    c["runs"],
                    _percent(c["success_rate"]),
                    _seconds(c["avg_duration"]),
                    c["most_common_failure"] or "none",
                ]
                for c in categories
            ],
        ))

    slowest = correlation.get("slowest", [])
    if slowest:
        lines.append("### Slowest Configurations")
        lines.append("")
        lines.extend(_table(
            ["ID", "Duration", "Status", "Configuration"],
            [[s["id"], _seconds(s["duration_seconds"]), s["status"], s["configuration"]]
             for s in slowest],
        ))

    patterns = correlation.get("failure_patterns", [])
    if patterns:
        lines.append("### Most Common Failure Patterns")
        lines.append("")
        lines.extend(_table(
            ["Pattern", "Failures"], [[p["pattern"], p["count"]] for p in patterns],
        ))

    notes = correlation.get("note_categories", {})
    if notes:
        lines.append("### Failure Note Categories")
        lines.append("")
        lines.extend(_table(["Category", "Failures"], [[k, v] for k, v in notes.items()]))
    return lines


def _render_environment(environment: dict[str, Any] | None) -> list[str]:
    lines = ["## Environment Metrics", ""]
    if environment is None:
        lines.append(NO_METRICS)
        lines.append("")
        return lines

    lines.append(
        f"Runs: {environment['total']} ({environment['failed']} failed,"
        f" success rate {_percent(environment['success_rate'])})"
    )
    lines.append("")

    variables = environment.get("variables", [])
    if variables:
        lines.append("### Environment Variables")
        lines.append("")
        lines.extend(_table(
            ["Variable", "Failed Runs", "Successful Runs", "Correlation Score"],
            [
                [
                    v["name"],
                    ", ".join(v["failed_values"]) or "-",
                    ", ".join(v["passed_values"]) or "-",
                    _percent(v["score"]),
                ]
                for v in variables
            ],
        ))

    metrics = environment.get("metrics", [])
    if metrics:
        lines.append("### Resource Usage")
        lines.append("")
        lines.extend(_table(
            ["Metric", "Average in Failed Runs", "Average in Successful Runs", "Difference"],
            [
                [m["metric"], m["failed_average"], m["passed_average"], m["difference"]]
                for m in metrics
            ],
        ))
    return lines


def _render_recommendations(recommendations: list[dict[str, Any]]) -> list[str]:
    lines = ["## Recommendations", ""]
    if not recommendations:
        lines.append("No recommendations: the analysis found nothing to act on.")
        lines.append("")
        return lines
    for rec in recommendations:
        lines.append(f"### {rec['title']}")
        lines.append("")
        lines.extend(f"{i}. {step}" for i, step in enumerate(rec["steps"], start=1))
        lines.append("")
    return lines
