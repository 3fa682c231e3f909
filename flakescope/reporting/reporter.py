"""Report generation for flakiness analysis results.

Collects the outputs of the analysis stages and writes one report as
Markdown, JSON or YAML.  Sections whose input was not supplied are kept
as explicit ``null`` entries so every report has the same shape.

Reports carry no wall-clock timestamp: analyzing the same inputs twice
writes byte-identical files.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from flakescope.environment.metrics import EnvironmentCorrelation
from flakescope.errors import OutputPermissionError
from flakescope.experiments.correlation import CorrelationReport
from flakescope.flakiness.aggregator import AggregationResult, RunComparison
from flakescope.reporting.markdown import generate_markdown_report
from flakescope.reporting.recommendations import recommend
from flakescope.threads.diagram import render_mermaid
from flakescope.threads.wait_for import ThreadDumpAnalysis

REPORT_FORMATS = ("markdown", "json", "yaml")


class Reporter:
    """Collects analysis results and generates reports.

    Each stage's result is optional.  The flakiness summary is always
    rendered, empty when no aggregation was set.
    """

    def __init__(self) -> None:
        self.run_ids: list[str] = []
        self.flakiness: AggregationResult | None = None
        self.comparison: RunComparison | None = None
        self.thread_analysis: ThreadDumpAnalysis | None = None
        self.correlation: CorrelationReport | None = None
        self.environment: EnvironmentCorrelation | None = None
        self.warnings: list[str] = []

    def set_runs(self, run_ids: list[str]) -> None:
        """Set the ids of the ingested runs.

        Args:
            run_ids: Run ids in ingestion order.
        """
        self.run_ids = list(run_ids)

    def set_flakiness(self, result: AggregationResult) -> None:
        """Set the cross-run flakiness verdicts.

        Args:
            result: Output of ``aggregate()``.
        """
        self.flakiness = result

    def set_comparison(self, comparison: RunComparison) -> None:
        """Set the outcome differences between two runs."""
        self.comparison = comparison

    def set_thread_analysis(self, analysis: ThreadDumpAnalysis) -> None:
        """Set the wait-for analysis of a thread dump.

        Args:
            analysis: Output of ``analyze_thread_dump()``.
        """
        self.thread_analysis = analysis

    def set_correlation(self, report: CorrelationReport) -> None:
        """Set the correlation of experiment results.

        Args:
            report: Output of ``correlate()``.
        """
        self.correlation = report

    def set_environment(self, report: EnvironmentCorrelation) -> None:
        """Set the failed-versus-successful comparison of system metrics.

        Args:
            report: Output of ``correlate_environment()``.
        """
        self.environment = report

    def add_warnings(self, warnings: list[str]) -> None:
        """Add recovered anomalies to the report's warning list."""
        self.warnings.extend(warnings)

    def generate_report(self) -> dict[str, Any]:
        """Generate the report data structure.

        Returns:
            Dictionary representing the full report, suitable for JSON
            or YAML serialization.
        """
        flakiness = self.flakiness or AggregationResult()

        report: dict[str, Any] = {
            "summary": self._compute_summary(flakiness),
            "runs": list(self.run_ids),
            "flakiness": {
                "verdicts": [v.to_dict() for v in flakiness.verdicts],
                "insufficient_data": list(flakiness.insufficient_data),
            },
        }

        if self.comparison is not None:
            report["comparison"] = {
                "first_run": self.comparison.first_run,
                "second_run": self.comparison.second_run,
                "tests_compared": self.comparison.tests_compared,
                "differences": [
                    {
                        "test_name": d.test_name,
                        "first": d.first.value if d.first else None,
                        "second": d.second.value if d.second else None,
                    }
                    for d in self.comparison.differences
                ],
            }

        if self.thread_analysis is not None:
            thread_data = self.thread_analysis.to_dict()
            thread_data["diagram"] = render_mermaid(self.thread_analysis)
            report["thread_analysis"] = thread_data
        else:
            report["thread_analysis"] = None

        report["correlation"] = (
            self.correlation.to_dict() if self.correlation is not None else None
        )
        report["environment"] = (
            self.environment.to_dict() if self.environment is not None else None
        )

        report["recommendations"] = [
            r.to_dict()
            for r in recommend(
                self.flakiness, self.thread_analysis, self.correlation, self.environment,
            )
        ]
        report["warnings"] = list(self.warnings)

        return {"report": report}

    def _compute_summary(self, flakiness: AggregationResult) -> dict[str, Any]:
        """Compute headline counts for the report."""
        summary: dict[str, Any] = {
            "runs": len(self.run_ids),
            "tests_scored": len(flakiness.verdicts),
            "flaky_tests": len(flakiness.flaky),
            "insufficient_data": len(flakiness.insufficient_data),
        }
        if self.thread_analysis is not None:
            summary["threads"] = len(self.thread_analysis.dump.threads)
            summary["deadlocks"] = len(self.thread_analysis.deadlocks)
        if self.correlation is not None:
            summary["configurations_executed"] = self.correlation.total
            summary["configuration_pass_rate"] = self.correlation.pass_rate
        if self.environment is not None:
            summary["metrics_runs"] = self.environment.total
            summary["metrics_failed_runs"] = self.environment.failed
        return summary

    def render(self, fmt: str = "markdown") -> str:
        """Render the report in one of ``REPORT_FORMATS``."""
        report = self.generate_report()
        if fmt == "json":
            return json.dumps(report, indent=2) + "\n"
        if fmt == "yaml":
            return yaml.safe_dump(report, sort_keys=False, default_flow_style=False)
        if fmt == "markdown":
            return generate_markdown_report(report)
        raise ValueError(f"Unknown report format: {fmt}")

    def write_report(self, path: Path, fmt: str = "markdown") -> None:
        """Write the report to a file.

        Args:
            path: File path to write the report to.
            fmt: One of ``REPORT_FORMATS``.

        Raises:
            OutputPermissionError: If the file or its directory is not
                writable.
        """
        write_text(path, self.render(fmt))

    def write_json(self, path: Path) -> None:
        """Write the report as a JSON file."""
        self.write_report(path, "json")

    def write_yaml(self, path: Path) -> None:
        """Write the report as a YAML file."""
        self.write_report(path, "yaml")

    def write_markdown(self, path: Path) -> None:
        """Write the report as a Markdown file."""
        self.write_report(path, "markdown")


def write_text(path: Path, content: str) -> None:
    """Write a rendered report, mapping permission failures to OutputPermissionError."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(content)
    except PermissionError as e:
        raise OutputPermissionError(path, e.strerror or "") from e
