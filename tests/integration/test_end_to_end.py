"""End-to-end integration tests exercising the full pipeline.

Tests the complete flow from run logs, thread dump and experiment results
through ingestion, aggregation, wait-for analysis and correlation to the
written reports, both through the library and the command line.
"""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

import pytest
import yaml

from flakescope.experiments.correlation import correlate
from flakescope.experiments.matrix_csv import (
    read_matrix_csv,
    read_results_csv,
    write_matrix_csv,
    write_results_csv,
)
from flakescope.experiments.pairwise import ExecutionResult, build_matrix
from flakescope.flakiness.aggregator import aggregate
from flakescope.flakiness.categories import FlakinessCategory
from flakescope.ingestion.directory import build_histories, ingest_run_directory
from flakescope.main import main
from flakescope.reporting.reporter import Reporter
from flakescope.threads.dump import load_thread_dump
from flakescope.threads.wait_for import analyze_thread_dump


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _gradle_run(cache: str, order: str, cache_error: str = "", order_error: str = "") -> str:
    lines = [f"com.example.AppTest > testCache() {cache}"]
    if cache_error:
        lines.append(f"    {cache_error}")
        lines.append("")
    lines.append(f"com.example.AppTest > testOrder() {order}")
    if order_error:
        lines.append(f"    {order_error}")
        lines.append("")
    lines.append("com.example.AppTest > testStable() PASSED")
    return "\n".join(lines) + "\n"


SUMMARY_ONLY_RUN = (
    "[INFO] Running com.example.AppTest\n"
    "[INFO] Tests run: 3, Failures: 0, Errors: 0, Skipped: 0, "
    "Time elapsed: 0.3 s - in com.example.AppTest\n"
    "[INFO] BUILD SUCCESS\n"
)


def _write_runs(root: Path) -> Path:
    """Four runs: testCache fails twice, testOrder once, testNew runs once."""
    runs = {
        "run1": _gradle_run(
            "FAILED", "PASSED",
            cache_error="java.util.ConcurrentModificationException at Cache.java:42",
        ),
        "run2": _gradle_run(
            "PASSED", "FAILED",
            order_error="org.awaitility.core.ConditionTimeoutException: Timed out after 30s",
        ),
        "run3": SUMMARY_ONLY_RUN,
        "run4": _gradle_run(
            "FAILED", "PASSED",
            cache_error="java.lang.AssertionError: expected:<3> but was:<2>",
        ) + "com.example.NewTest > testNew() PASSED\n",
    }
    directory = root / "runs"
    for name, text in runs.items():
        (directory / name).mkdir(parents=True)
        (directory / name / "test_output.log").write_text(text)
    return directory


def _write_dump(root: Path) -> Path:
    dump = {
        "timestamp": "2024-05-01T12:00:00Z",
        "threads": [
            {"id": 11, "name": "cache-writer", "state": "BLOCKED",
             "locks_held": ["0xA"], "locks_waiting": ["0xB"],
             "stack_trace": ["com.example.Cache.put(Cache.java:42)"]},
            {"id": 12, "name": "cache-evictor", "state": "BLOCKED",
             "locks_held": ["0xB"], "locks_waiting": ["0xC"]},
            {"id": 13, "name": "cache-reader", "state": "WAITING",
             "locks_held": ["0xC"], "locks_waiting": ["0xA"]},
            {"id": 14, "name": "pool-1", "state": "BLOCKED", "locks_waiting": ["0xA"]},
            {"id": 15, "name": "main", "state": "RUNNABLE"},
        ],
        "locks": [
            {"identity": "0xA", "owner_thread": 11, "waiting_threads": [13, 14]},
        ],
    }
    path = root / "dump.json"
    path.write_text(json.dumps(dump))
    return path


def _write_experiment(root: Path) -> tuple[Path, Path]:
    """Matrix over three categories; every row touching memory=low fails."""
    matrix = build_matrix(
        {"cpu": ["high"], "memory": ["low"], "network": ["latency", "loss"]},
        triples=[(("cpu", "high"), ("memory", "low"), ("network", "loss"))],
    )
    matrix_path = root / "matrix.csv"
    write_matrix_csv(matrix_path, matrix.category_names, matrix.configurations)

    results = []
    for config in matrix.configurations:
        if config.id == 2:
            continue  # never executed
        failed = ("memory", "low") in {(c, lvl.name) for c, lvl in config.active_levels}
        results.append(ExecutionResult(
            configuration_id=config.id,
            exit_status=1 if failed else 0,
            duration_seconds=float(config.id),
            extracted_notes="java.lang.OutOfMemoryError: Java heap space" if failed else "",
        ))
    results_path = root / "results.csv"
    write_results_csv(results_path, matrix.category_names, matrix.configurations, results)
    return matrix_path, results_path


# ---------------------------------------------------------------------------
# Library pipeline
# ---------------------------------------------------------------------------


class TestFlakinessPipeline:
    """Run logs through ingestion and aggregation."""

    def test_scores_and_categories(self):
        """Mixed dialects combine into one history per test."""
        with tempfile.TemporaryDirectory() as tmpdir:
            ingests = ingest_run_directory(_write_runs(Path(tmpdir)))
        result = aggregate(build_histories(ingests))

        by_name = {v.test_name: v for v in result.verdicts}
        cache = by_name["com.example.AppTest.testCache"]
        assert cache.runs == 4
        assert cache.flakiness_score == 0.5
        # The thread-safety signature wins over the assertion signature
        assert cache.category == FlakinessCategory.THREAD_SAFETY
        assert FlakinessCategory.ASSERTION_SENSITIVITY in cache.matched_categories

        order = by_name["com.example.AppTest.testOrder"]
        assert order.flakiness_score == 0.25
        assert order.category == FlakinessCategory.TIMING

        assert by_name["com.example.AppTest.testStable"].flakiness_score == 0.0
        assert result.insufficient_data == ["com.example.NewTest.testNew"]
        assert [v.test_name for v in result.verdicts][:2] == [
            "com.example.AppTest.testCache",
            "com.example.AppTest.testOrder",
        ]


class TestThreadPipeline:
    """Thread dump through the wait-for analysis."""

    def test_three_thread_deadlock(self):
        """A 3-cycle is found once and the contended lock tops the hubs."""
        with tempfile.TemporaryDirectory() as tmpdir:
            analysis = analyze_thread_dump(load_thread_dump(_write_dump(Path(tmpdir))))

        assert len(analysis.deadlocks) == 1
        cycle = analysis.deadlocks[0]
        assert cycle.threads == ("11", "12", "13", "11")
        assert cycle.length == 3
        assert analysis.hubs[0].lock == "0xA"
        assert analysis.hubs[0].waiting_count == 2
        assert "15" not in analysis.graph.nodes
        assert analysis.state_summary == {"BLOCKED": 3, "RUNNABLE": 1, "WAITING": 1}


class TestExperimentPipeline:
    """Matrix generation, result files and correlation."""

    def test_memory_identified(self):
        """The failing category stands out and unexecuted rows are noted."""
        with tempfile.TemporaryDirectory() as tmpdir:
            matrix_path, results_path = _write_experiment(Path(tmpdir))
            _, configurations, matrix_warnings = read_matrix_csv(matrix_path)
            table = read_results_csv(results_path)

        assert matrix_warnings == []
        report = correlate(configurations, table.results)
        memory = report.impact("memory")
        assert memory.success_rate == 0.0
        assert memory.most_common_failure == "low"
        assert report.impact("network").success_rate != 0.0
        assert report.failure_patterns[0].count == 1
        assert report.note_categories == {"RESOURCE_CONTENTION": report.failed}
        assert any("not executed: 2" in w for w in report.warnings)


class TestReportPipeline:
    """All stages feeding one report."""

    def _reporter(self, root: Path) -> Reporter:
        ingests = ingest_run_directory(_write_runs(root))
        matrix_path, results_path = _write_experiment(root)
        _, configurations, _ = read_matrix_csv(matrix_path)

        reporter = Reporter()
        reporter.set_runs([i.run_id for i in ingests])
        reporter.set_flakiness(aggregate(build_histories(ingests)))
        reporter.set_thread_analysis(analyze_thread_dump(load_thread_dump(_write_dump(root))))
        reporter.set_correlation(correlate(configurations, read_results_csv(results_path).results))
        return reporter

    def test_every_format_has_required_sections(self):
        """Flakiness, thread and recommendation sections are always present."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            reporter = self._reporter(root)
            reporter.write_markdown(root / "report.md")
            reporter.write_json(root / "report.json")
            reporter.write_yaml(root / "report.yaml")

            markdown = (root / "report.md").read_text()
            from_json = json.loads((root / "report.json").read_text())
            from_yaml = yaml.safe_load((root / "report.yaml").read_text())

        assert "## Flakiness Summary" in markdown
        assert "## Thread Contention" in markdown
        assert "## Recommendations" in markdown
        assert "For Thread Safety Issues" in markdown
        assert "Resolve 1 deadlock cycle(s)" in markdown
        assert "Memory Management" in markdown
        assert from_json == from_yaml
        assert from_json["report"]["summary"]["deadlocks"] == 1

    def test_reports_are_reproducible(self):
        """The same inputs write byte-identical reports."""
        outputs = []
        for _ in range(2):
            with tempfile.TemporaryDirectory() as tmpdir:
                reporter = self._reporter(Path(tmpdir))
                outputs.append(
                    tuple(reporter.render(fmt) for fmt in ("markdown", "json", "yaml"))
                )
        assert outputs[0] == outputs[1]


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------


class TestCommandLine:
    """The same flow driven through main()."""

    def test_matrix_then_analyze(self, capsys):
        """Generate a matrix, then analyze with every optional input."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            runs = _write_runs(root)
            dump = _write_dump(root)
            _, results = _write_experiment(root)
            categories = root / "categories.yaml"
            categories.write_text("cpu: [high]\nmemory: [low]\nnetwork: [latency, loss]\n")
            config = root / "flakescope.yaml"
            config.write_text("triples:\n  - [[cpu, high], [memory, low], [network, loss]]\n")

            assert main([
                "matrix", "--output", str(root / "matrix.csv"),
                "--categories", str(categories), "--config", str(config),
            ]) == 0
            assert main([
                "analyze", "--runs", str(runs), "--thread-dump", str(dump),
                "--results", str(results), "--matrix", str(root / "matrix.csv"),
                "--output", str(root / "out" / "report.json"), "--format", "json",
            ]) == 0
            report = json.loads((root / "out" / "report.json").read_text())["report"]

        assert report["summary"]["runs"] == 4
        assert report["summary"]["flaky_tests"] == 2
        assert report["thread_analysis"]["deadlocks"][0]["threads"] == ["11", "12", "13", "11"]
        assert report["correlation"]["total"] == 6
        assert any("not executed: 2" in w for w in report["warnings"])
        assert "Warning:" in capsys.readouterr().err

    def test_broken_dump_keeps_other_sections(self, capsys):
        """A corrupt dump only drops its own section; metrics still report."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            runs = _write_runs(root)
            dump = root / "dump.json"
            dump.write_text('{"timestamp": "2024-05-01"}')
            metrics = root / "metrics.json"
            metrics.write_text(json.dumps({"runs": [
                {"id": "run1", "success": False, "environment": {"MEMORY_LIMIT": "512m"},
                 "metrics": {"memory_usage": 1900}},
                {"id": "run3", "success": True, "environment": {"MEMORY_LIMIT": "2g"},
                 "metrics": {"memory_usage": 700}},
            ]}))
            assert main([
                "analyze", "--runs", str(runs), "--thread-dump", str(dump),
                "--metrics", str(metrics), "--format", "yaml",
            ]) == 0
        report = yaml.safe_load(capsys.readouterr().out)["report"]

        assert report["summary"]["flaky_tests"] == 2
        assert report["thread_analysis"] is None
        assert any("no 'threads' array" in w for w in report["warnings"])
        assert report["environment"]["metrics"][0]["difference"] == 1200.0
        assert "Increase Memory Limits" in [r["title"] for r in report["recommendations"]]

    def test_empty_run_directory_fails(self, capsys):
        """No run data is a fatal error with a clear message."""
        with tempfile.TemporaryDirectory() as tmpdir:
            assert main(["analyze", "--runs", tmpdir]) == 1
        assert "No test run data found" in capsys.readouterr().err

    @pytest.mark.parametrize("fmt", ["markdown", "json", "yaml"])
    def test_thread_dump_optional(self, capsys, fmt):
        """Without a dump the thread section says so in every format."""
        with tempfile.TemporaryDirectory() as tmpdir:
            runs = _write_runs(Path(tmpdir))
            assert main(["analyze", "--runs", str(runs), "--format", fmt]) == 0
        out = capsys.readouterr().out
        if fmt == "markdown":
            assert "No thread dump available" in out
        elif fmt == "json":
            assert json.loads(out)["report"]["thread_analysis"] is None
        else:
            assert yaml.safe_load(out)["report"]["thread_analysis"] is None
