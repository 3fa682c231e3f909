"""flakescope entry point.

Provides analyze, threads, matrix, and correlate subcommands for finding
the root causes of flaky tests from run logs, thread dumps and
environment perturbation experiments.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import yaml

from flakescope.config import AnalyzerConfig, load_category_table
from flakescope.environment.metrics import correlate_environment, load_system_metrics
from flakescope.errors import AnalysisError
from flakescope.experiments.correlation import correlate
from flakescope.experiments.matrix_csv import (
    read_matrix_csv,
    read_results_csv,
    write_matrix_csv,
)
from flakescope.experiments.pairwise import build_matrix
from flakescope.experiments.perturbations import build_plan
from flakescope.flakiness.aggregator import aggregate, compare_runs
from flakescope.ingestion.directory import build_histories, ingest_run_directory
from flakescope.reporting.markdown import generate_correlation_markdown
from flakescope.reporting.recommendations import for_correlation
from flakescope.reporting.reporter import REPORT_FORMATS, Reporter, write_text
from flakescope.threads.diagram import render_mermaid
from flakescope.threads.dump import load_thread_dump
from flakescope.threads.wait_for import analyze_thread_dump


def _positive_int(value: str) -> int:
    """argparse type for options that must be a positive integer."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value}")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Root-cause analysis for flaky tests"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # analyze subcommand
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Analyze repeated test runs and write a full report",
    )
    analyze_parser.add_argument(
        "--runs",
        type=Path,
        required=True,
        help="Directory holding one log per test run",
    )
    analyze_parser.add_argument(
        "--thread-dump",
        type=Path,
        default=None,
        help="Thread dump JSON captured during a failing run",
    )
    analyze_parser.add_argument(
        "--results",
        type=Path,
        default=None,
        help="Results CSV of an environment perturbation experiment",
    )
    analyze_parser.add_argument(
        "--matrix",
        type=Path,
        default=None,
        help="Matrix CSV the results were produced from (detects unexecuted rows)",
    )
    analyze_parser.add_argument(
        "--metrics",
        type=Path,
        default=None,
        help="System metrics JSON of repeated runs (environment and resource usage)",
    )
    analyze_parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Report file to write (default: print to stdout)",
    )
    analyze_parser.add_argument(
        "--format",
        choices=REPORT_FORMATS,
        default=None,
        help="Report format (default: from config, else markdown)",
    )
    analyze_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Analyzer configuration file (YAML or JSON)",
    )

    # threads subcommand
    threads_parser = subparsers.add_parser(
        "threads",
        help="Analyze a thread dump for deadlocks and lock contention",
    )
    threads_parser.add_argument(
        "dump",
        type=Path,
        help="Thread dump JSON file",
    )
    threads_parser.add_argument(
        "--max-cycles",
        type=_positive_int,
        default=None,
        help="Stop after this many deadlock cycles (default: from config, else 1000)",
    )
    threads_parser.add_argument(
        "--diagram",
        action="store_true",
        help="Print the wait-for graph as a Mermaid diagram",
    )
    threads_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the analysis as JSON",
    )
    threads_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Analyzer configuration file (YAML or JSON)",
    )

    # matrix subcommand
    matrix_parser = subparsers.add_parser(
        "matrix",
        help="Generate the pairwise environment perturbation matrix",
    )
    matrix_parser.add_argument(
        "--output",
        type=Path,
        required=True,
        help="Matrix CSV to write",
    )
    matrix_parser.add_argument(
        "--categories",
        type=Path,
        default=None,
        help="Category table file (default: from config, else built-in table)",
    )
    matrix_parser.add_argument(
        "--plan",
        type=Path,
        default=None,
        help="Also write the perturbation settings of every row as JSON",
    )
    matrix_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Analyzer configuration file (YAML or JSON)",
    )

    # correlate subcommand
    correlate_parser = subparsers.add_parser(
        "correlate",
        help="Correlate experiment results with their perturbations",
    )
    correlate_parser.add_argument(
        "--results",
        type=Path,
        required=True,
        help="Results CSV to analyze",
    )
    correlate_parser.add_argument(
        "--matrix",
        type=Path,
        default=None,
        help="Matrix CSV the results were produced from (detects unexecuted rows)",
    )
    correlate_parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Report file to write (default: print to stdout)",
    )
    correlate_parser.add_argument(
        "--format",
        choices=REPORT_FORMATS,
        default=None,
        help="Report format (default: from config, else markdown)",
    )
    correlate_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Analyzer configuration file (YAML or JSON)",
    )

    return parser.parse_args(argv)


def _print_warnings(warnings: list[str]) -> None:
    for warning in warnings:
        print(f"Warning: {warning}", file=sys.stderr)


def _emit(content: str, output: Path | None) -> None:
    """Write content to the output file, or to stdout if none was given."""
    if output is None:
        sys.stdout.write(content)
    else:
        write_text(output, content)
        print(f"Report written to {output}", file=sys.stderr)


def _correlate_results(
    results_path: Path,
    matrix_path: Path | None,
    config: AnalyzerConfig,
):
    """Load a results CSV (and optionally its matrix) and correlate them.

    Returns:
        Tuple of (CorrelationReport, warnings).
    """
    table = read_results_csv(results_path)
    warnings = list(table.warnings)
    configurations = table.configurations
    if matrix_path is not None:
        _, configurations, matrix_warnings = read_matrix_csv(matrix_path)
        warnings.extend(matrix_warnings)
    report = correlate(configurations, table.results, top_n=config.top_n)
    warnings.extend(report.warnings)
    return report, warnings


def cmd_analyze(args: argparse.Namespace) -> int:
    """Handle analyze subcommand.

    Ingests every run log, scores flakiness, and adds the thread dump,
    experiment and metrics sections when their inputs are given.  Only the
    run directory is required: an optional input that cannot be analyzed
    becomes a warning and its section reports that nothing is available.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    config = AnalyzerConfig(args.config)
    reporter = Reporter()

    try:
        ingests = ingest_run_directory(args.runs)
        reporter.set_runs([i.run_id for i in ingests])
        for ingest in ingests:
            reporter.add_warnings([f"{ingest.run_id}: {w}" for w in ingest.warnings])

        aggregation = aggregate(build_histories(ingests))
        reporter.set_flakiness(aggregation)
        print(
            f"Analyzed {len(ingests)} runs: {len(aggregation.flaky)} flaky of "
            f"{len(aggregation.verdicts)} scored tests",
            file=sys.stderr,
        )
        if len(ingests) == 2:
            reporter.set_comparison(compare_runs(ingests[0], ingests[1]))

        if args.thread_dump is not None:
            try:
                analysis = analyze_thread_dump(
                    load_thread_dump(args.thread_dump), max_cycles=config.max_cycles,
                )
            except AnalysisError as e:
                reporter.add_warnings([f"thread dump not analyzed: {e}"])
            else:
                reporter.set_thread_analysis(analysis)
                reporter.add_warnings(analysis.warnings)

        if args.results is not None:
            try:
                correlation, warnings = _correlate_results(args.results, args.matrix, config)
            except AnalysisError as e:
                reporter.add_warnings([f"experiment results not analyzed: {e}"])
            else:
                reporter.set_correlation(correlation)
                reporter.add_warnings(warnings)

        if args.metrics is not None:
            try:
                environment = correlate_environment(load_system_metrics(args.metrics))
            except AnalysisError as e:
                reporter.add_warnings([f"system metrics not analyzed: {e}"])
            else:
                reporter.set_environment(environment)
                reporter.add_warnings(environment.warnings)

        fmt = args.format or config.report_format
        reporter.add_warnings(config.warnings)
        _print_warnings(reporter.warnings)
        _emit(reporter.render(fmt), args.output)
    except AnalysisError as e:
        _print_warnings(config.warnings)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


def cmd_threads(args: argparse.Namespace) -> int:
    """Handle threads subcommand.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    config = AnalyzerConfig(args.config)
    max_cycles = args.max_cycles if args.max_cycles is not None else config.max_cycles
    try:
        analysis = analyze_thread_dump(load_thread_dump(args.dump), max_cycles=max_cycles)
    except AnalysisError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _print_warnings(config.warnings + analysis.warnings)

    if args.json:
        print(json.dumps(analysis.to_dict(), indent=2))
        return 0
    if args.diagram:
        sys.stdout.write(render_mermaid(analysis))
        return 0

    print(f"Threads: {len(analysis.dump.threads)}")
    for state, count in analysis.state_summary.items():
        print(f"  {state:<15} {count}")

    if analysis.deadlocks:
        print(f"Deadlocks: {len(analysis.deadlocks)}")
        for cycle in analysis.deadlocks:
            print(f"  {' -> '.join(cycle.threads)}: {cycle.describe()}")
        if analysis.truncated:
            print(f"  (stopped after {max_cycles} cycles)")
    else:
        print("Deadlocks: none")

    if analysis.hubs:
        print("Contention hubs:")
        for hub in analysis.hubs:
            holders = ", ".join(hub.holders) or "-"
            print(f"  {hub.lock}: {hub.waiting_count} waiting, held by {holders}")

    return 0


def cmd_matrix(args: argparse.Namespace) -> int:
    """Handle matrix subcommand.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    config = AnalyzerConfig(args.config)
    warnings: list[str] = []
    try:
        if args.categories is not None:
            table = load_category_table(args.categories, warnings)
        else:
            table = config.categories
        matrix = build_matrix(table, config.triples)
        warnings.extend(config.warnings)
        warnings.extend(matrix.warnings)

        write_matrix_csv(args.output, matrix.category_names, matrix.configurations)
        print(
            f"Wrote {len(matrix.configurations)} configurations over "
            f"{len(matrix.categories)} categories to {args.output}"
        )

        if args.plan is not None:
            plan = build_plan(matrix.configurations)
            warnings.extend(plan["warnings"])
            write_text(args.plan, json.dumps(plan, indent=2) + "\n")
            print(f"Wrote perturbation plan to {args.plan}")
    except AnalysisError as e:
        _print_warnings(warnings)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _print_warnings(warnings)
    return 0


def cmd_correlate(args: argparse.Namespace) -> int:
    """Handle correlate subcommand.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    config = AnalyzerConfig(args.config)
    try:
        report, warnings = _correlate_results(args.results, args.matrix, config)
        fmt = args.format or config.report_format
        _print_warnings(config.warnings + warnings)

        recommendations = [r.to_dict() for r in for_correlation(report)]
        data = {"correlation": report.to_dict(), "recommendations": recommendations}
        if fmt == "json":
            content = json.dumps(data, indent=2) + "\n"
        elif fmt == "yaml":
            content = yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
        else:
            content = generate_correlation_markdown(data["correlation"], recommendations)
        _emit(content, args.output)
    except AnalysisError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return 1

    if args.command == "analyze":
        return cmd_analyze(args)
    elif args.command == "threads":
        return cmd_threads(args)
    elif args.command == "matrix":
        return cmd_matrix(args)
    elif args.command == "correlate":
        return cmd_correlate(args)
    else:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
