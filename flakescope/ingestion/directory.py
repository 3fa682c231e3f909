"""Run directory ingestion and cross-run history assembly."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from flakescope.errors import EmptyInputError, MissingInputError
from flakescope.ingestion.run_log import (
    IngestResult,
    Outcome,
    RunRecord,
    class_of_test,
    parse_run_log,
    same_test_name,
)

# Preferred log file name inside a run sub-directory
RUN_LOG_NAME = "test_output.log"

NO_DATA_MESSAGE = "No test run data found"


@dataclass
class TestOutcomeHistory:
    """All observations of one test, in run order."""

    test_name: str
    records: list[RunRecord] = field(default_factory=list)

    @property
    def runs(self) -> int:
        return len(self.records)

    @property
    def outcomes(self) -> list[Outcome]:
        return [r.outcome for r in self.records]

    @property
    def failing_signatures(self) -> list[str]:
        """Non-empty signatures of FAIL/ERROR runs, in run order."""
        return [
            r.error_signature
            for r in self.records
            if r.outcome in (Outcome.FAIL, Outcome.ERROR) and r.error_signature
        ]


def natural_key(path: Path) -> list[str | int]:
    """Sort key comparing digit runs numerically, so run2 precedes run10."""
    # re.split with a group alternates text and digits, starting with text
    parts = re.split(r"(\d+)", path.name)
    return [int(part) if i % 2 else part for i, part in enumerate(parts)]


def find_run_logs(directory: Path) -> list[tuple[str, Path]]:
    """Locate one log file per run inside *directory*.

    ``run*`` sub-directories are runs, in natural order (``run2`` before
    ``run10``); each contributes its ``test_output.log`` or else its first
    ``*.log``.  Without such sub-directories every ``*.log`` directly in
    *directory* is one run, in the same order.

    Returns:
        ``(run_id, log_path)`` pairs in run order.
    """
    run_dirs = sorted(
        (p for p in directory.iterdir() if p.is_dir() and p.name.startswith("run")),
        key=natural_key,
    )
    logs: list[tuple[str, Path]] = []
    if run_dirs:
        for run_dir in run_dirs:
            preferred = run_dir / RUN_LOG_NAME
            if preferred.is_file():
                logs.append((run_dir.name, preferred))
                continue
            candidates = sorted(
                (p for p in run_dir.glob("*.log") if p.is_file()), key=natural_key,
            )
            if candidates:
                logs.append((run_dir.name, candidates[0]))
        return logs

    for log_path in sorted(
        (p for p in directory.glob("*.log") if p.is_file()), key=natural_key,
    ):
        logs.append((log_path.stem, log_path))
    return logs


def ingest_run_directory(path: str | Path) -> list[IngestResult]:
    """Parse every run log in a run directory.

    Args:
        path: Directory holding the run logs.

    Returns:
        One IngestResult per run log, in run order.  Empty logs appear as
        results without records carrying a warning.

    Raises:
        MissingInputError: If the directory does not exist.
        EmptyInputError: If no log yields any test record.
    """
    directory = Path(path)
    if not directory.is_dir():
        raise MissingInputError(directory, "expected a directory of run logs")

    logs = find_run_logs(directory)
    if not logs:
        raise EmptyInputError(
            directory, f"{NO_DATA_MESSAGE} in {directory}: no *.log files",
        )

    results: list[IngestResult] = []
    for run_id, log_path in logs:
        text = log_path.read_text(encoding="utf-8", errors="replace")
        if not text.strip():
            results.append(IngestResult(
                run_id=run_id,
                warnings=[f"{log_path}: log is empty, run skipped"],
            ))
            continue
        results.append(parse_run_log(text, run_id))

    if not any(r.has_data for r in results):
        raise EmptyInputError(
            directory,
            f"{NO_DATA_MESSAGE} in {directory}: "
            f"{len(logs)} log(s) contained no test results",
        )
    return results


def _canonical_name(name: str, known: dict[str, TestOutcomeHistory]) -> str:
    if name in known:
        return name
    for existing in known:
        if same_test_name(existing, name):
            return existing
    return name


def build_histories(ingests: list[IngestResult]) -> dict[str, TestOutcomeHistory]:
    """Assemble per-test histories across runs.

    A test named explicitly in one run but silent in another run where its
    class did run is inferred to have passed there, or to have been skipped
    when that class skipped every test.  Runs where the class never ran
    contribute nothing.

    Args:
        ingests: Parsed runs in run order.

    Returns:
        Test name to history, in order of first appearance.
    """
    explicit: list[dict[str, RunRecord]] = []
    histories: dict[str, TestOutcomeHistory] = {}

    for ingest in ingests:
        by_name: dict[str, RunRecord] = {}
        for record in ingest.records:
            name = _canonical_name(record.test_name, histories)
            if name not in histories:
                histories[name] = TestOutcomeHistory(test_name=name)
            by_name[name] = record
        explicit.append(by_name)

    for name, history in histories.items():
        class_name = class_of_test(name)
        for ingest, by_name in zip(ingests, explicit):
            record = by_name.get(name)
            if record is not None:
                if record.test_name != name:
                    record = RunRecord(
                        run_id=record.run_id,
                        test_name=name,
                        outcome=record.outcome,
                        duration_ms=record.duration_ms,
                        error_signature=record.error_signature,
                        inferred=record.inferred,
                    )
                history.records.append(record)
                continue
            if not class_name:
                continue
            summary = ingest.class_summary_for(class_name)
            if summary is None:
                continue
            history.records.append(RunRecord(
                run_id=ingest.run_id,
                test_name=name,
                outcome=Outcome.SKIP if summary.all_skipped else Outcome.PASS,
                inferred=True,
            ))

    return histories
