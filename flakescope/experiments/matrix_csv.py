"""Matrix and results CSV files.

The matrix CSV has a ``TestID`` column followed by one column per
category holding literal level names (``none`` for the baseline).  The
results CSV repeats those columns and appends ``Status``, ``Duration``
and ``Notes``.
"""

from __future__ import annotations

import csv
import re
from dataclasses import dataclass, field
from pathlib import Path

from flakescope.errors import (
    EmptyInputError,
    MalformedInputError,
    MissingInputError,
    OutputPermissionError,
)
from flakescope.experiments.pairwise import (
    Configuration,
    ExecutionResult,
    parse_level,
)

ID_COLUMN = "TestID"
RESULT_COLUMNS = ("Status", "Duration", "Notes")

# Log lines worth keeping as result notes
NOTE_PATTERN = re.compile(r"ERROR|WARNING|FAILURE|Exception")
MAX_NOTE_LINES = 3
NOTE_SEPARATOR = "; "


@dataclass
class ResultsTable:
    """Parsed results CSV: configurations, their results and parse notes."""

    categories: list[str] = field(default_factory=list)
    configurations: list[Configuration] = field(default_factory=list)
    results: list[ExecutionResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def extract_notes(log_text: str) -> str:
    """Pick the first few error-looking lines of an execution log."""
    notes = []
    for line in log_text.splitlines():
        if NOTE_PATTERN.search(line):
            notes.append(line.strip())
            if len(notes) >= MAX_NOTE_LINES:
                break
    return NOTE_SEPARATOR.join(notes)


def _format_duration(seconds: float) -> str:
    return f"{seconds:.3f}"


def _write_rows(path: str | Path, rows: list[list[object]]) -> None:
    try:
        with open(path, "w", newline="") as f:
            csv.writer(f, lineterminator="\n").writerows(rows)
    except PermissionError as e:
        raise OutputPermissionError(path, e.strerror or "") from e


def write_matrix_csv(
    path: str | Path,
    categories: list[str],
    configurations: list[Configuration],
) -> None:
    """Write the experiment matrix."""
    rows: list[list[object]] = [[ID_COLUMN, *categories]]
    for config in configurations:
        rows.append([config.id, *(config.level_of(c).name for c in categories)])
    _write_rows(path, rows)


def write_results_csv(
    path: str | Path,
    categories: list[str],
    configurations: list[Configuration],
    results: list[ExecutionResult],
) -> None:
    """Write executed results next to their configuration columns.

    Results whose configuration is unknown are not written.
    """
    by_id = {c.id: c for c in configurations}
    rows: list[list[object]] = [[ID_COLUMN, *categories, *RESULT_COLUMNS]]
    for result in results:
        config = by_id.get(result.configuration_id)
        if config is None:
            continue
        rows.append([
            config.id,
            *(config.level_of(c).name for c in categories),
            result.exit_status,
            _format_duration(result.duration_seconds),
            result.extracted_notes,
        ])
    _write_rows(path, rows)


def _read_rows(path: str | Path, kind: str) -> tuple[Path, list[list[str]]]:
    csv_path = Path(path)
    if not csv_path.is_file():
        raise MissingInputError(csv_path, f"expected a {kind} CSV file")
    with open(csv_path, newline="", encoding="utf-8", errors="replace") as f:
        rows = [row for row in csv.reader(f) if any(cell.strip() for cell in row)]
    if not rows:
        raise EmptyInputError(csv_path, f"{kind.capitalize()} CSV is empty: {csv_path}")
    header = [cell.strip() for cell in rows[0]]
    if not header or header[0] != ID_COLUMN:
        raise MalformedInputError(
            csv_path,
            f"{kind.capitalize()} CSV {csv_path} must start with a '{ID_COLUMN}' column",
        )
    rows[0] = header
    return csv_path, rows


def _configuration(
    config_id: int,
    categories: list[str],
    values: list[str],
) -> Configuration:
    return Configuration(
        id=config_id,
        levels=tuple(
            (name, parse_level(value)) for name, value in zip(categories, values)
        ),
    )


def read_matrix_csv(path: str | Path) -> tuple[list[str], list[Configuration], list[str]]:
    """Read a matrix CSV.

    Returns:
        ``(categories, configurations, warnings)``; malformed rows are
        skipped and described in ``warnings``.

    Raises:
        MissingInputError: If the file does not exist.
        EmptyInputError: If the file has no rows.
        MalformedInputError: If the header lacks the ``TestID`` column.
    """
    _, rows = _read_rows(path, "matrix")
    categories = rows[0][1:]
    configurations: list[Configuration] = []
    warnings: list[str] = []
    seen: set[int] = set()
    for line_no, row in enumerate(rows[1:], start=2):
        if len(row) != len(rows[0]):
            warnings.append(f"line {line_no}: expected {len(rows[0])} columns, got {len(row)}")
            continue
        try:
            config_id = int(row[0])
        except ValueError:
            warnings.append(f"line {line_no}: invalid {ID_COLUMN} {row[0]!r}")
            continue
        if config_id in seen:
            warnings.append(f"line {line_no}: duplicate {ID_COLUMN} {config_id}, ignored")
            continue
        seen.add(config_id)
        configurations.append(_configuration(config_id, categories, row[1:]))
    return categories, configurations, warnings


def read_results_csv(path: str | Path) -> ResultsTable:
    """Read a results CSV.

    Raises:
        MissingInputError: If the file does not exist.
        EmptyInputError: If the file has no rows.
        MalformedInputError: If the header lacks ``TestID`` or the result
            columns.
    """
    csv_path, rows = _read_rows(path, "results")
    header = rows[0]
    if tuple(header[-len(RESULT_COLUMNS):]) != RESULT_COLUMNS:
        raise MalformedInputError(
            csv_path,
            f"Results CSV {csv_path} must end with columns {', '.join(RESULT_COLUMNS)}",
        )

    table = ResultsTable(categories=header[1:-len(RESULT_COLUMNS)])
    n_categories = len(table.categories)
    seen: set[int] = set()
    for line_no, row in enumerate(rows[1:], start=2):
        if len(row) != len(header):
            table.warnings.append(
                f"line {line_no}: expected {len(header)} columns, got {len(row)}"
            )
            continue
        status_cell, duration_cell, notes = row[-3:]
        try:
            config_id = int(row[0])
            status = int(status_cell)
            duration = float(duration_cell)
        except ValueError:
            table.warnings.append(f"line {line_no}: invalid id, status or duration")
            continue
        if config_id in seen:
            table.warnings.append(
                f"line {line_no}: duplicate {ID_COLUMN} {config_id}, ignored"
            )
            continue
        seen.add(config_id)
        table.configurations.append(
            _configuration(config_id, table.categories, row[1:1 + n_categories])
        )
        table.results.append(ExecutionResult(
            configuration_id=config_id,
            exit_status=status,
            duration_seconds=duration,
            extracted_notes=notes,
        ))
    return table
