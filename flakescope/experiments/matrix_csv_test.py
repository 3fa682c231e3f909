"""Tests for matrix and results CSV files."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from flakescope.errors import EmptyInputError, MalformedInputError, MissingInputError
from flakescope.experiments.matrix_csv import (
    extract_notes,
    read_matrix_csv,
    read_results_csv,
    write_matrix_csv,
    write_results_csv,
)
from flakescope.experiments.pairwise import (
    BASELINE,
    ExecutionResult,
    Perturbation,
    build_matrix,
)


class TestExtractNotes:
    """Tests for extract_notes."""

    def test_first_three_matching_lines(self):
        """Only the first three error-looking lines are kept."""
        log = "\n".join([
            "[INFO] building",
            "[ERROR] one",
            "[WARNING] two",
            "plain",
            "java.lang.IllegalStateException: three",
            "BUILD FAILURE",
        ])
        assert extract_notes(log) == (
            "[ERROR] one; [WARNING] two; java.lang.IllegalStateException: three"
        )

    def test_no_matches(self):
        """Clean logs have empty notes."""
        assert extract_notes("[INFO] BUILD SUCCESS\n") == ""


class TestMatrixCsv:
    """Tests for the matrix CSV."""

    def test_write_then_read(self):
        """A written matrix reads back with the same configurations."""
        matrix = build_matrix({"cpu": ["high"], "disk": ["slow", "full"]}, triples=())
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "matrix.csv"
            write_matrix_csv(path, matrix.category_names, matrix.configurations)
            lines = path.read_text().splitlines()
            assert lines[0] == "TestID,cpu,disk"
            assert lines[1] == "1,none,none"
            assert lines[2] == "2,high,slow"
            categories, configs, warnings = read_matrix_csv(path)
        assert categories == ["cpu", "disk"]
        assert configs == matrix.configurations
        assert warnings == []

    def test_missing_file(self):
        """A missing matrix names the path."""
        with tempfile.TemporaryDirectory() as tmp:
            with pytest.raises(MissingInputError, match="matrix.csv"):
                read_matrix_csv(Path(tmp) / "matrix.csv")

    def test_empty_file(self):
        """A matrix without rows is empty input."""
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "matrix.csv"
            path.write_text("")
            with pytest.raises(EmptyInputError):
                read_matrix_csv(path)

    def test_missing_header(self):
        """The TestID column is required."""
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "matrix.csv"
            path.write_text("id,cpu\n1,none\n")
            with pytest.raises(MalformedInputError, match="TestID"):
                read_matrix_csv(path)

    def test_bad_rows_skipped(self):
        """Short rows and invalid ids are skipped with warnings."""
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "matrix.csv"
            path.write_text("TestID,cpu\n1,none\n2\nx,high\n3,high\n3,low\n")
            _, configs, warnings = read_matrix_csv(path)
        assert [c.id for c in configs] == [1, 3]
        assert configs[1].level_of("cpu") == Perturbation("high")
        assert len(warnings) == 3


class TestResultsCsv:
    """Tests for the results CSV."""

    def test_write_then_read(self):
        """Results read back with their configurations."""
        matrix = build_matrix({"cpu": ["high"], "net": ["loss"]}, triples=())
        results = [
            ExecutionResult(1, 0, 1.5, ""),
            ExecutionResult(2, 1, 3.25, "[ERROR] Timed out"),
        ]
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "results.csv"
            write_results_csv(path, matrix.category_names, matrix.configurations, results)
            assert path.read_text().splitlines()[0] == "TestID,cpu,net,Status,Duration,Notes"
            table = read_results_csv(path)
        assert table.categories == ["cpu", "net"]
        assert table.results == [
            ExecutionResult(1, 0, 1.5, ""),
            ExecutionResult(2, 1, 3.25, "[ERROR] Timed out"),
        ]
        assert table.configurations[0].level_of("cpu") == BASELINE
        assert table.configurations[1].describe() == "cpu=high, net=loss"

    def test_notes_with_commas_are_quoted(self):
        """Notes containing commas survive the round trip."""
        matrix = build_matrix({"cpu": ["high"]}, triples=())
        results = [ExecutionResult(1, 1, 2.0, "a, b; c")]
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "results.csv"
            write_results_csv(path, matrix.category_names, matrix.configurations, results)
            table = read_results_csv(path)
        assert table.results[0].extracted_notes == "a, b; c"

    def test_missing_result_columns(self):
        """A matrix file is not a results file."""
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "results.csv"
            path.write_text("TestID,cpu\n1,none\n")
            with pytest.raises(MalformedInputError, match="Status"):
                read_results_csv(path)

    def test_invalid_status_skipped(self):
        """Rows with non-numeric status or duration are skipped."""
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "results.csv"
            path.write_text(
                "TestID,cpu,Status,Duration,Notes\n"
                "1,none,0,1.0,\n"
                "2,high,oops,1.0,\n"
                "3,high,1,slow,\n"
            )
            table = read_results_csv(path)
        assert [r.configuration_id for r in table.results] == [1]
        assert len(table.warnings) == 2
