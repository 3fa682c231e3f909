"""Pairwise experiment design and correlation of executed results."""

from flakescope.experiments.correlation import CorrelationReport, correlate
from flakescope.experiments.matrix_csv import (
    extract_notes,
    read_matrix_csv,
    read_results_csv,
    write_matrix_csv,
    write_results_csv,
)
from flakescope.experiments.pairwise import (
    BASELINE,
    DEFAULT_TRIPLES,
    Baseline,
    Category,
    Configuration,
    ExecutionResult,
    Perturbation,
    build_matrix,
    generate_matrix,
)
from flakescope.experiments.perturbations import DEFAULT_CATEGORIES, build_plan

__all__ = [
    "BASELINE",
    "DEFAULT_CATEGORIES",
    "DEFAULT_TRIPLES",
    "Baseline",
    "Category",
    "Configuration",
    "CorrelationReport",
    "ExecutionResult",
    "Perturbation",
    "build_matrix",
    "build_plan",
    "correlate",
    "extract_notes",
    "generate_matrix",
    "read_matrix_csv",
    "read_results_csv",
    "write_matrix_csv",
    "write_results_csv",
]
