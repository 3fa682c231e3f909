"""Run log ingestion: per-run parsing and cross-run history assembly."""

from flakescope.ingestion.directory import (
    TestOutcomeHistory,
    build_histories,
    ingest_run_directory,
)
from flakescope.ingestion.run_log import (
    ClassSummary,
    IngestResult,
    Outcome,
    RunRecord,
    parse_run_log,
)

__all__ = [
    "ClassSummary",
    "IngestResult",
    "Outcome",
    "RunRecord",
    "TestOutcomeHistory",
    "build_histories",
    "ingest_run_directory",
    "parse_run_log",
]
