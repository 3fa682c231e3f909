"""Analyzer configuration file.

Reads an optional YAML (or JSON) file holding the experiment category
table, the supplementary triples and analysis limits.  Missing keys fall
back to ``DEFAULT_CONFIG``.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

from flakescope.errors import MalformedInputError, MissingInputError
from flakescope.experiments.correlation import DEFAULT_TOP_N
from flakescope.experiments.pairwise import DEFAULT_TRIPLES, Triple
from flakescope.experiments.perturbations import DEFAULT_CATEGORIES
from flakescope.reporting.reporter import REPORT_FORMATS
from flakescope.threads.wait_for import DEFAULT_MAX_CYCLES

# Default configuration values
DEFAULT_CONFIG: dict[str, Any] = {
    "categories": DEFAULT_CATEGORIES,
    "triples": [[list(pair) for pair in triple] for triple in DEFAULT_TRIPLES],
    "max_cycles": DEFAULT_MAX_CYCLES,
    "top_n": DEFAULT_TOP_N,
    "report_format": "markdown",
}


def _normalize_table(table: dict[Any, Any], warnings: list[str]) -> dict[str, list[str]]:
    """Coerce a loaded category table, accepting space-separated level strings."""
    result: dict[str, list[str]] = {}
    for name, levels in table.items():
        if isinstance(levels, str):
            levels = levels.split()
        if not isinstance(levels, list):
            warnings.append(f"category {name}: levels must be a list, ignored")
            continue
        result[str(name)] = [str(level) for level in levels]
    return result


class AnalyzerConfig:
    """Manages the analyzer configuration file.

    A file that cannot be read, does not parse, or does not hold a
    mapping leaves the defaults in place and records a warning.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._data: dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        self.warnings: list[str] = []
        if path is not None and path.exists():
            self._load()

    def _load(self) -> None:
        """Load config from the file."""
        assert self.path is not None
        try:
            data = yaml.safe_load(self.path.read_text())
        except (yaml.YAMLError, OSError) as e:
            self.warnings.append(f"{self.path}: unreadable config ({e}), using defaults")
            return
        if data is None:
            return
        if not isinstance(data, dict):
            self.warnings.append(f"{self.path}: config is not a mapping, using defaults")
            return
        self._data = {**copy.deepcopy(DEFAULT_CONFIG), **data}

    @property
    def config(self) -> dict[str, Any]:
        """Get the full configuration dict."""
        return copy.deepcopy(self._data)

    @property
    def categories(self) -> dict[str, list[str]]:
        """Get the experiment category table (name to level names)."""
        table = self._data.get("categories")
        if not isinstance(table, dict) or not table:
            self.warnings.append("'categories' must be a non-empty mapping, using defaults")
            return copy.deepcopy(DEFAULT_CATEGORIES)
        return _normalize_table(table, self.warnings)

    @property
    def triples(self) -> list[Triple]:
        """Get the supplementary triples as ``(category, level)`` rows."""
        rows = self._data.get("triples")
        if rows is None:
            return []
        if not isinstance(rows, list):
            self.warnings.append("'triples' must be a list of rows, using defaults")
            rows = DEFAULT_CONFIG["triples"]
        triples: list[Triple] = []
        for index, row in enumerate(rows):
            try:
                triples.append(tuple((str(c), str(lvl)) for c, lvl in row))
            except (TypeError, ValueError):
                self.warnings.append(f"triples[{index}]: expected [category, level] pairs, ignored")
        return triples

    def _positive_int(self, key: str) -> int:
        """Get a positive integer setting, falling back to its default."""
        value = self._data.get(key, DEFAULT_CONFIG[key])
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            default = DEFAULT_CONFIG[key]
            self.warnings.append(f"'{key}' must be a positive integer, using {default}")
            return default
        return value

    @property
    def max_cycles(self) -> int:
        """Get the cap on reported deadlock cycles."""
        return self._positive_int("max_cycles")

    @property
    def top_n(self) -> int:
        """Get the number of slowest rows and failure patterns reported."""
        return self._positive_int("top_n")

    @property
    def report_format(self) -> str:
        """Get the default report format."""
        fmt = str(self._data.get("report_format", DEFAULT_CONFIG["report_format"]))
        if fmt not in REPORT_FORMATS:
            self.warnings.append(f"unknown report_format {fmt!r}, using markdown")
            return "markdown"
        return fmt


def load_category_table(
    path: Path, warnings: list[str] | None = None,
) -> dict[str, list[str]]:
    """Load a category table file (category name to level names).

    The file may be a bare mapping or a config file with a
    ``categories`` key.  Categories with invalid levels are dropped and
    noted in ``warnings``.

    Raises:
        MissingInputError: If the file does not exist.
        MalformedInputError: If it does not parse or holds no mapping.
    """
    if not path.is_file():
        raise MissingInputError(path, "expected a category table file")
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise MalformedInputError(path, f"Invalid category table {path}: {e}") from e
    if isinstance(data, dict) and "categories" in data:
        data = data["categories"]
    if not isinstance(data, dict) or not data:
        raise MalformedInputError(
            path, f"Category table {path} must map category names to level lists",
        )
    if warnings is None:
        warnings = []
    table = _normalize_table(data, warnings)
    if not table:
        raise MalformedInputError(path, f"Category table {path} has no valid categories")
    return table
