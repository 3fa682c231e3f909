"""Pairwise experiment design.

Generates one configuration per pair of perturbed factors, with every
other factor left at its baseline, plus a short list of hand-picked
triples for factors known to interact.  The design is deliberately
redundant: a fixed iteration order matters more here than a minimal row
count, because configuration ids are how executed results are joined
back to their factors.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from itertools import combinations, product
from typing import Union

# Name of the baseline level of every category
NONE_LEVEL = "none"


@dataclass(frozen=True)
class Baseline:
    """The unperturbed level of a category."""

    @property
    def name(self) -> str:
        return NONE_LEVEL

    def __str__(self) -> str:
        return NONE_LEVEL


@dataclass(frozen=True)
class Perturbation:
    """A non-baseline level of a category."""

    name: str

    def __str__(self) -> str:
        return self.name


Level = Union[Baseline, Perturbation]

BASELINE = Baseline()


def parse_level(name: str) -> Level:
    """Map a level name onto a Level, treating ``none`` as the baseline."""
    name = name.strip()
    if not name or name == NONE_LEVEL:
        return BASELINE
    return Perturbation(name)


@dataclass(frozen=True)
class Category:
    """A factor and its ordered levels; level 0 is always the baseline."""

    name: str
    levels: tuple[Level, ...] = (BASELINE,)

    @property
    def perturbations(self) -> tuple[Perturbation, ...]:
        return tuple(level for level in self.levels if isinstance(level, Perturbation))

    def level(self, name: str) -> Level | None:
        for level in self.levels:
            if level.name == name:
                return level
        return None

    def position(self, level: Level) -> int:
        """Declaration position of *level*; unknown levels sort last."""
        try:
            return self.levels.index(level)
        except ValueError:
            return len(self.levels)


def make_category(name: str, level_names: Sequence[str]) -> Category:
    """Build a Category from level names.

    ``none`` is implicit and dropped if listed; duplicates collapse to
    their first occurrence.
    """
    levels: list[Level] = [BASELINE]
    for level_name in level_names:
        level = parse_level(str(level_name))
        if level not in levels:
            levels.append(level)
    return Category(name=name, levels=tuple(levels))


def build_categories(table: Mapping[str, Sequence[str]]) -> tuple[Category, ...]:
    """Build categories from a name-to-levels table, sorted by name."""
    return tuple(make_category(name, table[name]) for name in sorted(table))


@dataclass(frozen=True)
class Configuration:
    """One row of the experiment matrix: a level for every category."""

    id: int
    levels: tuple[tuple[str, Level], ...]

    def level_of(self, category: str) -> Level:
        for name, level in self.levels:
            if name == category:
                return level
        return BASELINE

    @property
    def active_levels(self) -> tuple[tuple[str, Perturbation], ...]:
        """The perturbed ``(category, level)`` pairs, in category order."""
        return tuple(
            (name, level) for name, level in self.levels
            if isinstance(level, Perturbation)
        )

    @property
    def is_baseline(self) -> bool:
        return not self.active_levels

    @property
    def key(self) -> tuple[tuple[str, str], ...]:
        """Identity of the configuration as ``(category, level name)`` pairs."""
        return tuple((name, level.name) for name, level in self.levels)

    def describe(self) -> str:
        if self.is_baseline:
            return "baseline"
        return ", ".join(f"{name}={level.name}" for name, level in self.active_levels)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of executing one configuration."""

    configuration_id: int
    exit_status: int
    duration_seconds: float
    extracted_notes: str = ""

    @property
    def passed(self) -> bool:
        return self.exit_status == 0


# A literal row of simultaneously perturbed (category, level) pairs
Triple = tuple[tuple[str, str], ...]

# Scenarios known to interact, appended after the pairwise rows
DEFAULT_TRIPLES: tuple[Triple, ...] = (
    (("cpu", "high"), ("memory", "high"), ("disk", "slow")),
    (("cpu", "high"), ("network", "latency"), ("io", "throttled")),
    (("thread", "race"), ("io", "interrupted"), ("repo", "intermittent")),
    (("memory", "high"), ("network", "loss"), ("temp", "space")),
)


@dataclass
class PairwiseMatrix:
    """Generated configurations plus notes on skipped triples."""

    categories: tuple[Category, ...]
    configurations: list[Configuration] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def category_names(self) -> list[str]:
        return [c.name for c in self.categories]

    def configuration(self, configuration_id: int) -> Configuration | None:
        for config in self.configurations:
            if config.id == configuration_id:
                return config
        return None


def _row(
    categories: tuple[Category, ...],
    config_id: int,
    chosen: Mapping[str, Level],
) -> Configuration:
    return Configuration(
        id=config_id,
        levels=tuple((c.name, chosen.get(c.name, BASELINE)) for c in categories),
    )


def _resolve_triple(
    categories: tuple[Category, ...],
    triple: Triple,
) -> tuple[dict[str, Level] | None, str]:
    by_name = {c.name: c for c in categories}
    chosen: dict[str, Level] = {}
    for category_name, level_name in triple:
        category = by_name.get(category_name)
        if category is None:
            return None, f"unknown category '{category_name}'"
        level = category.level(level_name) if level_name != NONE_LEVEL else BASELINE
        if level is None:
            return None, f"unknown level '{level_name}' for category '{category_name}'"
        if category_name in chosen:
            return None, f"category '{category_name}' listed twice"
        chosen[category_name] = level
    return chosen, ""


def build_matrix(
    categories: Mapping[str, Sequence[str]] | Sequence[Category],
    triples: Sequence[Triple] = DEFAULT_TRIPLES,
) -> PairwiseMatrix:
    """Generate the pairwise experiment matrix.

    Rows are produced in a fixed order: the all-baseline configuration as
    id 1, then for every unordered category pair ``A < B`` (by name) and
    every perturbed level pair in declaration order, one row perturbing
    exactly A and B.  The supplementary triples follow; rows naming
    categories or levels absent from the table are skipped with a warning.

    Args:
        categories: Category table (name to level names) or Category values.
        triples: Literal rows of ``(category, level)`` pairs.

    Returns:
        The PairwiseMatrix.
    """
    if isinstance(categories, Mapping):
        ordered = build_categories(categories)
    else:
        ordered = tuple(sorted(categories, key=lambda c: c.name))

    matrix = PairwiseMatrix(categories=ordered)
    next_id = 1
    matrix.configurations.append(_row(ordered, next_id, {}))

    for first, second in combinations(ordered, 2):
        for level_a, level_b in product(first.perturbations, second.perturbations):
            next_id += 1
            matrix.configurations.append(
                _row(ordered, next_id, {first.name: level_a, second.name: level_b})
            )

    for index, triple in enumerate(triples):
        chosen, problem = _resolve_triple(ordered, tuple(tuple(p) for p in triple))
        if chosen is None:
            matrix.warnings.append(f"triple {index + 1} skipped: {problem}")
            continue
        next_id += 1
        matrix.configurations.append(_row(ordered, next_id, chosen))

    return matrix


def generate_matrix(
    categories: Mapping[str, Sequence[str]] | Sequence[Category],
    triples: Sequence[Triple] = DEFAULT_TRIPLES,
) -> list[Configuration]:
    """Generate the configurations of the pairwise matrix, in id order."""
    return build_matrix(categories, triples).configurations
